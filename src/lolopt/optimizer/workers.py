"""Process-based evaluation of portfolio attempts.

Each round the portfolio loop hands over a batch of planned attempts and the
current ledger. The batch is split into jobs; every job runs in a spawned
process against a read-only snapshot of the ledger and reports its
outcomes back over a queue. Commits stay on the caller's side.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import queue as queue_module
import time
from typing import Dict, List, Optional, Sequence, Tuple

from lolopt.config import ContestRules
from lolopt.models import Player, TeamStack
from lolopt.optimizer.builder import BuildPlan
from lolopt.optimizer.ledger import ExposureLedger
from lolopt.optimizer.portfolio import AttemptOutcome, AttemptRunner
from lolopt.pool import PlayerPool
from lolopt.schemas import StrategyProfile


logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


class ParallelAttemptJobResult:
    def __init__(self, job_id: int, outcomes: List[AttemptOutcome], error: Optional[str] = None):
        self.job_id = job_id
        self.outcomes = outcomes
        self.error = error


class ParallelAttemptJobConfig:
    def __init__(
        self,
        job_id: int,
        seed: int,
        players: List[Player],
        team_stacks: List[TeamStack],
        rules: ContestRules,
        profile: StrategyProfile,
        exclude_player_ids: Sequence[str],
        ledger: ExposureLedger,
        jobs: List[Tuple[int, BuildPlan]],
    ):
        self.job_id = job_id
        self.seed = seed
        self.players = players
        self.team_stacks = team_stacks
        self.rules = rules
        self.profile = profile
        self.exclude_player_ids = list(exclude_player_ids)
        self.ledger = ledger
        self.jobs = jobs


def _run_attempt_job(config: ParallelAttemptJobConfig, cancel=None) -> ParallelAttemptJobResult:
    pool = PlayerPool(
        config.players,
        config.rules,
        team_stacks=config.team_stacks,
        exclude_player_ids=config.exclude_player_ids,
    )
    runner = AttemptRunner(
        pool,
        config.rules,
        config.profile,
        config.seed,
        forbidden_player_ids=config.exclude_player_ids,
    )
    outcomes = [runner.run(index, plan, config.ledger, cancel=cancel) for index, plan in config.jobs]
    return ParallelAttemptJobResult(config.job_id, outcomes)


def _attempt_worker(config: ParallelAttemptJobConfig, queue: mp.Queue, stop) -> None:
    try:
        queue.put(_run_attempt_job(config, cancel=stop))
    except Exception as exc:  # pragma: no cover - worker errors bubble to parent
        queue.put(ParallelAttemptJobResult(config.job_id, [], error=f"{type(exc).__name__}: {exc}"))


class ProcessExecutor:
    """Runs attempt batches across ``workers`` spawned processes."""

    def __init__(
        self,
        *,
        players: Sequence[Player],
        team_stacks: Sequence[TeamStack],
        rules: ContestRules,
        profile: StrategyProfile,
        seed: int,
        exclude_player_ids: Sequence[str] = (),
        workers: int = 2,
        attempts_per_job: int = 8,
    ):
        self.players = list(players)
        self.team_stacks = list(team_stacks)
        self.rules = rules
        self.profile = profile
        self.seed = seed
        self.exclude_player_ids = list(exclude_player_ids)
        self.workers = max(1, workers)
        self.attempts_per_job = max(1, attempts_per_job)
        self.capacity = self.workers * self.attempts_per_job
        self._ctx = mp.get_context("spawn")
        self._next_job_id = 0

    def evaluate(
        self,
        jobs: Sequence[Tuple[int, BuildPlan]],
        ledger: ExposureLedger,
        cancel=None,
    ) -> List[AttemptOutcome]:
        if not jobs:
            return []
        snapshot = ledger.snapshot()
        chunks = [list(jobs[i:i + self.attempts_per_job]) for i in range(0, len(jobs), self.attempts_per_job)]

        queue: mp.Queue = self._ctx.Queue()
        stop = self._ctx.Event()
        processes: Dict[int, mp.Process] = {}
        outcomes: List[AttemptOutcome] = []
        round_start = time.perf_counter()

        try:
            for chunk in chunks:
                config = ParallelAttemptJobConfig(
                    job_id=self._next_job_id,
                    seed=self.seed,
                    players=self.players,
                    team_stacks=self.team_stacks,
                    rules=self.rules,
                    profile=self.profile,
                    exclude_player_ids=self.exclude_player_ids,
                    ledger=snapshot,
                    jobs=chunk,
                )
                self._next_job_id += 1
                proc = self._ctx.Process(target=_attempt_worker, args=(config, queue, stop))
                proc.start()
                processes[config.job_id] = proc
                logger.debug("Dispatched job %s with %s attempts", config.job_id, len(chunk))

            while processes:
                try:
                    result = queue.get(timeout=_POLL_SECONDS)
                except queue_module.Empty:
                    if cancel is not None and cancel.is_set() and not stop.is_set():
                        logger.info("Cancel requested; stopping %s running jobs", len(processes))
                        stop.set()
                    crashed = sorted(job_id for job_id, proc in processes.items() if proc.exitcode not in (None, 0))
                    if crashed:
                        raise RuntimeError(f"Attempt jobs {crashed} exited without reporting")
                    continue

                proc = processes.pop(result.job_id, None)
                if proc is not None:
                    proc.join()
                if result.error:
                    raise RuntimeError(f"Attempt job {result.job_id} failed: {result.error}")
                outcomes.extend(result.outcomes)
        finally:
            for proc in processes.values():
                if proc.is_alive():
                    proc.terminate()
                proc.join()

        logger.debug(
            "Round of %s attempts across %s jobs finished in %.2fs",
            len(jobs),
            len(chunks),
            time.perf_counter() - round_start,
        )
        return sorted(outcomes, key=lambda outcome: outcome.index)
