"""Outer loop that assembles a portfolio of distinct lineups.

The loop is the single writer of the exposure ledger. Attempts are planned
from the current ledger, evaluated by an executor (inline or in worker
processes), and committed in attempt order. Every attempt draws from its
own random streams derived from ``(seed, attempt_index)``, so a run is
reproducible for a given request, seed and worker layout.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from lolopt.config import ContestRules
from lolopt.models import Lineup
from lolopt.optimizer.builder import (
    BuilderSettings,
    BuildFailure,
    BuildPlan,
    FailureMode,
    LineupBuilder,
    weighted_index,
)
from lolopt.optimizer.constraints import ConstraintEngine, RejectReason
from lolopt.optimizer.ledger import STACK, EntityKey, ExposureLedger, entities_of, stack_key, team_key
from lolopt.optimizer.scorer import MonteCarloScorer, ScoreResult
from lolopt.pool import PlayerPool
from lolopt.schemas import PortfolioConfig, ScoreWeights, StrategyProfile


logger = logging.getLogger(__name__)

BALANCED = "balanced"
LEVERAGE = "leverage"
STACK_HEAVY = "stack"
REPAIR = "repair"
STRATEGIES = (BALANCED, LEVERAGE, STACK_HEAVY)

PLAN_STREAM = 0
BUILD_STREAM = 1
SCORE_STREAM = 2

# Builder failures that do not depend on the ledger; retrying cannot help.
STRUCTURAL_FAILURES = frozenset({"salary_cap", "position_pool_empty"})

_UNINFORMATIVE_FAILURES = frozenset({"deadline", "cancelled", "no_candidates", "restart_limit"})
_CANDIDATE_REASONS = frozenset(reason.value for reason in RejectReason)

ProgressCallback = Callable[[float, str], None]


def attempt_rng(seed: int, index: int, stream: int) -> np.random.Generator:
    """Independent generator for one stream of one attempt."""

    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(index, stream)))


@dataclass(frozen=True)
class AttemptOutcome:
    index: int
    plan: BuildPlan
    lineup: Optional[Lineup] = None
    score: Optional[ScoreResult] = None
    failure: Optional[BuildFailure] = None
    rejections: Dict[str, int] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        if self.failure is not None:
            return self.failure.mode is FailureMode.CANCELLED
        return self.score is not None and self.score.cancelled


class AttemptRunner:
    """Builds and scores a single attempt.

    Holds only read-only run inputs so worker processes can rebuild an
    identical runner from the same request.
    """

    def __init__(
        self,
        pool: PlayerPool,
        rules: ContestRules,
        profile: StrategyProfile,
        seed: int,
        *,
        forbidden_player_ids: Iterable[str] = (),
    ):
        self.pool = pool
        self.rules = rules
        self.profile = profile
        self.seed = seed
        engine = ConstraintEngine(rules, forbidden_player_ids=forbidden_player_ids)
        self.builder = LineupBuilder(
            pool,
            engine,
            BuilderSettings(
                max_slot_attempts=profile.max_slot_attempts,
                deadline_ms=profile.builder_deadline_ms,
                stack_prior_scale=profile.stack_prior_scale,
                shortfall_boost=profile.shortfall_boost,
            ),
        )
        self.scorer = MonteCarloScorer(profile)

    def weights_for(self, plan: BuildPlan) -> ScoreWeights:
        weights = self.profile.weights
        if not plan.leverage_seeking:
            return weights
        factor = self.profile.leverage_multiplier
        return weights.model_copy(update={"leverage": weights.leverage * factor, "ownership": weights.ownership * factor})

    def run(self, index: int, plan: BuildPlan, ledger: Optional[ExposureLedger], cancel=None) -> AttemptOutcome:
        built = self.builder.build(ledger, plan, attempt_rng(self.seed, index, BUILD_STREAM), cancel=cancel)
        rejections = dict(built.rejections)
        if not built.ok:
            return AttemptOutcome(index=index, plan=plan, failure=built.failure, rejections=rejections)
        score = self.scorer.score(
            built.lineup,
            attempt_rng(self.seed, index, SCORE_STREAM),
            weights=self.weights_for(plan),
            cancel=cancel,
        )
        return AttemptOutcome(index=index, plan=plan, lineup=built.lineup, score=score, rejections=rejections)


class InlineExecutor:
    """Evaluates attempts one at a time against the live ledger."""

    capacity = 1

    def __init__(self, runner: AttemptRunner):
        self.runner = runner

    def evaluate(
        self,
        jobs: Sequence[Tuple[int, BuildPlan]],
        ledger: ExposureLedger,
        cancel=None,
    ) -> List[AttemptOutcome]:
        return [self.runner.run(index, plan, ledger, cancel=cancel) for index, plan in jobs]


@dataclass
class PortfolioEntry:
    lineup: Lineup
    score: ScoreResult
    strategy: str


@dataclass
class RepairStats:
    attempts: int = 0
    replacements: int = 0
    cleared: List[str] = field(default_factory=list)


@dataclass
class PortfolioOutcome:
    entries: List[PortfolioEntry]
    ledger: ExposureLedger
    target: int
    attempts: int = 0
    rejections: Counter = field(default_factory=Counter)
    repair: RepairStats = field(default_factory=RepairStats)
    cancelled: bool = False
    infeasible_reasons: List[str] = field(default_factory=list)

    @property
    def lineups(self) -> List[Lineup]:
        return [entry.lineup for entry in self.entries]

    @property
    def strategy_counts(self) -> Dict[str, int]:
        return dict(sorted(Counter(entry.strategy for entry in self.entries).items()))

    @property
    def status(self) -> str:
        if not self.entries:
            return "partial" if self.cancelled else "infeasible"
        if self.cancelled or len(self.entries) < self.target or self.ledger.deficit_report():
            return "partial"
        return "ok"


class PortfolioLoop:
    def __init__(
        self,
        runner: AttemptRunner,
        ledger: ExposureLedger,
        portfolio: PortfolioConfig,
        *,
        executor=None,
        lock_player_ids: Sequence[str] = (),
        progress: Optional[ProgressCallback] = None,
        cancel=None,
    ):
        self.runner = runner
        self.ledger = ledger
        self.portfolio = portfolio
        self.profile = runner.profile
        self.seed = runner.seed
        self.executor = executor or InlineExecutor(runner)
        self.lock_player_ids = tuple(lock_player_ids)
        self.progress = progress
        self.cancel = cancel

        self.target = portfolio.count
        self.attempt_cap = portfolio.resolved_attempt_cap()
        self.score_floor = portfolio.resolved_score_floor()
        self.max_repeating = portfolio.max_repeating_players

        mix = self.profile.mix
        weights = np.array([mix.balanced, mix.leverage, mix.stack], dtype=np.float64)
        self._mix_weights = weights

        self._entries: List[PortfolioEntry] = []
        self._fingerprints: Set[str] = set()
        self._rejections: Counter = Counter()
        self._infeasible: Set[str] = set()
        self._failure_reasons: Counter = Counter()
        self._next_index = 0
        self._cancelled = False

    # -- planning ----------------------------------------------------------

    def plan_attempt(self, index: int) -> BuildPlan:
        """Choose strategy, preferences and hard requirements for one attempt."""

        rng = attempt_rng(self.seed, index, PLAN_STREAM)
        strategy = STRATEGIES[weighted_index(self._mix_weights, rng)]

        shortfalls = self.ledger.shortfalls()
        required: Tuple[EntityKey, ...] = ()
        urgent = self.ledger.urgent_shortfalls()
        if urgent:
            required = (urgent[index % len(urgent)][0],)
        elif shortfalls and index > 0.5 * self.attempt_cap:
            required = (shortfalls[0][0],)

        forced_stack = self._stack_target(shortfalls, rng) if strategy == STACK_HEAVY else None
        return BuildPlan(
            strategy=strategy,
            leverage_seeking=strategy == LEVERAGE,
            forced_stack=forced_stack,
            preferred=tuple(entity for entity, _ in shortfalls if entity not in required),
            required=required,
            locked_player_ids=self.lock_player_ids,
        )

    def _stack_target(self, shortfalls: Sequence[Tuple[EntityKey, int]], rng: np.random.Generator) -> Optional[Tuple[str, int]]:
        for entity, _ in shortfalls:
            if entity.kind == STACK:
                return entity.name, entity.size

        pool = self.runner.pool
        size = self.profile.stack_size
        team_limit = self.runner.rules.max_players_per_team
        if team_limit is not None:
            size = min(size, team_limit)
        teams = [team for team in pool.teams if len(pool.by_team(team)) >= size]
        if not teams:
            return None
        weights = np.array(
            [
                self.runner.builder.stack_prior(team)
                * self.ledger.headroom_factor(stack_key(team, size))
                * self.ledger.headroom_factor(team_key(team))
                for team in teams
            ],
            dtype=np.float64,
        )
        if float(weights.sum()) <= 0.0:
            return None
        return teams[weighted_index(weights, rng)], size

    # -- main loop ---------------------------------------------------------

    def run(self) -> PortfolioOutcome:
        started = time.perf_counter()
        attempts = 0
        retry: Deque[BuildPlan] = deque()
        log_every = max(1, self.target // 10)

        logger.info(
            "Building portfolio – target=%s, attempt_cap=%s, seed=%s, executor capacity=%s",
            self.target,
            self.attempt_cap,
            self.seed,
            self.executor.capacity,
        )

        stop = False
        while len(self._entries) < self.target and attempts < self.attempt_cap and not stop:
            if self._cancel_requested():
                break

            batch = min(self.executor.capacity, self.attempt_cap - attempts)
            jobs: List[Tuple[int, BuildPlan]] = []
            for _ in range(batch):
                index = self._take_index()
                if retry:
                    plan = retry.popleft()
                else:
                    plan = self.plan_attempt(index)
                jobs.append((index, plan))
            attempts += len(jobs)

            outcomes = self.executor.evaluate(jobs, self.ledger, cancel=self.cancel)
            for outcome in sorted(outcomes, key=lambda item: item.index):
                if len(self._entries) >= self.target:
                    break
                verdict = self._consider(outcome)
                if verdict == "cancelled":
                    self._cancelled = True
                    stop = True
                    break
                if verdict == "structural":
                    stop = True
                    break
                if verdict == "ledger_conflict":
                    # Lost a race with a lineup committed earlier in this round; rerun the plan.
                    retry.append(outcome.plan)
                if verdict == "committed" and len(self._entries) % log_every == 0:
                    logger.info(
                        "Committed %s/%s lineups after %s attempts (total %.2fs)",
                        len(self._entries),
                        self.target,
                        attempts,
                        time.perf_counter() - started,
                    )

        if len(self._entries) < self.target and not self._cancelled and not stop:
            logger.warning(
                "Attempt cap reached with %s/%s lineups (%s attempts)",
                len(self._entries),
                self.target,
                attempts,
            )

        repair = RepairStats()
        if self._entries and not self._cancelled:
            repair = self._repair()

        self.ledger.verify([entry.lineup for entry in self._entries])
        outcome = PortfolioOutcome(
            entries=list(self._entries),
            ledger=self.ledger,
            target=self.target,
            attempts=attempts,
            rejections=self._rejections,
            repair=repair,
            cancelled=self._cancelled,
            infeasible_reasons=self._infeasible_reasons(),
        )
        self._report(len(self._entries) / self.target, "complete")
        logger.info(
            "Portfolio finished – status=%s, lineups=%s/%s, attempts=%s (total %.2fs)",
            outcome.status,
            len(outcome.entries),
            self.target,
            attempts,
            time.perf_counter() - started,
        )
        return outcome

    def _infeasible_reasons(self) -> List[str]:
        """Structural reasons, or the dominant build failure when nothing was committed."""

        reasons = sorted(self._infeasible)
        if reasons or self._entries or self._cancelled:
            return reasons
        for reason, _ in self._failure_reasons.most_common():
            if reason not in _UNINFORMATIVE_FAILURES:
                return [reason]
        candidate = Counter({reason: count for reason, count in self._rejections.items() if reason in _CANDIDATE_REASONS})
        if candidate:
            return [candidate.most_common(1)[0][0]]
        return ["attempt_cap"]

    def _take_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _cancel_requested(self) -> bool:
        if self.cancel is not None and self.cancel.is_set():
            self._cancelled = True
        return self._cancelled

    def _report(self, fraction: float, stage: str) -> None:
        if self.progress is not None:
            self.progress(min(1.0, max(0.0, fraction)), stage)

    def _consider(self, outcome: AttemptOutcome) -> str:
        """Apply the commit checks to one attempt and return what happened."""

        self._rejections.update(outcome.rejections)
        if outcome.cancelled:
            self._rejections["cancelled"] += 1
            return "cancelled"

        if outcome.failure is not None:
            failure = outcome.failure
            self._rejections[failure.mode.value] += 1
            self._failure_reasons[failure.reason] += 1
            if failure.mode is FailureMode.INFEASIBLE:
                self._infeasible.add(failure.reason)
                if failure.reason in STRUCTURAL_FAILURES:
                    logger.warning("Builder reports a structural infeasibility: %s", failure.reason)
                    return "structural"
            logger.debug("Attempt %s failed: %s (%s)", outcome.index, failure.mode.value, failure.reason)
            return failure.mode.value

        lineup = outcome.lineup
        score = outcome.score
        assert lineup is not None and score is not None
        reason = self._screen(lineup, score)
        if reason is not None:
            self._rejections[reason] += 1
            logger.debug("Attempt %s discarded: %s", outcome.index, reason)
            return reason

        self._commit(PortfolioEntry(lineup=lineup, score=score, strategy=outcome.plan.strategy))
        self._report(len(self._entries) / self.target, "build")
        return "committed"

    def _screen(self, lineup: Lineup, score: ScoreResult, *, ignore: Optional[int] = None) -> Optional[str]:
        if lineup.fingerprint in self._fingerprints:
            return "duplicate_lineup"
        if score.score < self.score_floor:
            return "score_floor"
        if self._too_similar(lineup, ignore=ignore):
            return "max_repeating"
        if self.ledger.would_violate(lineup):
            return "ledger_conflict"
        return None

    def _too_similar(self, lineup: Lineup, *, ignore: Optional[int] = None) -> bool:
        if self.max_repeating is None:
            return False
        ids = set(lineup.player_ids)
        for idx, entry in enumerate(self._entries):
            if idx == ignore:
                continue
            if len(ids.intersection(entry.lineup.player_ids)) > self.max_repeating:
                return True
        return False

    def _commit(self, entry: PortfolioEntry) -> None:
        self.ledger.commit(entry.lineup)
        self._entries.append(entry)
        self._fingerprints.add(entry.lineup.fingerprint)

    # -- repair ------------------------------------------------------------

    def _missing_total(self) -> int:
        return sum(needed for _, needed in self.ledger.shortfalls())

    def _repair(self) -> RepairStats:
        stats = RepairStats()
        initial = [deficit.entity for deficit in self.ledger.deficit_report()]
        if not initial:
            return stats

        budget = self.portfolio.resolved_repair_attempts()
        logger.info(
            "Repair phase – %s entities below minimum, budget=%s: %s",
            len(initial),
            budget,
            ", ".join(entity.label for entity in initial),
        )

        stuck: Set[EntityKey] = set()
        misses: Counter = Counter()
        failures_by_entity: Counter = Counter()
        while stats.attempts < budget and not self._cancel_requested():
            deficits = [deficit for deficit in self.ledger.deficit_report() if deficit.entity not in stuck]
            if not deficits:
                break
            target = deficits[0].entity
            victim = self._choose_victim(target, misses)
            if victim is None:
                stuck.add(target)
                continue

            stats.attempts += 1
            if self._replace(victim, target, [d.entity for d in deficits if d.entity != target]):
                stats.replacements += 1
            else:
                misses[(self._entries[victim].lineup.fingerprint, target)] += 1
                failures_by_entity[target] += 1
                if failures_by_entity[target] >= 2 * len(self._entries):
                    stuck.add(target)
            self._report(stats.attempts / budget, REPAIR)

        remaining = {deficit.entity for deficit in self.ledger.deficit_report()}
        stats.cleared = [entity.label for entity in initial if entity not in remaining]
        if remaining:
            logger.warning(
                "Repair left %s entities below minimum after %s attempts: %s",
                len(remaining),
                stats.attempts,
                ", ".join(sorted(entity.label for entity in remaining)),
            )
        else:
            logger.info("Repair cleared all minimums with %s replacements", stats.replacements)
        return stats

    def _choose_victim(self, target: EntityKey, misses: Counter) -> Optional[int]:
        """Lowest-scoring lineup without ``target``, preferring removals that keep other minimums."""

        n = self.target
        candidates = []
        for idx, entry in enumerate(self._entries):
            entities = entities_of(entry.lineup)
            if target in entities:
                continue
            safe = True
            for entity in entities:
                bound = self.ledger.bounds.get(entity)
                if bound is not None and self.ledger.count(entity) - 1 < bound.min_count(n):
                    safe = False
                    break
            candidates.append((misses[(entry.lineup.fingerprint, target)], not safe, entry.score.score, idx))
        if not candidates:
            return None
        return min(candidates)[3]

    def _replace(self, victim_index: int, target: EntityKey, others: Sequence[EntityKey]) -> bool:
        victim = self._entries[victim_index]
        before = self._missing_total()
        self.ledger.rewind(victim.lineup)
        self._fingerprints.discard(victim.lineup.fingerprint)

        plan = BuildPlan(
            strategy=REPAIR,
            required=(target,),
            preferred=tuple(others),
            locked_player_ids=self.lock_player_ids,
        )
        outcome = self.runner.run(self._take_index(), plan, self.ledger, cancel=self.cancel)
        accepted = False
        if outcome.lineup is not None and outcome.score is not None and not outcome.cancelled:
            if self._screen(outcome.lineup, outcome.score, ignore=victim_index) is None:
                self.ledger.commit(outcome.lineup)
                if self._missing_total() < before:
                    accepted = True
                else:
                    self.ledger.rewind(outcome.lineup)

        if accepted:
            assert outcome.lineup is not None and outcome.score is not None
            self._entries[victim_index] = PortfolioEntry(lineup=outcome.lineup, score=outcome.score, strategy=REPAIR)
            self._fingerprints.add(outcome.lineup.fingerprint)
            logger.debug("Repair replaced lineup %s to serve %s", victim_index + 1, target.label)
        else:
            self.ledger.commit(victim.lineup)
            self._fingerprints.add(victim.lineup.fingerprint)
        return accepted
