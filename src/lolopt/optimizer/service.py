"""Entry point tying the pool, ledger, portfolio loop and workers together."""

from __future__ import annotations

import logging
import os
import time
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from lolopt.config import ContestRules
from lolopt.models import Lineup, Slot, slot_projection, slot_salary
from lolopt.optimizer.errors import InvalidInputError
from lolopt.optimizer.ledger import (
    PLAYER,
    POSITION,
    STACK,
    TEAM,
    EntityKey,
    ExposureBounds,
    ExposureLedger,
)
from lolopt.optimizer.portfolio import AttemptRunner, PortfolioEntry, PortfolioLoop, PortfolioOutcome, ProgressCallback
from lolopt.optimizer.workers import ProcessExecutor
from lolopt.pool import PlayerPool
from lolopt.schemas import (
    ExposureUsage,
    LineupResponse,
    OptimizeRequest,
    OptimizeResponse,
    OptimizeSummary,
    RepairSummary,
    SlotResponse,
    UnmetMinimum,
)


logger = logging.getLogger(__name__)

_WORKERS_ENV = "LOLOPT_WORKERS"
_ATTEMPTS_PER_JOB_ENV = "LOLOPT_ATTEMPTS_PER_JOB"

_WORKERS_DEFAULT = 1
_ATTEMPTS_PER_JOB_DEFAULT = 8

_KIND_ORDER = {PLAYER: 0, TEAM: 1, POSITION: 2, STACK: 3}


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


def _default_workers() -> int:
    return _env_int(_WORKERS_ENV, _WORKERS_DEFAULT, min_value=1)


def _default_attempts_per_job() -> int:
    return _env_int(_ATTEMPTS_PER_JOB_ENV, _ATTEMPTS_PER_JOB_DEFAULT, min_value=1)


def _coerce_request(request: Union[OptimizeRequest, Mapping[str, Any]]) -> OptimizeRequest:
    if isinstance(request, OptimizeRequest):
        return request
    try:
        return OptimizeRequest.model_validate(request)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
            for error in exc.errors()
        ]
        raise InvalidInputError(problems) from exc


def _resolve_rules(request: OptimizeRequest) -> ContestRules:
    try:
        return request.contest_config.to_rules()
    except KeyError as exc:
        raise InvalidInputError([str(exc.args[0]) if exc.args else "unknown contest"]) from exc


def _validate_request(request: OptimizeRequest, rules: ContestRules) -> None:
    """Reject inputs that can never produce a meaningful run."""

    problems: List[str] = []
    ids = Counter(player.player_id for player in request.players)
    duplicates = sorted(pid for pid, count in ids.items() if count > 1)
    if duplicates:
        problems.append(f"duplicate player ids: {', '.join(duplicates)}")

    full_pool = PlayerPool(request.players, rules, team_stacks=request.team_stacks)
    for slot in full_pool.empty_slots():
        problems.append(f"no player is eligible for roster slot {slot.value}")

    locked = set(request.lock_player_ids)
    excluded = set(request.exclude_player_ids)
    unknown = sorted(locked.difference(ids))
    if unknown:
        problems.append(f"unknown locked player ids: {', '.join(unknown)}")
    both = sorted(locked & excluded)
    if both:
        problems.append(f"players both locked and excluded: {', '.join(both)}")
    if len(locked) > len(rules.roster_order):
        problems.append(f"{len(locked)} locked players exceed the {len(rules.roster_order)} roster slots")

    exposure = request.exposure_config
    teams = {player.team for player in request.players}
    for pid, bound in sorted(exposure.players.items()):
        if pid not in ids:
            problems.append(f"exposure bound for unknown player {pid!r}")
        elif pid in excluded and bound.min > 0:
            problems.append(f"excluded player {pid!r} has a minimum exposure")
    for team in sorted(exposure.teams):
        if team not in teams:
            problems.append(f"exposure bound for unknown team {team!r}")
    captain_positions = rules.eligible_positions(Slot.CPT)
    for position, bound in sorted(exposure.positions.items(), key=lambda item: item[0].value):
        if bound.min > 0 and position not in captain_positions:
            problems.append(f"position {position.value} cannot captain but has a minimum exposure")
    for team, sizes in sorted(exposure.stacks.items()):
        if team not in teams:
            problems.append(f"stack bound for unknown team {team!r}")
        for size, bound in sorted(sizes.items()):
            limit = rules.max_players_per_team
            if bound.min > 0 and limit is not None and size > limit:
                problems.append(f"{size}-stack minimum for {team!r} exceeds max players per team ({limit})")

    if problems:
        raise InvalidInputError(problems)


def optimize(
    request: Union[OptimizeRequest, Mapping[str, Any]],
    *,
    progress: Optional[ProgressCallback] = None,
    cancel=None,
) -> OptimizeResponse:
    """Build a portfolio of lineups for ``request``.

    ``progress`` receives ``(fraction, stage)`` after every commit. ``cancel``
    is any object with an ``is_set()`` method (for example
    ``threading.Event``); once set, the run stops and returns what it has
    built so far with ``status="partial"``.
    """

    started = time.perf_counter()
    request = _coerce_request(request)
    rules = _resolve_rules(request)
    _validate_request(request, rules)

    pool = PlayerPool(
        request.players,
        rules,
        team_stacks=request.team_stacks,
        exclude_player_ids=request.exclude_player_ids,
    )
    bounds = ExposureBounds.from_config(request.exposure_config, (player.player_id for player in pool))
    ledger = ExposureLedger(bounds, request.portfolio.count)

    logger.info(
        "Starting optimization – site=%s, sport=%s, players=%s, teams=%s, lineups=%s, seed=%s",
        rules.site,
        rules.sport,
        len(pool),
        len(pool.teams),
        request.portfolio.count,
        request.seed,
    )

    empty = pool.empty_slots()
    if empty:
        logger.warning("No eligible players remain for %s", ", ".join(slot.value for slot in empty))
        return _infeasible_response(request, ledger, ["position_pool_empty"], started)
    cheapest = pool.min_lineup_salary()
    if cheapest > rules.salary_cap:
        logger.warning("Cheapest possible lineup costs %s, above the %s cap", cheapest, rules.salary_cap)
        return _infeasible_response(request, ledger, ["salary_cap"], started)

    runner = AttemptRunner(
        pool,
        rules,
        request.strategy_profile,
        request.seed,
        forbidden_player_ids=request.exclude_player_ids,
    )
    workers = request.portfolio.workers or _default_workers()
    executor = None
    if workers > 1:
        executor = ProcessExecutor(
            players=request.players,
            team_stacks=request.team_stacks,
            rules=rules,
            profile=request.strategy_profile,
            seed=request.seed,
            exclude_player_ids=request.exclude_player_ids,
            workers=workers,
            attempts_per_job=request.portfolio.attempts_per_job or _default_attempts_per_job(),
        )

    loop = PortfolioLoop(
        runner,
        ledger,
        request.portfolio,
        executor=executor,
        lock_player_ids=request.lock_player_ids,
        progress=progress,
        cancel=cancel,
    )
    outcome = loop.run()
    response = _build_response(request, rules, outcome, time.perf_counter() - started)
    if response.status != "ok":
        logger.warning(
            "Optimization returned %s with %s/%s lineups and %s unmet minimums",
            response.status,
            len(response.lineups),
            request.portfolio.count,
            len(response.summary.unmet_minima),
        )
    return response


def _infeasible_response(
    request: OptimizeRequest,
    ledger: ExposureLedger,
    reasons: List[str],
    started: float,
) -> OptimizeResponse:
    summary = OptimizeSummary(
        achieved_exposures=_exposures(ledger, 0),
        unmet_minima=_unmet(ledger, 0),
        attempts=0,
        rejections={},
        wall_time=time.perf_counter() - started,
        infeasible_reasons=reasons,
        seed=request.seed,
    )
    return OptimizeResponse(lineups=[], summary=summary, status="infeasible")


def _build_response(
    request: OptimizeRequest,
    rules: ContestRules,
    outcome: PortfolioOutcome,
    wall_time: float,
) -> OptimizeResponse:
    lineups = [_lineup_to_response(entry, idx, rules) for idx, entry in enumerate(outcome.entries)]
    committed = len(outcome.entries)
    summary = OptimizeSummary(
        achieved_exposures=_exposures(outcome.ledger, committed),
        unmet_minima=_unmet(outcome.ledger, committed),
        attempts=outcome.attempts,
        rejections=dict(sorted(outcome.rejections.items())),
        wall_time=wall_time,
        strategy_counts=outcome.strategy_counts,
        repair=RepairSummary(
            attempts=outcome.repair.attempts,
            replacements=outcome.repair.replacements,
            cleared=list(outcome.repair.cleared),
        ),
        cancelled=outcome.cancelled,
        infeasible_reasons=list(outcome.infeasible_reasons) if not outcome.entries else [],
        seed=request.seed,
    )
    return OptimizeResponse(lineups=lineups, summary=summary, status=outcome.status)


def _lineup_to_response(entry: PortfolioEntry, idx: int, rules: ContestRules) -> LineupResponse:
    lineup: Lineup = entry.lineup
    score = entry.score
    multiplier = rules.captain_multiplier
    slots = [
        SlotResponse(
            slot=assignment.slot.value,
            player_id=assignment.player.player_id,
            name=assignment.player.name,
            team=assignment.player.team,
            position=assignment.player.position.value,
            salary=assignment.player.salary,
            adjusted_salary=slot_salary(assignment.player, assignment.slot, multiplier),
            projection=assignment.player.projection,
            adjusted_projection=slot_projection(assignment.player, assignment.slot, multiplier),
            ownership=assignment.player.ownership,
        )
        for assignment in lineup.assignments
    ]
    return LineupResponse(
        lineup_id=f"L{idx + 1:03}",
        slots=slots,
        total_salary=lineup.total_salary,
        adjusted_total_salary=lineup.adjusted_total_salary,
        score=score.score,
        mean=score.mean,
        stdev=score.stdev,
        ceiling=score.ceiling,
        floor=score.floor,
        boom_rate=score.boom_rate,
        leverage=score.leverage,
        average_ownership=score.average_ownership,
        fingerprint=lineup.fingerprint,
        strategy=entry.strategy,
        degenerate=score.degenerate,
    )


def _sort_key(entity: EntityKey):
    return _KIND_ORDER.get(entity.kind, len(_KIND_ORDER)), entity.name, entity.size


def _percent(count: int, total: int) -> float:
    return 100.0 * count / total if total else 0.0


def _exposures(ledger: ExposureLedger, committed: int) -> List[ExposureUsage]:
    counts: Dict[EntityKey, int] = ledger.counts()
    entities = set(counts).union(ledger.bounds)
    usage: List[ExposureUsage] = []
    for entity in sorted(entities, key=_sort_key):
        bound = ledger.bounds.get(entity)
        count = counts.get(entity, 0)
        usage.append(
            ExposureUsage(
                entity=entity.label,
                kind=entity.kind,
                name=entity.name,
                stack_size=entity.size or None,
                count=count,
                exposure=_percent(count, committed),
                min=None if bound is None else bound.min * 100.0,
                max=None if bound is None else bound.max * 100.0,
                target=None if bound is None or bound.target is None else bound.target * 100.0,
            )
        )
    return usage


def _unmet(ledger: ExposureLedger, committed: int) -> List[UnmetMinimum]:
    return [
        UnmetMinimum(
            entity=deficit.entity.label,
            kind=deficit.entity.kind,
            name=deficit.entity.name,
            stack_size=deficit.entity.size or None,
            count=deficit.count,
            required_count=deficit.required_count,
            achieved=_percent(deficit.count, committed),
            required=deficit.required * 100.0,
        )
        for deficit in ledger.deficit_report()
    ]
