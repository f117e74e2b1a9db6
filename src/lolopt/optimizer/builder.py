"""Randomized, exposure-aware construction of a single lineup.

Each slot is filled by weighted sampling over eligible players::

    w = base_projection * leverage_factor * stack_prior * exposure_headroom

Candidates that fail the constraint engine are masked out and the draw is
repeated; a slot that exhausts its attempt budget backtracks one slot. The
builder only reads the ledger it is given.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from lolopt.models import SLOT_FILL_ORDER, Lineup, Player, Slot, slot_projection, slot_salary
from lolopt.optimizer.constraints import ConstraintEngine, RejectReason
from lolopt.optimizer.ledger import (
    PLAYER,
    POSITION,
    STACK,
    TEAM,
    EntityKey,
    ExposureLedger,
    entities_added,
)
from lolopt.optimizer.scorer import leverage_factor
from lolopt.pool import PlayerPool


logger = logging.getLogger(__name__)

_MIN_BASE_WEIGHT = 1e-6
_MIN_STACK_PRIOR = 0.05


class FailureMode(str, Enum):
    INFEASIBLE = "infeasible"
    BACKTRACK_EXHAUSTED = "backtrack_exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BuildFailure:
    mode: FailureMode
    reason: str
    slot: Optional[Slot] = None


@dataclass(frozen=True)
class BuildPlan:
    """Per-attempt guidance chosen by the portfolio loop."""

    strategy: str = "balanced"
    leverage_seeking: bool = False
    forced_stack: Optional[Tuple[str, int]] = None
    preferred: Tuple[EntityKey, ...] = ()
    required: Tuple[EntityKey, ...] = ()
    locked_player_ids: Tuple[str, ...] = ()


@dataclass
class BuildResult:
    lineup: Optional[Lineup] = None
    failure: Optional[BuildFailure] = None
    restarts: int = 0
    backtracks: int = 0
    rejections: Counter = field(default_factory=Counter)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.lineup is not None


@dataclass(frozen=True)
class BuilderSettings:
    max_slot_attempts: int = 32
    deadline_ms: float = 500.0
    max_restarts: int = 3
    stack_prior_scale: float = 200.0
    shortfall_boost: float = 3.0


class _Abort(Exception):
    def __init__(self, failure: BuildFailure):
        super().__init__(failure.reason)
        self.failure = failure


def weighted_index(weights: np.ndarray, rng: np.random.Generator) -> int:
    """Draw an index with probability proportional to ``weights`` (renormalized)."""

    cumulative = np.cumsum(weights)
    total = float(cumulative[-1])
    idx = int(np.searchsorted(cumulative, rng.random() * total, side="right"))
    return min(idx, len(weights) - 1)


class LineupBuilder:
    def __init__(
        self,
        pool: PlayerPool,
        engine: ConstraintEngine,
        settings: BuilderSettings = BuilderSettings(),
    ):
        self.pool = pool
        self.engine = engine
        self.rules = engine.rules
        self.settings = settings
        self.fill_order: Tuple[Slot, ...] = tuple(
            slot for slot in SLOT_FILL_ORDER if slot in self.rules.roster_order
        ) + tuple(slot for slot in self.rules.roster_order if slot not in SLOT_FILL_ORDER)

    # -- weights -----------------------------------------------------------

    def stack_prior(self, team: str) -> float:
        return max(_MIN_STACK_PRIOR, 1.0 + self.pool.stack_plus(team) / self.settings.stack_prior_scale)

    def exposure_headroom(
        self,
        slots: Mapping[Slot, Player],
        player: Player,
        slot: Slot,
        ledger: Optional[ExposureLedger],
    ) -> float:
        if ledger is None:
            return 1.0
        factor = 1.0
        for entity in entities_added(slots, player, slot):
            factor *= ledger.headroom_factor(entity)
            if factor <= 0.0:
                return 0.0
        return factor

    def candidate_weight(
        self,
        player: Player,
        slot: Slot,
        slots: Mapping[Slot, Player],
        ledger: Optional[ExposureLedger],
        plan: BuildPlan,
    ) -> float:
        base = max(slot_projection(player, slot, self.rules.captain_multiplier), _MIN_BASE_WEIGHT)
        leverage = leverage_factor(player.ownership) if plan.leverage_seeking else 1.0
        weight = base * leverage * self.stack_prior(player.team) * self.exposure_headroom(slots, player, slot, ledger)
        if weight > 0.0 and plan.preferred and any(_serves(e, player, slot, slots) for e in plan.preferred):
            weight *= self.settings.shortfall_boost
        return weight

    # -- construction ------------------------------------------------------

    def build(
        self,
        ledger: Optional[ExposureLedger],
        plan: BuildPlan,
        rng: np.random.Generator,
        *,
        cancel=None,
    ) -> BuildResult:
        """Produce one feasible lineup or a typed failure."""

        started = time.perf_counter()
        deadline = started + self.settings.deadline_ms / 1000.0
        engine = self.engine.with_ledger(ledger)
        result = BuildResult()

        empty = self.pool.empty_slots()
        if empty:
            result.failure = BuildFailure(FailureMode.INFEASIBLE, "position_pool_empty", empty[0])
            return self._finish(result, started)
        if self.pool.min_lineup_salary() > self.rules.salary_cap:
            result.failure = BuildFailure(FailureMode.INFEASIBLE, "salary_cap")
            return self._finish(result, started)

        last_failure: Optional[BuildFailure] = None
        for restart in range(self.settings.max_restarts + 1):
            result.restarts = restart
            slots: Dict[Slot, Player] = {}
            try:
                self._seed(slots, plan, engine, ledger, rng, result)
                if not self._budget_feasible(engine, slots, [s for s in self.fill_order if s not in slots]):
                    last_failure = BuildFailure(FailureMode.INFEASIBLE, "seeded_salary")
                    continue
                lineup = self._fill(slots, plan, engine, ledger, rng, result, deadline, cancel)
            except _Abort as abort:
                last_failure = abort.failure
                if abort.failure.mode is FailureMode.CANCELLED or abort.failure.reason == "deadline":
                    break
                continue
            result.lineup = lineup
            return self._finish(result, started)

        result.failure = last_failure or BuildFailure(FailureMode.BACKTRACK_EXHAUSTED, "restart_limit")
        return self._finish(result, started)

    def _finish(self, result: BuildResult, started: float) -> BuildResult:
        result.elapsed = time.perf_counter() - started
        if result.failure is not None:
            logger.debug(
                "Builder failed (%s: %s) after %s restarts, %s backtracks",
                result.failure.mode.value,
                result.failure.reason,
                result.restarts,
                result.backtracks,
            )
        return result

    def _budget_feasible(self, engine: ConstraintEngine, slots: Mapping[Slot, Player], open_slots: Sequence[Slot]) -> bool:
        remaining = self.rules.salary_cap - engine.committed_salary(slots)
        return remaining >= self.pool.min_lineup_salary(open_slots)

    def _seed(
        self,
        slots: Dict[Slot, Player],
        plan: BuildPlan,
        engine: ConstraintEngine,
        ledger: Optional[ExposureLedger],
        rng: np.random.Generator,
        result: BuildResult,
    ) -> None:
        # The captain is the most constrained seed, so a required captain position goes first.
        for entity in plan.required:
            if entity.kind == POSITION:
                self._seed_captain_position(slots, entity.name, plan, engine, ledger, rng, result)

        for player_id in plan.locked_player_ids:
            self._seed_player(slots, player_id, "locked_player", plan, engine, ledger, rng, result)

        stacks: List[Tuple[str, int]] = []
        for entity in plan.required:
            if entity.kind == PLAYER:
                self._seed_player(slots, entity.name, "required_player", plan, engine, ledger, rng, result)
            elif entity.kind == TEAM:
                self._seed_team(slots, entity.name, 1, plan, engine, ledger, rng, result)
            elif entity.kind == STACK:
                stacks.append((entity.name, entity.size))
        if plan.forced_stack is not None:
            stacks.append(plan.forced_stack)
        for team, size in stacks:
            self._seed_team(slots, team, size, plan, engine, ledger, rng, result)

    def _seed_player(self, slots, player_id, reason, plan, engine, ledger, rng, result) -> None:
        if any(p.player_id == player_id for p in slots.values()):
            return
        player = self.pool.get(player_id)
        if player is None:
            raise _Abort(BuildFailure(FailureMode.INFEASIBLE, f"{reason}_unavailable"))
        pairs = [(player, slot) for slot in self.pool.eligible_slots(player) if slot not in slots]
        if not self._place_one(slots, pairs, plan, engine, ledger, rng, result):
            raise _Abort(BuildFailure(FailureMode.INFEASIBLE, f"{reason}_blocked"))

    def _seed_captain_position(self, slots, position, plan, engine, ledger, rng, result) -> None:
        captain = slots.get(Slot.CPT)
        if captain is not None:
            if captain.position.value != position:
                raise _Abort(BuildFailure(FailureMode.INFEASIBLE, "captain_position_blocked", Slot.CPT))
            return
        pairs = [(p, Slot.CPT) for p in self.pool.eligible(Slot.CPT) if p.position.value == position]
        if not self._place_one(slots, pairs, plan, engine, ledger, rng, result):
            raise _Abort(BuildFailure(FailureMode.INFEASIBLE, "captain_position_blocked", Slot.CPT))

    def _seed_team(self, slots, team, size, plan, engine, ledger, rng, result) -> None:
        while sum(1 for p in slots.values() if p.team == team) < size:
            pairs = [
                (player, slot)
                for player in self.pool.by_team(team)
                for slot in self.pool.eligible_slots(player)
                if slot not in slots
            ]
            if not self._place_one(slots, pairs, plan, engine, ledger, rng, result):
                raise _Abort(BuildFailure(FailureMode.INFEASIBLE, "stack_unavailable"))

    def _place_one(
        self,
        slots: Dict[Slot, Player],
        pairs: Sequence[Tuple[Player, Slot]],
        plan: BuildPlan,
        engine: ConstraintEngine,
        ledger: Optional[ExposureLedger],
        rng: np.random.Generator,
        result: BuildResult,
    ) -> bool:
        feasible: List[Tuple[Player, Slot]] = []
        for player, slot in pairs:
            reasons = engine.check_add(slots, player, slot)
            if not reasons and not self._slack_ok(engine, slots, player, slot):
                reasons = (RejectReason.SALARY_OVER,)
            if reasons:
                result.rejections.update(reason.value for reason in reasons)
                continue
            feasible.append((player, slot))
        if not feasible:
            return False
        weights = np.array([self.candidate_weight(p, s, slots, ledger, plan) for p, s in feasible], dtype=np.float64)
        if float(weights.sum()) <= 0.0:
            return False
        player, slot = feasible[weighted_index(weights, rng)]
        slots[slot] = player
        return True

    def _slack_ok(self, engine: ConstraintEngine, slots: Mapping[Slot, Player], player: Player, slot: Slot) -> bool:
        committed = engine.committed_salary(slots) + slot_salary(player, slot, self.rules.captain_multiplier)
        rest = [s for s in self.fill_order if s not in slots and s is not slot]
        return self.rules.salary_cap - committed >= self.pool.min_lineup_salary(rest)

    def _fill(
        self,
        slots: Dict[Slot, Player],
        plan: BuildPlan,
        engine: ConstraintEngine,
        ledger: Optional[ExposureLedger],
        rng: np.random.Generator,
        result: BuildResult,
        deadline: float,
        cancel,
    ) -> Lineup:
        open_slots = [slot for slot in self.fill_order if slot not in slots]
        tried: Dict[Slot, Set[str]] = {slot: set() for slot in open_slots}
        backtrack_limit = 4 * max(1, len(open_slots))
        backtracks = 0
        i = 0
        while i < len(open_slots):
            if cancel is not None and cancel.is_set():
                raise _Abort(BuildFailure(FailureMode.CANCELLED, "cancelled"))
            if time.perf_counter() > deadline:
                raise _Abort(BuildFailure(FailureMode.BACKTRACK_EXHAUSTED, "deadline"))

            slot = open_slots[i]
            slot_rejections: Counter = Counter()
            pick = self._sample_slot(slot, slots, plan, engine, ledger, rng, tried[slot], slot_rejections)
            result.rejections.update(slot_rejections)
            if pick is not None:
                slots[slot] = pick
                i += 1
                continue

            if i == 0 or backtracks >= backtrack_limit:
                reason = slot_rejections.most_common(1)[0][0] if slot_rejections else "no_candidates"
                raise _Abort(BuildFailure(FailureMode.BACKTRACK_EXHAUSTED, reason, slot))
            backtracks += 1
            result.backtracks += 1
            tried[slot].clear()
            i -= 1
            previous = open_slots[i]
            tried[previous].add(slots.pop(previous).player_id)

        return Lineup.from_slots(
            slots,
            roster_order=self.rules.roster_order,
            captain_multiplier=self.rules.captain_multiplier,
        )

    def _sample_slot(
        self,
        slot: Slot,
        slots: Mapping[Slot, Player],
        plan: BuildPlan,
        engine: ConstraintEngine,
        ledger: Optional[ExposureLedger],
        rng: np.random.Generator,
        tried: Set[str],
        rejections: Counter,
    ) -> Optional[Player]:
        candidates = [p for p in self.pool.eligible(slot) if p.player_id not in tried]
        if not candidates:
            return None
        weights = np.array(
            [self.candidate_weight(p, slot, slots, ledger, plan) for p in candidates],
            dtype=np.float64,
        )
        masked = int(np.count_nonzero(weights <= 0.0))
        if masked:
            rejections[RejectReason.EXPOSURE_CAP.value] += masked

        for _ in range(self.settings.max_slot_attempts):
            if float(weights.sum()) <= 0.0:
                return None
            idx = weighted_index(weights, rng)
            candidate = candidates[idx]
            reasons: Iterable[RejectReason] = engine.check_add(slots, candidate, slot)
            if not reasons and not self._slack_ok(engine, slots, candidate, slot):
                reasons = (RejectReason.SALARY_OVER,)
            if not reasons:
                return candidate
            rejections.update(reason.value for reason in reasons)
            weights[idx] = 0.0
            tried.add(candidate.player_id)
        return None


def _serves(entity: EntityKey, player: Player, slot: Slot, slots: Mapping[Slot, Player]) -> bool:
    """Whether placing ``player`` moves the lineup toward containing ``entity``."""

    if entity.kind == PLAYER:
        return player.player_id == entity.name
    if entity.kind == TEAM:
        return player.team == entity.name and all(p.team != entity.name for p in slots.values())
    if entity.kind == POSITION:
        return slot is Slot.CPT and player.position.value == entity.name
    if entity.kind == STACK:
        return player.team == entity.name and sum(1 for p in slots.values() if p.team == entity.name) < entity.size
    return False
