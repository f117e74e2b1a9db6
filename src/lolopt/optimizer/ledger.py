"""Running exposure counts for the portfolio under construction.

The ledger tracks, for every entity a lineup can contain (a player, a team,
the captain's position, or a k-stack for a team), how many committed lineups
contain it. Bounds are held as fractions and converted to lineup counts
against the requested portfolio size ``N``: a max bound ``b`` allows at most
``ceil(b * N)`` lineups, which keeps achieved exposure within ``b + 1/N``; a
min bound ``a`` requires ``ceil(a * N)``.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from lolopt.models import Lineup, Player, Slot
from lolopt.optimizer.errors import InternalInconsistencyError
from lolopt.schemas import STACK_SIZES, ExposureBound, ExposureConfig


logger = logging.getLogger(__name__)

PLAYER = "player"
TEAM = "team"
POSITION = "position"
STACK = "stack"

_EPS = 1e-9


class EntityKey(NamedTuple):
    kind: str
    name: str
    size: int = 0

    @property
    def label(self) -> str:
        if self.kind == STACK:
            return f"{STACK}:{self.name}:{self.size}"
        return f"{self.kind}:{self.name}"


def player_key(player_id: str) -> EntityKey:
    return EntityKey(PLAYER, player_id)


def team_key(team: str) -> EntityKey:
    return EntityKey(TEAM, team)


def position_key(position: str) -> EntityKey:
    return EntityKey(POSITION, position)


def stack_key(team: str, size: int) -> EntityKey:
    return EntityKey(STACK, team, size)


def entities_of(lineup: Lineup) -> Set[EntityKey]:
    """Every ledger entity contained in ``lineup``."""

    keys: Set[EntityKey] = {player_key(pid) for pid in lineup.player_ids}
    for team, count in lineup.team_counts().items():
        keys.add(team_key(team))
        keys.update(stack_key(team, size) for size in STACK_SIZES if count >= size)
    captain_position = lineup.captain_position
    if captain_position is not None:
        keys.add(position_key(captain_position.value))
    return keys


def entities_added(slots: Mapping[Slot, Player], player: Player, slot: Slot) -> Set[EntityKey]:
    """Entities that placing ``player`` in ``slot`` would add to a partial lineup."""

    team_count = sum(1 for existing in slots.values() if existing.team == player.team)
    keys: Set[EntityKey] = {player_key(player.player_id)}
    if team_count == 0:
        keys.add(team_key(player.team))
    if team_count + 1 in STACK_SIZES:
        keys.add(stack_key(player.team, team_count + 1))
    if slot is Slot.CPT:
        keys.add(position_key(player.position.value))
    return keys


@dataclass(frozen=True)
class Bound:
    """Exposure bound held as fractions of the portfolio."""

    min: float = 0.0
    max: float = 1.0
    target: Optional[float] = None

    @classmethod
    def from_percent(cls, bound: ExposureBound) -> "Bound":
        return cls(
            min=bound.min / 100.0,
            max=bound.max / 100.0,
            target=None if bound.target is None else bound.target / 100.0,
        )

    @property
    def has_max(self) -> bool:
        return self.max < 1.0 - _EPS

    @property
    def is_trivial(self) -> bool:
        return self.min <= 0.0 and not self.has_max and self.target is None

    def max_count(self, n: int) -> int:
        if not self.has_max:
            return n
        return int(math.ceil(self.max * n - _EPS))

    def min_count(self, n: int) -> int:
        if self.min <= 0.0:
            return 0
        return int(math.ceil(self.min * n - _EPS))

    def goal_count(self, n: int) -> float:
        goal = float(self.min_count(n))
        if self.target is not None:
            goal = max(goal, self.target * n)
        return goal


@dataclass(frozen=True)
class Deficit:
    entity: EntityKey
    count: int
    required_count: int
    achieved: float
    required: float

    @property
    def missing(self) -> int:
        return self.required_count - self.count


class ExposureBounds:
    """Resolved bound per entity, built once per run."""

    def __init__(self, bounds: Mapping[EntityKey, Bound]):
        self._bounds: Dict[EntityKey, Bound] = {key: bound for key, bound in bounds.items() if not bound.is_trivial}

    @classmethod
    def from_config(cls, config: ExposureConfig, player_ids: Iterable[str]) -> "ExposureBounds":
        bounds: Dict[EntityKey, Bound] = {}
        default = Bound(min=config.global_min / 100.0, max=config.global_max / 100.0)
        for pid in player_ids:
            bounds[player_key(pid)] = default
        for pid, bound in config.players.items():
            bounds[player_key(pid)] = Bound.from_percent(bound)
        for team, bound in config.teams.items():
            bounds[team_key(team)] = Bound.from_percent(bound)
        for position, bound in config.positions.items():
            bounds[position_key(position.value)] = Bound.from_percent(bound)
        for team, sizes in config.stacks.items():
            for size, bound in sizes.items():
                bounds[stack_key(team, size)] = Bound.from_percent(bound)
        return cls(bounds)

    def get(self, entity: EntityKey) -> Optional[Bound]:
        return self._bounds.get(entity)

    def items(self):
        return self._bounds.items()

    def __iter__(self):
        return iter(self._bounds)

    def __len__(self) -> int:
        return len(self._bounds)


class ExposureLedger:
    """Exposure counts owned by the portfolio loop (single writer)."""

    def __init__(self, bounds: ExposureBounds, portfolio_size: int, *, frozen: bool = False):
        if portfolio_size <= 0:
            raise ValueError("portfolio_size must be positive")
        self.bounds = bounds
        self.portfolio_size = portfolio_size
        self._counts: Counter[EntityKey] = Counter()
        self._lineups = 0
        self._frozen = frozen

    @property
    def lineups(self) -> int:
        return self._lineups

    @property
    def remaining(self) -> int:
        return max(0, self.portfolio_size - self._lineups)

    def count(self, entity: EntityKey) -> int:
        return self._counts.get(entity, 0)

    def percentage(self, entity: EntityKey) -> float:
        if self._lineups == 0:
            return 0.0
        return self.count(entity) / self._lineups

    def counts(self) -> Dict[EntityKey, int]:
        return {key: value for key, value in self._counts.items() if value > 0}

    def headroom(self, entity: EntityKey) -> Tuple[float, float]:
        """Return ``(shortfall, surplus)`` in lineup units against the target size."""

        bound = self.bounds.get(entity)
        if bound is None:
            return 0.0, 0.0
        count = self.count(entity)
        n = self.portfolio_size
        shortfall = max(0.0, bound.min * n - count)
        surplus = max(0.0, count - bound.max * n)
        return shortfall, surplus

    def can_include(self, entity: EntityKey) -> bool:
        bound = self.bounds.get(entity)
        if bound is None or not bound.has_max:
            return True
        return self.count(entity) + 1 <= bound.max_count(self.portfolio_size)

    def violations(self, entities: Iterable[EntityKey]) -> List[EntityKey]:
        return sorted((key for key in entities if not self.can_include(key)), key=lambda key: key.label)

    def would_violate(self, lineup: Lineup) -> bool:
        """True when committing ``lineup`` pushes any entity past its max."""

        return bool(self.violations(entities_of(lineup)))

    def headroom_factor(self, entity: EntityKey) -> float:
        """Selection multiplier: 0 at the cap, rising linearly with headroom, amplified below goal."""

        bound = self.bounds.get(entity)
        if bound is None:
            return 1.0
        n = self.portfolio_size
        count = self.count(entity)
        factor = 1.0
        if bound.has_max:
            cap = bound.max_count(n)
            remaining = cap - count
            if remaining <= 0:
                return 0.0
            factor = remaining / cap
        goal = bound.goal_count(n)
        if goal > count:
            factor *= 1.0 + (goal - count) / goal
        return factor

    def shortfalls(self) -> List[Tuple[EntityKey, int]]:
        """Entities below their minimum, largest missing count first."""

        n = self.portfolio_size
        missing: List[Tuple[EntityKey, int]] = []
        for entity, bound in self.bounds.items():
            needed = bound.min_count(n) - self.count(entity)
            if needed > 0:
                missing.append((entity, needed))
        missing.sort(key=lambda item: (-item[1], item[0].label))
        return missing

    def urgent_shortfalls(self) -> List[Tuple[EntityKey, int]]:
        """Shortfalls that every remaining lineup must serve to be met."""

        remaining = self.remaining
        return [(entity, needed) for entity, needed in self.shortfalls() if needed >= remaining]

    def deficit_report(self) -> List[Deficit]:
        n = self.portfolio_size
        report: List[Deficit] = []
        for entity, needed in self.shortfalls():
            bound = self.bounds.get(entity)
            assert bound is not None
            count = self.count(entity)
            report.append(
                Deficit(
                    entity=entity,
                    count=count,
                    required_count=bound.min_count(n),
                    achieved=self.percentage(entity),
                    required=bound.min,
                )
            )
        return report

    def commit(self, lineup: Lineup) -> None:
        self._ensure_writable()
        for entity in entities_of(lineup):
            self._counts[entity] += 1
        self._lineups += 1

    def rewind(self, lineup: Lineup) -> None:
        self._ensure_writable()
        entities = entities_of(lineup)
        if self._lineups <= 0 or any(self._counts.get(entity, 0) <= 0 for entity in entities):
            raise InternalInconsistencyError("Cannot rewind a lineup that was never committed to the ledger")
        for entity in entities:
            self._counts[entity] -= 1
            if self._counts[entity] == 0:
                del self._counts[entity]
        self._lineups -= 1

    def snapshot(self) -> "ExposureLedger":
        """Read-only copy handed to builders and worker processes."""

        copy = ExposureLedger(self.bounds, self.portfolio_size, frozen=True)
        copy._counts = Counter(self._counts)
        copy._lineups = self._lineups
        return copy

    def verify(self, lineups: Sequence[Lineup]) -> None:
        """Recount ``lineups`` and raise if the ledger disagrees."""

        expected: Counter[EntityKey] = Counter()
        for lineup in lineups:
            expected.update(entities_of(lineup))
        if len(lineups) != self._lineups or expected != Counter(self.counts()):
            logger.error(
                "Exposure ledger out of sync: %s lineups tracked vs %s committed",
                self._lineups,
                len(lineups),
            )
            raise InternalInconsistencyError("Exposure ledger disagrees with the committed portfolio")

    def _ensure_writable(self) -> None:
        if self._frozen:
            raise InternalInconsistencyError("Ledger snapshots are read-only")
