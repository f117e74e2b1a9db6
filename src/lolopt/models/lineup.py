"""Lineup containers produced by the builder and committed by the portfolio loop."""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .player import Player, Position


class Slot(str, Enum):
    CPT = "CPT"
    TOP = "TOP"
    JNG = "JNG"
    MID = "MID"
    ADC = "ADC"
    SUP = "SUP"
    TEAM = "TEAM"


# Fill order used by the builder: captain first, then the team entity, then
# the higher-variance positions so salary pressure is resolved early.
SLOT_FILL_ORDER: Tuple[Slot, ...] = (
    Slot.CPT,
    Slot.TEAM,
    Slot.MID,
    Slot.ADC,
    Slot.JNG,
    Slot.TOP,
    Slot.SUP,
)


def captain_salary(salary: int, multiplier: float) -> int:
    """Adjusted captain salary, rounded half up."""

    return int(math.floor(salary * multiplier + 0.5))


def slot_salary(player: Player, slot: Slot, multiplier: float) -> int:
    if slot is Slot.CPT:
        return captain_salary(player.salary, multiplier)
    return player.salary


def slot_projection(player: Player, slot: Slot, multiplier: float) -> float:
    if slot is Slot.CPT:
        return player.projection * multiplier
    return player.projection


@dataclass(frozen=True)
class SlotAssignment:
    slot: Slot
    player: Player
    salary: int
    projection: float


@dataclass(frozen=True)
class Lineup:
    """Immutable lineup; assignments are kept in roster order."""

    assignments: Tuple[SlotAssignment, ...]
    captain_multiplier: float = 1.5

    @classmethod
    def from_slots(
        cls,
        slots: Mapping[Slot, Player],
        *,
        roster_order: Iterable[Slot],
        captain_multiplier: float = 1.5,
    ) -> "Lineup":
        assignments = []
        for slot in roster_order:
            player = slots.get(slot)
            if player is None:
                continue
            assignments.append(
                SlotAssignment(
                    slot=slot,
                    player=player,
                    salary=slot_salary(player, slot, captain_multiplier),
                    projection=slot_projection(player, slot, captain_multiplier),
                )
            )
        return cls(assignments=tuple(assignments), captain_multiplier=captain_multiplier)

    @property
    def slots(self) -> Dict[Slot, Player]:
        return {assignment.slot: assignment.player for assignment in self.assignments}

    @property
    def players(self) -> Tuple[Player, ...]:
        return tuple(assignment.player for assignment in self.assignments)

    @property
    def player_ids(self) -> Tuple[str, ...]:
        return tuple(assignment.player.player_id for assignment in self.assignments)

    @property
    def captain(self) -> Optional[Player]:
        for assignment in self.assignments:
            if assignment.slot is Slot.CPT:
                return assignment.player
        return None

    @property
    def captain_position(self) -> Optional[Position]:
        captain = self.captain
        return captain.position if captain is not None else None

    @property
    def total_salary(self) -> int:
        return sum(assignment.player.salary for assignment in self.assignments)

    @property
    def adjusted_total_salary(self) -> int:
        return sum(assignment.salary for assignment in self.assignments)

    @property
    def projection(self) -> float:
        return sum(assignment.projection for assignment in self.assignments)

    def team_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for assignment in self.assignments:
            team = assignment.player.team
            counts[team] = counts.get(team, 0) + 1
        return counts

    @property
    def fingerprint(self) -> str:
        return lineup_fingerprint(
            (assignment.slot, assignment.player.player_id) for assignment in self.assignments
        )


def lineup_fingerprint(pairs: Iterable[Tuple[Slot, str]]) -> str:
    """Stable hash over sorted ``slot=player_id`` pairs."""

    tokens = sorted(f"{slot.value}={player_id}" for slot, player_id in pairs)
    return hashlib.sha1("|".join(tokens).encode("utf-8")).hexdigest()
