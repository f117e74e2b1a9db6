"""Read-only player pool grouped by position, team, and roster slot."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from lolopt.config import ContestRules
from lolopt.models import Player, Position, Slot, TeamStack, slot_salary


logger = logging.getLogger(__name__)


class PlayerPool:
    """Frozen snapshot of the candidates for one optimization run."""

    def __init__(
        self,
        players: Sequence[Player],
        rules: ContestRules,
        *,
        team_stacks: Iterable[TeamStack] = (),
        exclude_player_ids: Iterable[str] = (),
    ):
        excluded = set(exclude_player_ids)
        self.rules = rules
        self._players: Tuple[Player, ...] = tuple(
            sorted((p for p in players if p.player_id not in excluded), key=lambda p: p.player_id)
        )
        self._by_id: Dict[str, Player] = {p.player_id: p for p in self._players}
        self._stacks: Dict[str, TeamStack] = {stack.team: stack for stack in team_stacks}

        by_position: Dict[Position, List[Player]] = defaultdict(list)
        by_team: Dict[str, List[Player]] = defaultdict(list)
        for player in self._players:
            by_position[player.position].append(player)
            by_team[player.team].append(player)
        self._by_position = {pos: tuple(items) for pos, items in by_position.items()}
        self._by_team = {team: tuple(items) for team, items in by_team.items()}

        self._by_slot: Dict[Slot, Tuple[Player, ...]] = {}
        self._cheapest: Dict[Slot, Optional[int]] = {}
        for slot in rules.roster_order:
            allowed = rules.eligible_positions(slot)
            eligible = tuple(p for p in self._players if p.position in allowed)
            self._by_slot[slot] = eligible
            self._cheapest[slot] = (
                min(slot_salary(p, slot, rules.captain_multiplier) for p in eligible) if eligible else None
            )

        if excluded:
            logger.info("Player pool excludes %s players (%s remain)", len(players) - len(self._players), len(self._players))

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self):
        return iter(self._players)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._by_id

    @property
    def players(self) -> Tuple[Player, ...]:
        return self._players

    @property
    def teams(self) -> Tuple[str, ...]:
        return tuple(sorted(self._by_team))

    def get(self, player_id: str) -> Optional[Player]:
        return self._by_id.get(player_id)

    def by_position(self, position: Position) -> Tuple[Player, ...]:
        return self._by_position.get(position, ())

    def by_team(self, team: str) -> Tuple[Player, ...]:
        return self._by_team.get(team, ())

    def eligible(self, slot: Slot) -> Tuple[Player, ...]:
        return self._by_slot.get(slot, ())

    def eligible_slots(self, player: Player) -> Tuple[Slot, ...]:
        return tuple(
            slot for slot in self.rules.roster_order if player.position in self.rules.eligible_positions(slot)
        )

    def cheapest_salary(self, slot: Slot) -> Optional[int]:
        """Lowest adjusted salary among players eligible for ``slot``."""

        return self._cheapest.get(slot)

    def empty_slots(self) -> List[Slot]:
        return [slot for slot in self.rules.roster_order if not self._by_slot.get(slot)]

    def min_lineup_salary(self, slots: Optional[Iterable[Slot]] = None) -> int:
        """Lower bound on the adjusted salary needed to fill ``slots``."""

        total = 0
        for slot in self.rules.roster_order if slots is None else slots:
            cheapest = self._cheapest.get(slot)
            if cheapest is not None:
                total += cheapest
        return total

    def stack_plus(self, team: str) -> float:
        stack = self._stacks.get(team)
        return stack.stack_plus if stack is not None else 0.0
