"""Hard roster, salary, and exposure rules for a single lineup."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple

from lolopt.config import ContestRules
from lolopt.models import Lineup, Player, Slot, slot_salary
from lolopt.optimizer.ledger import ExposureLedger, entities_added, entities_of


class RejectReason(str, Enum):
    SALARY_OVER = "salary_over"
    SLOT_CONFLICT = "slot_conflict"
    DUPLICATE_PLAYER = "duplicate_player"
    EXPOSURE_CAP = "exposure_cap"
    TEAM_LIMIT = "team_limit"
    MISSING_STACK = "missing_stack"


@dataclass(frozen=True)
class ValidationResult:
    reasons: Tuple[RejectReason, ...] = ()
    details: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.reasons


class ConstraintEngine:
    """Validates complete lineups and screens candidates for partial ones."""

    def __init__(
        self,
        rules: ContestRules,
        *,
        ledger: Optional[ExposureLedger] = None,
        forbidden_player_ids: Iterable[str] = (),
    ):
        self.rules = rules
        self.ledger = ledger
        self.forbidden_player_ids: FrozenSet[str] = frozenset(forbidden_player_ids)

    def with_ledger(self, ledger: Optional[ExposureLedger]) -> "ConstraintEngine":
        return ConstraintEngine(self.rules, ledger=ledger, forbidden_player_ids=self.forbidden_player_ids)

    def committed_salary(self, slots: Mapping[Slot, Player]) -> int:
        multiplier = self.rules.captain_multiplier
        return sum(slot_salary(player, slot, multiplier) for slot, player in slots.items())

    def check_add(self, slots: Mapping[Slot, Player], candidate: Player, slot: Slot) -> Tuple[RejectReason, ...]:
        """Reasons ``candidate`` cannot take ``slot`` in the partial lineup ``slots``."""

        rules = self.rules
        reasons: List[RejectReason] = []

        if (
            slot not in rules.roster_order
            or slot in slots
            or candidate.position not in rules.eligible_positions(slot)
        ):
            reasons.append(RejectReason.SLOT_CONFLICT)

        if any(existing.player_id == candidate.player_id for existing in slots.values()):
            reasons.append(RejectReason.DUPLICATE_PLAYER)

        salary = self.committed_salary(slots) + slot_salary(candidate, slot, rules.captain_multiplier)
        if salary > rules.salary_cap:
            reasons.append(RejectReason.SALARY_OVER)

        team_count = sum(1 for existing in slots.values() if existing.team == candidate.team)
        if rules.max_players_per_team is not None and team_count + 1 > rules.max_players_per_team:
            reasons.append(RejectReason.TEAM_LIMIT)

        if rules.require_team_stack and len(slots) + 1 == len(rules.roster_order):
            counts = Counter(existing.team for existing in slots.values())
            counts[candidate.team] += 1
            if max(counts.values()) < 2:
                reasons.append(RejectReason.MISSING_STACK)

        if candidate.player_id in self.forbidden_player_ids:
            reasons.append(RejectReason.EXPOSURE_CAP)
        elif self.ledger is not None:
            if self.ledger.violations(entities_added(slots, candidate, slot)):
                reasons.append(RejectReason.EXPOSURE_CAP)

        return tuple(reasons)

    def can_add(self, slots: Mapping[Slot, Player], candidate: Player, slot: Slot) -> bool:
        return not self.check_add(slots, candidate, slot)

    def validate(self, lineup: Lineup) -> ValidationResult:
        rules = self.rules
        reasons: List[RejectReason] = []
        details: List[str] = []

        def reject(reason: RejectReason, detail: str) -> None:
            if reason not in reasons:
                reasons.append(reason)
            details.append(detail)

        slot_counts = Counter(assignment.slot for assignment in lineup.assignments)
        for slot in rules.roster_order:
            if slot_counts.get(slot, 0) != 1:
                reject(RejectReason.SLOT_CONFLICT, f"slot {slot.value} filled {slot_counts.get(slot, 0)} times")
        for slot in slot_counts:
            if slot not in rules.roster_order:
                reject(RejectReason.SLOT_CONFLICT, f"slot {slot.value} is not part of the roster")
        for assignment in lineup.assignments:
            if assignment.player.position not in rules.eligible_positions(assignment.slot):
                reject(
                    RejectReason.SLOT_CONFLICT,
                    f"{assignment.player.player_id} ({assignment.player.position.value}) cannot fill {assignment.slot.value}",
                )

        id_counts = Counter(lineup.player_ids)
        for player_id, count in sorted(id_counts.items()):
            if count > 1:
                reject(RejectReason.DUPLICATE_PLAYER, f"{player_id} occupies {count} slots")

        adjusted = sum(
            slot_salary(assignment.player, assignment.slot, rules.captain_multiplier)
            for assignment in lineup.assignments
        )
        if adjusted > rules.salary_cap:
            reject(RejectReason.SALARY_OVER, f"adjusted salary {adjusted} exceeds cap {rules.salary_cap}")

        team_counts = lineup.team_counts()
        if rules.max_players_per_team is not None:
            for team, count in sorted(team_counts.items()):
                if count > rules.max_players_per_team:
                    reject(RejectReason.TEAM_LIMIT, f"{team} fills {count} slots (max {rules.max_players_per_team})")

        if rules.require_team_stack and (not team_counts or max(team_counts.values()) < 2):
            reject(RejectReason.MISSING_STACK, "no team contributes at least two players")

        blocked = sorted(self.forbidden_player_ids.intersection(lineup.player_ids))
        if blocked:
            reject(RejectReason.EXPOSURE_CAP, f"forbidden players: {', '.join(blocked)}")
        if self.ledger is not None:
            over = self.ledger.violations(entities_of(lineup))
            if over:
                reject(RejectReason.EXPOSURE_CAP, "exposure cap reached: " + ", ".join(key.label for key in over))

        return ValidationResult(reasons=tuple(reasons), details=tuple(details))
