"""Contest configuration for supported site/sport combinations."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from lolopt.models import Position, Slot


_HUMAN_POSITIONS: FrozenSet[Position] = frozenset(
    {Position.TOP, Position.JNG, Position.MID, Position.ADC, Position.SUP}
)


@dataclass(frozen=True)
class ContestRules:
    site: str
    sport: str
    salary_cap: int
    roster_order: Tuple[Slot, ...]
    slot_positions: Mapping[Slot, FrozenSet[Position]]
    captain_multiplier: float = 1.5
    max_players_per_team: Optional[int] = 4
    require_team_stack: bool = False

    def eligible_positions(self, slot: Slot) -> FrozenSet[Position]:
        return self.slot_positions.get(slot, frozenset())


def _default_slot_positions(captain_positions: Iterable[Position] = _HUMAN_POSITIONS) -> Dict[Slot, FrozenSet[Position]]:
    mapping: Dict[Slot, FrozenSet[Position]] = {Slot.CPT: frozenset(captain_positions)}
    for position in Position:
        mapping[Slot(position.value)] = frozenset({position})
    return mapping


_CONTEST_RULES: Dict[Tuple[str, str], ContestRules] = {
    ("DK_CAPTAIN", "LOL"): ContestRules(
        site="DK_CAPTAIN",
        sport="LOL",
        salary_cap=50_000,
        roster_order=(Slot.CPT, Slot.TOP, Slot.JNG, Slot.MID, Slot.ADC, Slot.SUP, Slot.TEAM),
        slot_positions=_default_slot_positions(),
        captain_multiplier=1.5,
        max_players_per_team=4,
    ),
}


DEFAULT_SITE = "DK_CAPTAIN"
DEFAULT_SPORT = "LOL"


def get_rules(site: str, sport: str) -> ContestRules:
    """Fetch rules for a site/sport pair, raising KeyError if missing."""

    key = (site.upper(), sport.upper())
    if key not in _CONTEST_RULES:
        raise KeyError(f"No contest rules configured for site={site!r}, sport={sport!r}")
    return _CONTEST_RULES[key]


def rules_from_config(
    *,
    site: str = DEFAULT_SITE,
    sport: str = DEFAULT_SPORT,
    salary_cap: Optional[int] = None,
    slot_requirements: Optional[Iterable[Slot]] = None,
    captain_multiplier: Optional[float] = None,
    captain_positions: Optional[Iterable[Position]] = None,
    max_players_per_team: Optional[int] = None,
    override_team_limit: bool = False,
    require_team_stack: bool = False,
) -> ContestRules:
    """Start from the registry entry and apply per-run overrides."""

    rules = get_rules(site, sport)
    updates: dict = {"require_team_stack": require_team_stack}
    if salary_cap is not None:
        updates["salary_cap"] = salary_cap
    if slot_requirements is not None:
        updates["roster_order"] = tuple(Slot(slot) for slot in slot_requirements)
    if captain_multiplier is not None:
        updates["captain_multiplier"] = captain_multiplier
    if captain_positions is not None:
        updates["slot_positions"] = _default_slot_positions(Position(pos) for pos in captain_positions)
    if override_team_limit:
        updates["max_players_per_team"] = max_players_per_team
    return replace(rules, **updates)
