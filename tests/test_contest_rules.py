import pytest

from lolopt.config import get_rules, rules_from_config
from lolopt.models import Position, Slot


def test_get_rules_handles_site_and_sport_uppercase():
    rules = get_rules("dk_captain", "lol")
    assert rules.site == "DK_CAPTAIN"
    assert rules.salary_cap == 50_000
    assert rules.max_players_per_team == 4
    assert rules.roster_order == (Slot.CPT, Slot.TOP, Slot.JNG, Slot.MID, Slot.ADC, Slot.SUP, Slot.TEAM)
    assert Position.TEAM not in rules.eligible_positions(Slot.CPT)
    assert rules.eligible_positions(Slot.TEAM) == frozenset({Position.TEAM})


def test_get_rules_missing_raises():
    with pytest.raises(KeyError):
        get_rules("DK_CAPTAIN", "CURLING")
    with pytest.raises(KeyError):
        rules_from_config(site="DK_CLASSIC")


def test_rules_from_config_applies_overrides():
    rules = rules_from_config(
        salary_cap=45_000,
        captain_multiplier=2.0,
        captain_positions=["MID", "ADC"],
        max_players_per_team=None,
        override_team_limit=True,
        require_team_stack=True,
    )
    assert rules.salary_cap == 45_000
    assert rules.captain_multiplier == 2.0
    assert rules.eligible_positions(Slot.CPT) == frozenset({Position.MID, Position.ADC})
    assert rules.max_players_per_team is None
    assert rules.require_team_stack

    untouched = rules_from_config(max_players_per_team=None)
    assert untouched.max_players_per_team == 4


def test_slot_requirements_reorder_roster():
    rules = rules_from_config(slot_requirements=["CPT", "MID", "ADC", "TEAM"])
    assert rules.roster_order == (Slot.CPT, Slot.MID, Slot.ADC, Slot.TEAM)
    assert get_rules("DK_CAPTAIN", "LOL").roster_order[1] is Slot.TOP
