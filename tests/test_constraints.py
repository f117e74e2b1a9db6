import pytest

from lolopt.config import get_rules, rules_from_config
from lolopt.models import Lineup, Slot, captain_salary, lineup_fingerprint
from lolopt.optimizer.constraints import ConstraintEngine, RejectReason
from lolopt.optimizer.ledger import Bound, ExposureBounds, ExposureLedger, player_key

from tests.pools import by_id, make_lineup, make_player, sample_slate, standard_lineup


RULES = get_rules("DK_CAPTAIN", "LOL")


def test_valid_lineup_passes():
    players = by_id(sample_slate())
    lineup = standard_lineup(players)
    result = ConstraintEngine(RULES).validate(lineup)

    assert result.ok
    assert lineup.adjusted_total_salary <= RULES.salary_cap
    assert lineup.adjusted_total_salary == lineup.total_salary + 4000


def test_captain_salary_rounds_half_up():
    assert captain_salary(5001, 1.5) == 7502
    assert captain_salary(5000, 1.5) == 7500
    assert captain_salary(3333, 1.5) == 5000


def test_check_add_reports_slot_and_duplicate_conflicts():
    players = by_id(sample_slate())
    engine = ConstraintEngine(RULES)
    slots = {Slot.CPT: players["T1-MID"]}

    assert engine.check_add(slots, players["T1-MID"], Slot.MID) == (RejectReason.DUPLICATE_PLAYER,)
    assert RejectReason.SLOT_CONFLICT in engine.check_add(slots, players["T2-MID"], Slot.CPT)
    assert RejectReason.SLOT_CONFLICT in engine.check_add(slots, players["T2-TOP"], Slot.MID)
    assert RejectReason.SLOT_CONFLICT in engine.check_add({}, players["T1-TEAM"], Slot.CPT)
    assert engine.can_add(slots, players["T2-MID"], Slot.MID)


def test_check_add_rejects_salary_over_cap():
    players = by_id(sample_slate())
    rich = make_player("whale", "T9", "ADC", 35_000, 40.0)
    engine = ConstraintEngine(RULES)
    slots = {Slot.CPT: players["T1-MID"], Slot.MID: players["T2-MID"]}

    assert engine.committed_salary(slots) == 12_000 + 7_700
    assert RejectReason.SALARY_OVER in engine.check_add(slots, rich, Slot.ADC)


def test_team_limit_and_required_stack():
    players = by_id(sample_slate())
    engine = ConstraintEngine(RULES)
    slots = {
        Slot.CPT: players["T1-MID"],
        Slot.TOP: players["T1-TOP"],
        Slot.JNG: players["T1-JNG"],
        Slot.ADC: players["T1-ADC"],
    }
    assert RejectReason.TEAM_LIMIT in engine.check_add(slots, players["T1-SUP"], Slot.SUP)

    stacked = ConstraintEngine(rules_from_config(require_team_stack=True))
    spread = {
        Slot.CPT: players["T1-MID"],
        Slot.TOP: players["T2-TOP"],
        Slot.JNG: players["T3-JNG"],
        Slot.MID: players["T4-MID"],
        Slot.ADC: players["T2-ADC"],
        Slot.SUP: players["T3-SUP"],
    }
    assert stacked.can_add(spread, players["T4-TEAM"], Slot.TEAM)

    singles = dict(spread)
    singles[Slot.ADC] = make_player("T5-ADC", "T5", "ADC", 6000, 15.0)
    singles[Slot.SUP] = make_player("T6-SUP", "T6", "SUP", 4000, 9.0)
    assert RejectReason.MISSING_STACK in stacked.check_add(singles, make_player("T7-TEAM", "T7", "TEAM", 4000, 8.0), Slot.TEAM)


def test_exposure_cap_from_ledger_and_forbidden_ids():
    players = by_id(sample_slate())
    lineup = standard_lineup(players)
    ledger = ExposureLedger(ExposureBounds({player_key("T1-MID"): Bound(max=0.1)}), 10)
    ledger.commit(lineup)

    engine = ConstraintEngine(RULES, ledger=ledger)
    assert RejectReason.EXPOSURE_CAP in engine.check_add({}, players["T1-MID"], Slot.CPT)
    validation = engine.validate(lineup)
    assert validation.reasons == (RejectReason.EXPOSURE_CAP,)
    assert "player:T1-MID" in validation.details[0]

    forbidden = ConstraintEngine(RULES, forbidden_player_ids=["T2-MID"])
    assert forbidden.check_add({}, players["T2-MID"], Slot.MID) == (RejectReason.EXPOSURE_CAP,)
    assert not forbidden.validate(lineup).ok


def test_validate_reports_every_broken_rule():
    players = by_id(sample_slate())
    broken = make_lineup(
        players,
        {
            Slot.CPT: "T1-ADC",
            Slot.TOP: "T1-TOP",
            Slot.JNG: "T1-JNG",
            Slot.MID: "T1-MID",
            Slot.ADC: "T1-ADC",
            Slot.SUP: "T1-SUP",
        },
    )
    result = ConstraintEngine(RULES).validate(broken)

    assert not result.ok
    assert RejectReason.SLOT_CONFLICT in result.reasons
    assert RejectReason.DUPLICATE_PLAYER in result.reasons
    assert RejectReason.TEAM_LIMIT in result.reasons
    assert any("TEAM filled 0 times" in detail for detail in result.details)


def test_fingerprint_ignores_assignment_order():
    players = by_id(sample_slate())
    lineup = standard_lineup(players)
    reversed_lineup = Lineup(assignments=tuple(reversed(lineup.assignments)))

    assert lineup.fingerprint == reversed_lineup.fingerprint
    assert lineup.fingerprint == lineup_fingerprint((a.slot, a.player.player_id) for a in lineup.assignments)
    assert lineup.fingerprint != standard_lineup(players, captain="T1-JNG").fingerprint


@pytest.mark.parametrize("captain", ["T1-MID", "T2-ADC", "T4-SUP"])
def test_captain_contributes_scaled_salary_and_projection(captain):
    players = by_id(sample_slate())
    lineup = make_lineup(
        players,
        {
            Slot.CPT: captain,
            Slot.TOP: "T4-TOP",
            Slot.JNG: "T4-JNG",
            Slot.MID: "T3-MID",
            Slot.ADC: "T3-ADC",
            Slot.SUP: "T3-SUP",
            Slot.TEAM: "T4-TEAM",
        },
    )
    base = players[captain]
    captain_slot = lineup.assignments[0]
    assert captain_slot.slot is Slot.CPT
    assert captain_slot.salary == captain_salary(base.salary, 1.5)
    assert captain_slot.projection == pytest.approx(base.projection * 1.5)
    others = sum(a.player.projection for a in lineup.assignments[1:])
    assert lineup.projection == pytest.approx(others + 1.5 * base.projection)
