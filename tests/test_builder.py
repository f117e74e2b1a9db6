import threading

import numpy as np
import pytest

from lolopt.config import get_rules, rules_from_config
from lolopt.models import Slot, TeamStack
from lolopt.optimizer.builder import BuilderSettings, BuildPlan, FailureMode, LineupBuilder, weighted_index
from lolopt.optimizer.constraints import ConstraintEngine
from lolopt.optimizer.ledger import Bound, ExposureBounds, ExposureLedger, player_key, position_key, stack_key
from lolopt.pool import PlayerPool

from tests.pools import make_player, pressure_slate, sample_slate


RULES = get_rules("DK_CAPTAIN", "LOL")


def _builder(players, rules=RULES, team_stacks=(), **settings) -> LineupBuilder:
    pool = PlayerPool(players, rules, team_stacks=team_stacks)
    return LineupBuilder(pool, ConstraintEngine(rules), BuilderSettings(**settings))


def test_build_produces_valid_lineup():
    builder = _builder(sample_slate())
    result = builder.build(None, BuildPlan(), np.random.default_rng(3))

    assert result.ok
    lineup = result.lineup
    assert set(lineup.slots) == set(RULES.roster_order)
    assert ConstraintEngine(RULES).validate(lineup).ok
    assert lineup.adjusted_total_salary <= RULES.salary_cap


def test_build_is_deterministic_for_a_seed():
    builder = _builder(sample_slate(bench_teams=2))
    first = builder.build(None, BuildPlan(), np.random.default_rng(11))
    second = builder.build(None, BuildPlan(), np.random.default_rng(11))
    assert first.lineup.fingerprint == second.lineup.fingerprint


def test_fill_order_puts_captain_and_team_first():
    builder = _builder(sample_slate())
    assert builder.fill_order == (Slot.CPT, Slot.TEAM, Slot.MID, Slot.ADC, Slot.JNG, Slot.TOP, Slot.SUP)


def test_locked_and_required_entities_are_seeded():
    builder = _builder(sample_slate())
    plan = BuildPlan(locked_player_ids=("T4-SUP",), required=(position_key("ADC"),))
    for seed in range(5):
        result = builder.build(None, plan, np.random.default_rng(seed))
        assert result.ok
        assert "T4-SUP" in result.lineup.player_ids
        assert result.lineup.captain.position.value == "ADC"


def test_forced_stack_places_teammates():
    builder = _builder(sample_slate(), team_stacks=[TeamStack(team="T2", stack_plus=120.0)])
    plan = BuildPlan(strategy="stack", forced_stack=("T2", 3))
    for seed in range(5):
        result = builder.build(None, plan, np.random.default_rng(seed))
        assert result.ok
        assert result.lineup.team_counts()["T2"] >= 3
        assert result.lineup.team_counts()["T2"] <= RULES.max_players_per_team


def test_required_stack_that_cannot_exist_is_infeasible():
    players = sample_slate() + [
        make_player("T9-TOP", "T9", "TOP", 4000, 10.0),
        make_player("T9-JNG", "T9", "JNG", 4000, 10.0),
    ]
    builder = _builder(players)
    result = builder.build(None, BuildPlan(required=(stack_key("T9", 3),)), np.random.default_rng(0))

    assert not result.ok
    assert result.failure.mode is FailureMode.INFEASIBLE
    assert result.failure.reason == "stack_unavailable"


def test_capped_player_is_never_selected():
    builder = _builder(sample_slate())
    ledger = ExposureLedger(ExposureBounds({player_key("T1-ADC"): Bound(max=0.0)}), 10)
    for seed in range(10):
        result = builder.build(ledger, BuildPlan(), np.random.default_rng(seed))
        assert result.ok
        assert "T1-ADC" not in result.lineup.player_ids


def test_blocked_slot_exhausts_backtracking():
    builder = _builder(sample_slate(), max_restarts=1)
    bounds = {player_key(f"T{i}-SUP"): Bound(max=0.0) for i in range(1, 5)}
    ledger = ExposureLedger(ExposureBounds(bounds), 10)
    result = builder.build(ledger, BuildPlan(), np.random.default_rng(0))

    assert not result.ok
    assert result.failure.mode is FailureMode.BACKTRACK_EXHAUSTED
    assert result.rejections["exposure_cap"] > 0
    assert result.backtracks > 0


def test_salary_cap_and_empty_position_are_infeasible():
    tight = _builder(sample_slate(), rules=rules_from_config(salary_cap=10_000))
    result = tight.build(None, BuildPlan(), np.random.default_rng(0))
    assert result.failure.mode is FailureMode.INFEASIBLE
    assert result.failure.reason == "salary_cap"

    no_support = [player for player in sample_slate() if player.position.value != "SUP"]
    empty = _builder(no_support)
    result = empty.build(None, BuildPlan(), np.random.default_rng(0))
    assert result.failure.mode is FailureMode.INFEASIBLE
    assert result.failure.reason == "position_pool_empty"
    assert result.failure.slot is Slot.SUP


def test_salary_pressure_forces_cheap_captain():
    builder = _builder(pressure_slate())
    for seed in range(5):
        result = builder.build(None, BuildPlan(), np.random.default_rng(seed))
        assert result.ok
        assert result.lineup.captain.player_id == "CHEAP-SUP"
        assert result.lineup.adjusted_total_salary <= RULES.salary_cap


def test_cancel_signal_stops_build():
    cancel = threading.Event()
    cancel.set()
    result = _builder(sample_slate()).build(None, BuildPlan(), np.random.default_rng(0), cancel=cancel)
    assert result.failure.mode is FailureMode.CANCELLED


def test_leverage_weight_never_rises_with_ownership():
    builder = _builder(sample_slate())
    seeking = BuildPlan(strategy="leverage", leverage_seeking=True)
    balanced = BuildPlan()
    base = builder.pool.get("T2-MID")

    weights = []
    for ownership in (0.05, 0.3, 0.6, 0.75, 0.9, 1.0):
        player = base.model_copy(update={"ownership": ownership})
        weights.append(builder.candidate_weight(player, Slot.MID, {}, None, seeking))
        assert builder.candidate_weight(player, Slot.MID, {}, None, balanced) == pytest.approx(base.projection)
    assert all(later <= earlier for earlier, later in zip(weights, weights[1:]))
    assert weights[0] > weights[-1]


def test_weight_components():
    builder = _builder(
        sample_slate(),
        team_stacks=[TeamStack(team="T1", stack_plus=200.0), TeamStack(team="T3", stack_plus=-1000.0)],
        shortfall_boost=3.0,
    )
    plan = BuildPlan()
    t1_mid = builder.pool.get("T1-MID")

    assert builder.stack_prior("T1") == pytest.approx(2.0)
    assert builder.stack_prior("T2") == pytest.approx(1.0)
    assert builder.stack_prior("T3") == pytest.approx(0.05)
    assert builder.candidate_weight(t1_mid, Slot.CPT, {}, None, plan) == pytest.approx(t1_mid.projection * 1.5 * 2.0)

    preferred = BuildPlan(preferred=(player_key("T1-MID"),))
    assert builder.candidate_weight(t1_mid, Slot.MID, {}, None, preferred) == pytest.approx(
        3.0 * builder.candidate_weight(t1_mid, Slot.MID, {}, None, plan)
    )


def test_weighted_index_skips_zero_weights():
    rng = np.random.default_rng(5)
    draws = {weighted_index(np.array([0.0, 2.0, 0.0, 1.0]), rng) for _ in range(200)}
    assert draws == {1, 3}


def test_expired_deadline_aborts_attempt():
    result = _builder(sample_slate(), deadline_ms=0.0).build(None, BuildPlan(), np.random.default_rng(0))
    assert result.failure.mode is FailureMode.BACKTRACK_EXHAUSTED
    assert result.failure.reason == "deadline"
    assert result.restarts == 0
