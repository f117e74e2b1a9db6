import math

import pytest
from pydantic import ValidationError

from lolopt.models import Position, Slot
from lolopt.schemas import (
    ContestConfig,
    CorrelationConfig,
    ExposureBound,
    ExposureConfig,
    OptimizeRequest,
    PortfolioConfig,
    StrategyMix,
    StrategyProfile,
)

from tests.pools import request_payload, sample_slate


def test_request_accepts_camel_case_payload():
    payload = request_payload(
        sample_slate(),
        teamStacks=[{"team": "T1", "stackPlus": 150}],
        contestConfig={"salaryCap": 48_000, "maxPlayersPerTeam": 3},
        portfolio={"count": 5, "maxRepeatingPlayers": 4},
        lockPlayerIds=["T1-MID"],
    )
    request = OptimizeRequest.model_validate(payload)

    assert len(request.players) == 24
    assert request.team_stacks[0].stack_plus == 150
    assert request.contest_config.salary_cap == 48_000
    assert request.portfolio.count == 5
    assert request.portfolio.max_repeating_players == 4
    assert request.lock_player_ids == ["T1-MID"]
    assert request.strategy_profile.trials == 200

    rules = request.contest_config.to_rules()
    assert rules.salary_cap == 48_000
    assert rules.max_players_per_team == 3


def test_contest_config_slot_counts():
    config = ContestConfig(slotRequirements={"CPT": 1, "TOP": 1, "JNG": 1, "MID": 1, "ADC": 1, "SUP": 1, "TEAM": 0})
    assert config.slot_requirements == [Slot.CPT, Slot.TOP, Slot.JNG, Slot.MID, Slot.ADC, Slot.SUP]
    assert Slot.TEAM not in config.to_rules().roster_order

    with pytest.raises(ValidationError):
        ContestConfig(slotRequirements={"CPT": 1, "MID": 2})
    with pytest.raises(ValidationError):
        ContestConfig(slotRequirements=["CPT", "CPT"])


def test_exposure_bound_order_is_validated():
    assert ExposureBound(min=10, max=40, target=20).target == 20
    with pytest.raises(ValidationError):
        ExposureBound(min=50, max=20)
    with pytest.raises(ValidationError):
        ExposureBound(min=10, max=40, target=60)
    with pytest.raises(ValidationError):
        ExposureConfig(globalMin=60, globalMax=40)


def test_stack_targets_accept_bare_percentages():
    config = ExposureConfig(stacks={"T1": {"3": 50, 2: {"max": 80}}})
    three = config.stacks["T1"][3]
    assert three.min == 50 and three.target == 50 and three.max == 100
    assert config.stacks["T1"][2].max == 80

    with pytest.raises(ValidationError):
        ExposureConfig(stacks={"T1": {5: 20}})


def test_position_bounds_key_by_position():
    config = ExposureConfig(positions={"MID": {"max": 40}})
    assert config.positions[Position.MID].max == 40


def test_portfolio_defaults_scale_with_count():
    portfolio = PortfolioConfig(count=10)
    assert portfolio.resolved_attempt_cap() == 500
    assert portfolio.resolved_repair_attempts() == 50
    assert portfolio.resolved_score_floor() == -math.inf
    assert PortfolioConfig(count=30, attemptCap=12).resolved_attempt_cap() == 12
    assert PortfolioConfig(count=30).resolved_repair_attempts() == 150


def test_strategy_profile_defaults_and_sigma_merge():
    profile = StrategyProfile(positionSigma={"MID": 0.4})
    assert profile.trials == 1000
    assert profile.boom_threshold == 300
    assert profile.weights.ceiling == pytest.approx(0.15)
    assert profile.weights.leverage == pytest.approx(0.25)
    assert profile.weights.ownership == pytest.approx(0.10)
    assert profile.mix.balanced == pytest.approx(0.60)
    assert profile.position_sigma[Position.MID] == pytest.approx(0.4)
    assert profile.position_sigma[Position.JNG] == pytest.approx(0.30)

    with pytest.raises(ValidationError):
        StrategyProfile(positionSigma={"ADC": -0.1})


def test_correlation_and_mix_are_validated():
    with pytest.raises(ValidationError):
        CorrelationConfig(alpha=0.9, beta=0.6)
    with pytest.raises(ValidationError):
        StrategyMix(balanced=0, leverage=0, stack=0)


def test_request_requires_players():
    with pytest.raises(ValidationError):
        OptimizeRequest(players=[])
