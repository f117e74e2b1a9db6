from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from lolopt.config import DEFAULT_SITE, DEFAULT_SPORT, ContestRules, rules_from_config
from lolopt.models import Player, Position, Slot, TeamStack


STACK_SIZES = (2, 3, 4)

DEFAULT_POSITION_SIGMA: Dict[Position, float] = {
    Position.MID: 0.25,
    Position.JNG: 0.30,
    Position.ADC: 0.20,
    Position.TOP: 0.15,
    Position.SUP: 0.10,
    Position.TEAM: 0.15,
}


class _Schema(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ExposureBound(_Schema):
    """Min/max/target exposure, in percent of the portfolio."""

    min: float = Field(default=0.0, ge=0.0, le=100.0)
    max: float = Field(default=100.0, ge=0.0, le=100.0)
    target: Optional[float] = Field(default=None, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _check_order(self) -> "ExposureBound":
        if self.min > self.max:
            raise ValueError(f"min exposure {self.min} exceeds max exposure {self.max}")
        if self.target is not None and not self.min <= self.target <= self.max:
            raise ValueError(f"target exposure {self.target} outside [{self.min}, {self.max}]")
        return self


class ExposureConfig(_Schema):
    global_min: float = Field(default=0.0, ge=0.0, le=100.0)
    global_max: float = Field(default=100.0, ge=0.0, le=100.0)
    players: Dict[str, ExposureBound] = Field(default_factory=dict)
    teams: Dict[str, ExposureBound] = Field(default_factory=dict)
    positions: Dict[Position, ExposureBound] = Field(default_factory=dict)
    stacks: Dict[str, Dict[int, ExposureBound]] = Field(default_factory=dict)

    @field_validator("stacks", mode="before")
    @classmethod
    def _coerce_stack_targets(cls, value: Any) -> Any:
        # A bare number is a target that must be reached, so it doubles as the minimum.
        if not isinstance(value, dict):
            return value
        coerced: Dict[Any, Any] = {}
        for team, sizes in value.items():
            if not isinstance(sizes, dict):
                coerced[team] = sizes
                continue
            coerced[team] = {
                size: {"min": float(bound), "target": float(bound)} if isinstance(bound, (int, float)) else bound
                for size, bound in sizes.items()
            }
        return coerced

    @field_validator("stacks", mode="after")
    @classmethod
    def _check_stack_sizes(cls, value: Dict[str, Dict[int, ExposureBound]]) -> Dict[str, Dict[int, ExposureBound]]:
        for team, sizes in value.items():
            for size in sizes:
                if size not in STACK_SIZES:
                    raise ValueError(f"stack size {size} for team {team!r} must be one of {STACK_SIZES}")
        return value

    @model_validator(mode="after")
    def _check_globals(self) -> "ExposureConfig":
        if self.global_min > self.global_max:
            raise ValueError(f"global min exposure {self.global_min} exceeds global max {self.global_max}")
        return self


class ContestConfig(_Schema):
    site: str = DEFAULT_SITE
    sport: str = DEFAULT_SPORT
    salary_cap: Optional[int] = Field(default=None, ge=0)
    slot_requirements: Optional[List[Slot]] = None
    captain_multiplier: Optional[float] = Field(default=None, gt=0.0)
    captain_positions: Optional[List[Position]] = None
    max_players_per_team: Optional[int] = Field(default=None, ge=1)
    require_team_stack: bool = False

    @field_validator("slot_requirements", mode="before")
    @classmethod
    def _slots_from_counts(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        slots = []
        for slot, count in value.items():
            if count not in (0, 1):
                raise ValueError(f"slot {slot} may be required at most once, got {count}")
            if count:
                slots.append(slot)
        return slots

    @field_validator("slot_requirements", mode="after")
    @classmethod
    def _unique_slots(cls, value: Optional[List[Slot]]) -> Optional[List[Slot]]:
        if value is None:
            return value
        if not value:
            raise ValueError("slot_requirements must name at least one slot")
        if len(set(value)) != len(value):
            raise ValueError("slot_requirements lists a slot more than once")
        return value

    def to_rules(self) -> ContestRules:
        return rules_from_config(
            site=self.site,
            sport=self.sport,
            salary_cap=self.salary_cap,
            slot_requirements=self.slot_requirements,
            captain_multiplier=self.captain_multiplier,
            captain_positions=self.captain_positions,
            max_players_per_team=self.max_players_per_team,
            override_team_limit="max_players_per_team" in self.model_fields_set,
            require_team_stack=self.require_team_stack,
        )


class PortfolioConfig(_Schema):
    count: int = Field(default=20, ge=1)
    attempt_cap: Optional[int] = Field(default=None, ge=1)
    repair_attempts: Optional[int] = Field(default=None, ge=0)
    max_repeating_players: Optional[int] = Field(default=None, ge=0)
    min_score_floor: Optional[float] = None
    workers: Optional[int] = Field(default=None, ge=1, le=32)
    attempts_per_job: Optional[int] = Field(default=None, ge=1, le=500)

    def resolved_attempt_cap(self) -> int:
        return self.attempt_cap if self.attempt_cap is not None else 50 * self.count

    def resolved_repair_attempts(self) -> int:
        return self.repair_attempts if self.repair_attempts is not None else max(50, 5 * self.count)

    def resolved_score_floor(self) -> float:
        return self.min_score_floor if self.min_score_floor is not None else -math.inf


class StrategyMix(_Schema):
    balanced: float = Field(default=0.60, ge=0.0)
    leverage: float = Field(default=0.25, ge=0.0)
    stack: float = Field(default=0.15, ge=0.0)

    @model_validator(mode="after")
    def _check_total(self) -> "StrategyMix":
        if self.balanced + self.leverage + self.stack <= 0:
            raise ValueError("strategy mix must have a positive total weight")
        return self


class ScoreWeights(_Schema):
    ceiling: float = 0.15
    leverage: float = 0.25
    ownership: float = 0.10


class CorrelationConfig(_Schema):
    alpha: float = Field(default=0.5, ge=0.0, le=1.0)
    beta: float = Field(default=0.15, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_unit_variance(self) -> "CorrelationConfig":
        if self.alpha ** 2 + self.beta ** 2 > 1.0 + 1e-12:
            raise ValueError("correlation alpha^2 + beta^2 must not exceed 1")
        return self


class StrategyProfile(_Schema):
    mix: StrategyMix = Field(default_factory=StrategyMix)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    trials: int = Field(default=1000, ge=1)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    boom_threshold: float = 300.0
    position_sigma: Dict[Position, float] = Field(default_factory=lambda: dict(DEFAULT_POSITION_SIGMA))
    stack_size: int = Field(default=3, ge=2, le=4)
    stack_prior_scale: float = Field(default=200.0, gt=0.0)
    leverage_multiplier: float = Field(default=2.0, gt=0.0)
    shortfall_boost: float = Field(default=3.0, ge=1.0)
    max_slot_attempts: int = Field(default=32, ge=1)
    builder_deadline_ms: float = Field(default=500.0, gt=0.0)

    @field_validator("position_sigma", mode="after")
    @classmethod
    def _fill_sigma(cls, value: Dict[Position, float]) -> Dict[Position, float]:
        merged = dict(DEFAULT_POSITION_SIGMA)
        for position, sigma in value.items():
            if sigma < 0:
                raise ValueError(f"sigma for {position.value} must be non-negative")
            merged[position] = sigma
        return merged


class OptimizeRequest(_Schema):
    players: List[Player] = Field(..., min_length=1)
    team_stacks: List[TeamStack] = Field(default_factory=list)
    contest_config: ContestConfig = Field(default_factory=ContestConfig)
    exposure_config: ExposureConfig = Field(default_factory=ExposureConfig)
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    strategy_profile: StrategyProfile = Field(default_factory=StrategyProfile)
    seed: int = 0
    lock_player_ids: List[str] = Field(default_factory=list)
    exclude_player_ids: List[str] = Field(default_factory=list)
