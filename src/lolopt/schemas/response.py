from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotResponse(_Schema):
    slot: str
    player_id: str
    name: str
    team: str
    position: str
    salary: int
    adjusted_salary: int
    projection: float
    adjusted_projection: float
    ownership: float


class LineupResponse(_Schema):
    lineup_id: str
    slots: List[SlotResponse]
    total_salary: int
    adjusted_total_salary: int
    score: float
    mean: float
    stdev: float
    ceiling: float
    floor: float
    boom_rate: float
    leverage: float
    average_ownership: float
    fingerprint: str
    strategy: str
    degenerate: bool = False


class ExposureUsage(_Schema):
    entity: str
    kind: str
    name: str
    stack_size: Optional[int] = None
    count: int
    exposure: float
    min: Optional[float] = None
    max: Optional[float] = None
    target: Optional[float] = None


class UnmetMinimum(_Schema):
    entity: str
    kind: str
    name: str
    stack_size: Optional[int] = None
    count: int
    required_count: int
    achieved: float
    required: float


class RepairSummary(_Schema):
    attempts: int = 0
    replacements: int = 0
    cleared: List[str] = Field(default_factory=list)


class OptimizeSummary(_Schema):
    achieved_exposures: List[ExposureUsage]
    unmet_minima: List[UnmetMinimum]
    attempts: int
    rejections: Dict[str, int]
    wall_time: float
    strategy_counts: Dict[str, int] = Field(default_factory=dict)
    repair: RepairSummary = Field(default_factory=RepairSummary)
    cancelled: bool = False
    infeasible_reasons: List[str] = Field(default_factory=list)
    seed: int = 0


class OptimizeResponse(_Schema):
    lineups: List[LineupResponse]
    summary: OptimizeSummary
    status: Literal["ok", "partial", "infeasible"]
