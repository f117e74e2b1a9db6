"""Pydantic models for optimizer I/O."""

from .request import (
    DEFAULT_POSITION_SIGMA,
    STACK_SIZES,
    ContestConfig,
    CorrelationConfig,
    ExposureBound,
    ExposureConfig,
    OptimizeRequest,
    PortfolioConfig,
    ScoreWeights,
    StrategyMix,
    StrategyProfile,
)
from .response import (
    ExposureUsage,
    LineupResponse,
    OptimizeResponse,
    OptimizeSummary,
    RepairSummary,
    SlotResponse,
    UnmetMinimum,
)

__all__ = [
    "DEFAULT_POSITION_SIGMA",
    "STACK_SIZES",
    "ContestConfig",
    "CorrelationConfig",
    "ExposureBound",
    "ExposureConfig",
    "ExposureUsage",
    "LineupResponse",
    "OptimizeRequest",
    "OptimizeResponse",
    "OptimizeSummary",
    "PortfolioConfig",
    "RepairSummary",
    "ScoreWeights",
    "SlotResponse",
    "StrategyMix",
    "StrategyProfile",
    "UnmetMinimum",
]
