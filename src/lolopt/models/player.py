"""Canonical player and team-stack models shared across pool and optimizer layers."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict


class Position(str, Enum):
    TOP = "TOP"
    JNG = "JNG"
    MID = "MID"
    ADC = "ADC"
    SUP = "SUP"
    TEAM = "TEAM"


def normalize_fraction(value: float | None) -> float | None:
    """Accept a 0-1 fraction or a 0-100 percentage and return a fraction."""

    if value is None:
        return None
    if value < 0:
        return 0.0
    return value if value <= 1.0 else value / 100.0


class Player(BaseModel):
    """Normalized player payload used by the optimizer.

    The ``TEAM`` position holds the synthetic team entity; it is priced and
    projected like any other record.
    """

    player_id: str = Field(..., min_length=1)
    name: str
    team: str = Field(..., min_length=1)
    position: Position
    salary: int = Field(..., ge=0)
    projection: float = Field(..., ge=0.0)
    ownership: float = Field(default=0.0, ge=0.0, le=100.0)
    stdev: Optional[float] = Field(default=None, ge=0.0)
    ceiling: Optional[float] = None
    floor: Optional[float] = None

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    @field_validator("position", mode="before")
    @classmethod
    def _upper_position(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("ownership", mode="after")
    @classmethod
    def _ownership_fraction(cls, value: float) -> float:
        return normalize_fraction(value) or 0.0

    @property
    def is_team_entity(self) -> bool:
        return self.position is Position.TEAM


class TeamStack(BaseModel):
    """Team-level Stack+ prior."""

    team: str = Field(..., min_length=1)
    stack_plus: float = 0.0
    stack_plus_wins: Optional[float] = None
    stack_plus_losses: Optional[float] = None

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)
