"""Canonical data models."""

from .lineup import (
    SLOT_FILL_ORDER,
    Lineup,
    Slot,
    SlotAssignment,
    captain_salary,
    lineup_fingerprint,
    slot_projection,
    slot_salary,
)
from .player import Player, Position, TeamStack, normalize_fraction

__all__ = [
    "SLOT_FILL_ORDER",
    "Lineup",
    "Player",
    "Position",
    "Slot",
    "SlotAssignment",
    "TeamStack",
    "captain_salary",
    "lineup_fingerprint",
    "normalize_fraction",
    "slot_projection",
    "slot_salary",
]
