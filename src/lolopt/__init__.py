"""Exposure-aware lineup portfolio optimizer for captain-mode esports contests."""

__version__ = "0.1.0"
