"""Exceptions that abort an optimization run."""

from __future__ import annotations

from typing import Iterable


class OptimizerError(Exception):
    """Base class for optimizer failures surfaced to callers."""


class InvalidInputError(OptimizerError, ValueError):
    """Raised before a run starts when the request cannot be optimized."""

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid optimization request")


class InternalInconsistencyError(OptimizerError, RuntimeError):
    """Raised when the exposure ledger and the committed portfolio disagree."""
