"""Portfolio optimizer: builder, scorer, exposure ledger and loop."""

from .errors import InternalInconsistencyError, InvalidInputError, OptimizerError
from .service import optimize

__all__ = ["InternalInconsistencyError", "InvalidInputError", "OptimizerError", "optimize"]
