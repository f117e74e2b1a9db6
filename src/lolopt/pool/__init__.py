"""Player pool index."""

from .index import PlayerPool

__all__ = ["PlayerPool"]
