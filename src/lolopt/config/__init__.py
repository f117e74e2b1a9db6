"""Configuration helpers for contest rules."""

from .contest import (
    DEFAULT_SITE,
    DEFAULT_SPORT,
    ContestRules,
    get_rules,
    rules_from_config,
)

__all__ = [
    "DEFAULT_SITE",
    "DEFAULT_SPORT",
    "ContestRules",
    "get_rules",
    "rules_from_config",
]
