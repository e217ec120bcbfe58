"""
Utility modules for the Taleweaver turn engine
"""

from .game_time import advance_game_time, get_time_period, parse_game_time
from .locale import is_event_locale, is_locale_match, normalize_locale, parse_hostility
from .retry import (
    NarratorUnavailableError,
    ProviderError,
    ProviderOverloadedError,
    RetryPolicy,
)

__all__ = [
    "RetryPolicy",
    "ProviderError",
    "ProviderOverloadedError",
    "NarratorUnavailableError",
    "parse_game_time",
    "advance_game_time",
    "get_time_period",
    "parse_hostility",
    "normalize_locale",
    "is_locale_match",
    "is_event_locale",
]
