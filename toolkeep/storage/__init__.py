"""Storage module for the tool status cache."""

from .cache import CacheEntry, StatusCache

__all__ = [
    "CacheEntry",
    "StatusCache",
]
