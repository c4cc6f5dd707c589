"""Domain models representing normalized token market data."""

from .models import (
    CacheEntry,
    PageRequest,
    PriceDelta,
    Snapshot,
    Token,
    TokenFilters,
    TokenPage,
    TokenSort,
    TokenSource,
)

__all__ = [
    "CacheEntry",
    "PageRequest",
    "PriceDelta",
    "Snapshot",
    "Token",
    "TokenFilters",
    "TokenPage",
    "TokenSort",
    "TokenSource",
]
