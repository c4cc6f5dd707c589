"""Source adapters turning provider APIs into normalized tokens."""

from .base import AdapterRole, BaseSourceAdapter, SourceAdapter, chunked, dedupe_by_address
from .dexscreener import DexScreenerAdapter
from .geckoterminal import GeckoTerminalAdapter
from .jupiter import JupiterAdapter
from .registry import (
    UnknownSourceError,
    available_sources,
    get_adapter_class,
    register_adapter,
)

__all__ = [
    "AdapterRole",
    "BaseSourceAdapter",
    "DexScreenerAdapter",
    "GeckoTerminalAdapter",
    "JupiterAdapter",
    "SourceAdapter",
    "UnknownSourceError",
    "available_sources",
    "chunked",
    "dedupe_by_address",
    "get_adapter_class",
    "register_adapter",
]
