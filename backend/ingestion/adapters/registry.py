"""Registry mapping each provider to its adapter class."""

from __future__ import annotations

from typing import Dict

from app.domain import TokenSource

from .base import BaseSourceAdapter
from .dexscreener import DexScreenerAdapter
from .geckoterminal import GeckoTerminalAdapter
from .jupiter import JupiterAdapter


class UnknownSourceError(LookupError):
    """Raised when no adapter is registered for a provider."""


_ADAPTERS: Dict[TokenSource, type[BaseSourceAdapter]] = {}


def register_adapter(adapter_cls: type[BaseSourceAdapter]) -> None:
    """Register or replace the adapter class for ``adapter_cls.source``."""

    _ADAPTERS[adapter_cls.source] = adapter_cls


def get_adapter_class(source: TokenSource | str) -> type[BaseSourceAdapter]:
    try:
        return _ADAPTERS[TokenSource(source)]
    except (KeyError, ValueError) as exc:
        raise UnknownSourceError(f"No adapter registered for source '{source}'") from exc


def available_sources() -> tuple[TokenSource, ...]:
    return tuple(_ADAPTERS)


register_adapter(DexScreenerAdapter)
register_adapter(GeckoTerminalAdapter)
register_adapter(JupiterAdapter)
