from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable

import httpx
from loguru import logger

from app.core.clock import Clock, now_ms
from app.core.config import Settings
from app.domain import TokenSource

from .adapters import AdapterRole, SourceAdapter, get_adapter_class
from .client import FetchClient, SleepFn


@dataclass(slots=True)
class AdapterSet:
    """Adapters grouped by the role they play in an aggregation pass."""

    listing: list[SourceAdapter] = field(default_factory=list)
    enrichment: list[SourceAdapter] = field(default_factory=list)

    @property
    def all(self) -> list[SourceAdapter]:
        return [*self.listing, *self.enrichment]

    async def aclose(self) -> None:
        for adapter in self.all:
            await adapter.aclose()


def build_adapters(
    settings: Settings,
    *,
    sources: Iterable[TokenSource | str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: SleepFn = asyncio.sleep,
    clock: Clock = now_ms,
) -> AdapterSet:
    """Instantiate one adapter (with its own FetchClient) per enabled provider."""

    selected = sources if sources is not None else settings.enabled_sources
    adapters = AdapterSet()
    for source in selected:
        adapter_cls = get_adapter_class(source)
        client = FetchClient(
            settings.provider_config(adapter_cls.source), transport=transport, sleep=sleep
        )
        adapter = adapter_cls(
            client,
            chain_id=settings.chain_id,
            trending_terms=settings.trending_search_terms,
            clock=clock,
        )
        if adapter.role is AdapterRole.ENRICHMENT:
            adapters.enrichment.append(adapter)
        else:
            adapters.listing.append(adapter)

    logger.info(
        "Configured adapters listing={} enrichment={}",
        [adapter.name for adapter in adapters.listing],
        [adapter.name for adapter in adapters.enrichment],
    )
    return adapters


@asynccontextmanager
async def open_adapters(settings: Settings, **kwargs) -> AsyncIterator[AdapterSet]:
    adapters = build_adapters(settings, **kwargs)
    try:
        yield adapters
    finally:
        await adapters.aclose()
