"""Process-wide object graph: one cache, one driver, one publisher per process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from loguru import logger

from app.core.clock import Clock, now_ms
from app.core.config import Settings
from app.services.cache import AggregationCache, CacheStore, build_cache_store
from app.services.publisher import DeltaPublisher
from app.services.push import WebSocketHub
from app.services.scheduler import IntervalScheduler
from app.services.token_service import TokenAggregationService
from ingestion.client import SleepFn
from ingestion.service import AdapterSet, build_adapters


@dataclass(slots=True)
class Runtime:
    settings: Settings
    adapters: AdapterSet
    cache: AggregationCache
    service: TokenAggregationService
    hub: WebSocketHub
    publisher: DeltaPublisher
    scheduler: IntervalScheduler

    def start(self) -> None:
        if not self.settings.publisher_enabled:
            logger.info("Delta publisher disabled by configuration")
            return
        self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.adapters.aclose()
        await self.cache.aclose()


def build_runtime(
    settings: Settings,
    *,
    store: CacheStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: SleepFn = asyncio.sleep,
    clock: Clock = now_ms,
) -> Runtime:
    adapters = build_adapters(settings, transport=transport, sleep=sleep, clock=clock)
    cache = AggregationCache(store or build_cache_store(settings), clock=clock)
    service = TokenAggregationService(adapters, cache, settings=settings, clock=clock)
    hub = WebSocketHub(clock=clock)
    publisher = DeltaPublisher(
        service, hub, threshold_pct=settings.publisher_price_change_threshold_pct
    )
    scheduler = IntervalScheduler(clock=clock, sleep=sleep)
    publisher.schedule(
        scheduler,
        price_interval_seconds=settings.publisher_price_interval_seconds,
        discovery_interval_seconds=settings.publisher_discovery_interval_seconds,
    )
    return Runtime(
        settings=settings,
        adapters=adapters,
        cache=cache,
        service=service,
        hub=hub,
        publisher=publisher,
        scheduler=scheduler,
    )
