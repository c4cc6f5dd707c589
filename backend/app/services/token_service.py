from __future__ import annotations

from typing import Any, Iterable, Sequence

from loguru import logger

from app.core.clock import Clock, now_ms
from app.core.concurrency import Settled, settle
from app.core.config import Settings
from app.core.errors import NotFoundError, UpstreamError, ValidationError
from app.domain import PageRequest, Snapshot, Token, TokenFilters, TokenPage, TokenSort
from ingestion.adapters import SourceAdapter
from ingestion.service import AdapterSet

from .cache import AggregationCache, CacheStats
from .merge import DEFAULT_POLICY, MergePolicy, merge_all
from .query import query_tokens

ALL_TOKENS_KEY = "all_tokens"
SEARCH_KEY_PREFIX = "search:"


def _log_failures(stage: str, adapters: Sequence[SourceAdapter], settled: Settled) -> None:
    for exc in settled.failed:
        logger.warning("{} failed for one of {}: {}", stage, [a.name for a in adapters], exc)


class TokenAggregationService:
    """Drive adapters, merge their output, and serve it through the cache."""

    def __init__(
        self,
        adapters: AdapterSet,
        cache: AggregationCache,
        *,
        settings: Settings,
        clock: Clock = now_ms,
        policy: MergePolicy = DEFAULT_POLICY,
    ) -> None:
        self.adapters = adapters
        self.cache = cache
        self.settings = settings
        self.policy = policy
        self._clock = clock

    async def fetch_snapshot(self) -> Snapshot:
        """Build a fresh snapshot from every listing source, bypassing the cache."""

        listing = self.adapters.listing
        settled = await settle(adapter.get_trending() for adapter in listing)
        _log_failures("get_trending", listing, settled)
        if settled.all_failed or not listing:
            raise UpstreamError(
                "aggregator",
                "every listing source failed",
                cause=settled.failed[0] if settled.failed else None,
            )
        snapshot = await self._enrich_and_merge(settled.ok)
        logger.info(
            "Aggregated {} tokens from {}/{} listing sources",
            len(snapshot),
            len(settled.ok),
            len(listing),
        )
        return snapshot

    async def snapshot(self) -> Snapshot:
        return await self.cache.get_or_compute(
            ALL_TOKENS_KEY, self.settings.cache_ttl_seconds, self.fetch_snapshot
        )

    async def list_tokens(
        self,
        filters: TokenFilters | None = None,
        sort: TokenSort | None = None,
        page: PageRequest | None = None,
    ) -> TokenPage:
        snapshot = await self.snapshot()
        return self._page(snapshot.values(), filters, sort, page)

    async def search(
        self,
        query: str,
        sort: TokenSort | None = None,
        page: PageRequest | None = None,
    ) -> TokenPage:
        term = (query or "").strip()
        if len(term) < self.settings.search_min_query_length:
            raise ValidationError(
                f"Search query must be at least {self.settings.search_min_query_length} characters"
            )

        async def compute() -> Snapshot:
            return await self._search_snapshot(term)

        snapshot = await self.cache.get_or_compute(
            f"{SEARCH_KEY_PREFIX}{term.lower()}", self.settings.cache_ttl_seconds, compute
        )
        return self._page(snapshot.values(), None, sort, page)

    async def trending(self, limit: int | None = None) -> list[Token]:
        page = await self.list_tokens(
            sort=TokenSort(field="volume", direction="desc"), page=PageRequest(limit=limit)
        )
        return page.items

    async def get_token(self, address: str) -> Token:
        address = (address or "").strip()
        if not address:
            raise ValidationError("Token address is required")

        snapshot = await self.snapshot()
        token = snapshot.get(address)
        if token is not None:
            return token

        listing = self.adapters.listing
        settled = await settle(adapter.get_by_address(address) for adapter in listing)
        _log_failures("get_by_address", listing, settled)
        if settled.all_failed:
            raise UpstreamError(
                "aggregator", f"lookup failed for {address}", cause=settled.failed[0]
            )
        if not any(settled.ok):
            raise NotFoundError(f"Token {address} not found")
        merged = await self._enrich_and_merge(settled.ok)
        found = merged.get(address)
        if found is None:
            raise NotFoundError(f"Token {address} not found")
        return found

    async def clear_cache(self, key: str | None = None) -> None:
        await self.cache.clear(key)

    async def cache_stats(self) -> CacheStats:
        return await self.cache.stats()

    async def health(self) -> dict[str, Any]:
        adapters = self.adapters.all

        async def probe(adapter: SourceAdapter) -> tuple[str, bool]:
            return adapter.name, await adapter.health_check()

        settled = await settle(probe(adapter) for adapter in adapters)
        for exc in settled.failed:
            logger.error("Health probe raised unexpectedly: {}", exc)
        sources = {adapter.name: False for adapter in adapters}
        sources.update(dict(settled.ok))
        up = sum(1 for healthy in sources.values() if healthy)
        if sources and up == len(sources):
            status = "healthy"
        elif up:
            status = "degraded"
        else:
            status = "unhealthy"
        stats = await self.cache.stats()
        return {"status": status, "sources": sources, "cache": stats.to_dict()}

    async def _search_snapshot(self, term: str) -> Snapshot:
        listing = self.adapters.listing
        settled = await settle(adapter.search(term) for adapter in listing)
        _log_failures("search", listing, settled)
        if settled.all_failed:
            raise UpstreamError(
                "aggregator", f"every source failed to search '{term}'", cause=settled.failed[0]
            )
        return await self._enrich_and_merge(settled.ok)

    async def _enrich_and_merge(self, batches: Sequence[list[Token]]) -> Snapshot:
        addresses = sorted({token.address for batch in batches for token in batch})
        enrichment = self.adapters.enrichment
        extra: list[list[Token]] = []
        if addresses and enrichment:
            settled = await settle(adapter.get_batch(addresses) for adapter in enrichment)
            _log_failures("get_batch", enrichment, settled)
            extra = settled.ok
        merged = merge_all([*batches, *extra], self.policy)
        return Snapshot.from_tokens(merged, captured_at=self._clock())

    def _page(
        self,
        tokens: Iterable[Token],
        filters: TokenFilters | None,
        sort: TokenSort | None,
        page: PageRequest | None,
    ) -> TokenPage:
        return query_tokens(
            tokens,
            filters,
            sort,
            page,
            default_limit=self.settings.pagination_default_limit,
            max_limit=self.settings.pagination_max_limit,
        )
