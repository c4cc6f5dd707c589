"""Provider contracts for market-data sources."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Sequence

from loguru import logger

from app.core.clock import Clock, now_ms
from app.core.concurrency import settle
from app.core.errors import UpstreamError
from app.domain import Token, TokenSource

from ..client import FetchClient
from ..normalize import WRAPPED_SOL_MINT


class AdapterRole(str, Enum):
    LISTING = "listing"
    ENRICHMENT = "enrichment"


class SourceAdapter(Protocol):
    """Interface implemented by every provider adapter."""

    source: TokenSource
    role: AdapterRole

    @property
    def name(self) -> str:
        """Provider name used in logs and health reports."""

    async def search(self, query: str) -> list[Token]:
        """Return tokens matching ``query`` on the configured chain."""

    async def get_by_address(self, address: str) -> list[Token]:
        """Return the provider's records for one token address."""

    async def get_trending(self) -> list[Token]:
        """Return the provider's current trending tokens, deduplicated."""

    async def get_batch(self, addresses: Sequence[str]) -> list[Token]:
        """Return records for many addresses, deduplicated."""

    async def health_check(self) -> bool:
        """Return ``True`` when the provider answers a cheap probe."""

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""


def chunked(items: Sequence[str], size: int) -> list[list[str]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    count = math.ceil(len(items) / size)
    return [list(items[index * size : (index + 1) * size]) for index in range(count)]


def dedupe_by_address(tokens: Iterable[Token]) -> list[Token]:
    """Keep one record per address: the most liquid one, first seen on ties."""

    best: dict[str, Token] = {}
    for token in tokens:
        current = best.get(token.address)
        if current is None or token.liquidity_usd > current.liquidity_usd:
            best[token.address] = token
    return list(best.values())


class BaseSourceAdapter(ABC):
    """Shared fan-out, batching, and normalization plumbing for adapters."""

    source: TokenSource
    role: AdapterRole = AdapterRole.LISTING
    MAX_BATCH: int = 30
    health_probe_address: str = WRAPPED_SOL_MINT

    def __init__(
        self,
        client: FetchClient,
        *,
        chain_id: str = "solana",
        trending_terms: Sequence[str] = (),
        clock: Clock = now_ms,
    ) -> None:
        self.client = client
        self.chain_id = chain_id
        self.trending_terms = tuple(trending_terms)
        self._clock = clock

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    async def search(self, query: str) -> list[Token]:
        raise NotImplementedError

    @abstractmethod
    async def _fetch_chunk(self, addresses: Sequence[str]) -> list[Token]:
        """Fetch one request's worth (at most ``MAX_BATCH``) of addresses."""

    async def get_by_address(self, address: str) -> list[Token]:
        tokens = await self._fetch_chunk([address])
        return [token for token in tokens if token.address == address]

    async def get_trending(self) -> list[Token]:
        """Fan ``search`` out over the candidate terms and keep whatever succeeds."""

        if not self.trending_terms:
            return []
        settled = await settle(self.search(term) for term in self.trending_terms)
        for exc in settled.failed:
            logger.warning("{} trending search failed: {}", self.name, exc)
        if settled.all_failed:
            raise UpstreamError(
                self.name,
                f"all {len(settled.failed)} trending searches failed",
                base_url=self.client.base_url,
                cause=settled.failed[0],
            )
        return dedupe_by_address(token for batch in settled.ok for token in batch)

    async def get_batch(self, addresses: Sequence[str]) -> list[Token]:
        wanted = list(dict.fromkeys(address for address in addresses if address))
        if not wanted:
            return []
        chunks = chunked(wanted, self.MAX_BATCH)
        settled = await settle(self._fetch_chunk(chunk) for chunk in chunks)
        for exc in settled.failed:
            logger.warning(
                "{} batch chunk failed ({} of {} chunks lost): {}",
                self.name,
                len(settled.failed),
                len(chunks),
                exc,
            )
        requested = set(wanted)
        return dedupe_by_address(
            token for batch in settled.ok for token in batch if token.address in requested
        )

    async def health_check(self) -> bool:
        try:
            await self.get_by_address(self.health_probe_address)
        except UpstreamError as exc:
            logger.warning("{} health check failed: {}", self.name, exc)
            return False
        return True

    async def aclose(self) -> None:
        await self.client.aclose()

    def _records(self, payload: Any, key: str | None = "data") -> list[Any]:
        """Pull the record list out of a response body, tolerating a null list."""

        if key is not None:
            if not isinstance(payload, dict):
                raise UpstreamError(
                    self.name,
                    f"expected an object with '{key}'",
                    base_url=self.client.base_url,
                )
            payload = payload.get(key)
        if payload is None:
            return []
        if isinstance(payload, dict):
            return [payload]
        if not isinstance(payload, list):
            raise UpstreamError(
                self.name, "unexpected payload shape", base_url=self.client.base_url
            )
        return payload

    def _normalize_many(
        self, records: Iterable[Any], mapper: Callable[[Any], Token | None]
    ) -> list[Token]:
        tokens: list[Token] = []
        for raw in records:
            try:
                token = mapper(raw)
            except ValueError as exc:
                logger.warning("Dropping malformed {} record: {}", self.name, exc)
                continue
            if token is not None:
                tokens.append(token)
        return tokens


__all__ = [
    "AdapterRole",
    "BaseSourceAdapter",
    "SourceAdapter",
    "chunked",
    "dedupe_by_address",
]
