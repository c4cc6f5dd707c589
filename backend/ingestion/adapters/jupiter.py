from __future__ import annotations

from functools import partial
from typing import Any, Sequence

from app.domain import Token, TokenSource

from ..normalize import normalize_jupiter_price
from .base import AdapterRole, BaseSourceAdapter


class JupiterAdapter(BaseSourceAdapter):
    """Price-only enrichment source; Jupiter has no text search or trending list."""

    source = TokenSource.JUPITER
    role = AdapterRole.ENRICHMENT
    MAX_BATCH = 100

    async def search(self, query: str) -> list[Token]:
        return []

    async def get_trending(self) -> list[Token]:
        return []

    async def _fetch_chunk(self, addresses: Sequence[str]) -> list[Token]:
        payload = await self.client.get("/price/v2", params={"ids": ",".join(addresses)})
        prices = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(prices, dict):
            prices = {}
        # Unknown mints come back as null entries.
        records: list[Any] = [
            {"id": mint, **entry} if isinstance(entry, dict) else entry
            for mint, entry in prices.items()
            if entry is not None
        ]
        mapper = partial(normalize_jupiter_price, now_ms=self._clock())
        return self._normalize_many(records, mapper)
