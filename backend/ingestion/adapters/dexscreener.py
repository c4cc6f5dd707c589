from __future__ import annotations

from functools import partial
from typing import Sequence

from app.domain import Token, TokenSource

from ..normalize import normalize_dexscreener_pair
from .base import AdapterRole, BaseSourceAdapter, dedupe_by_address


class DexScreenerAdapter(BaseSourceAdapter):
    """Primary identity source. Has no trending endpoint, so trending is a search fan-out."""

    source = TokenSource.DEXSCREENER
    role = AdapterRole.LISTING
    MAX_BATCH = 30

    async def search(self, query: str) -> list[Token]:
        payload = await self.client.get("/latest/dex/search", params={"q": query})
        return dedupe_by_address(self._normalize_pairs(self._records(payload, "pairs")))

    async def _fetch_chunk(self, addresses: Sequence[str]) -> list[Token]:
        joined = ",".join(addresses)
        payload = await self.client.get(f"/tokens/v1/{self.chain_id}/{joined}")
        return self._normalize_pairs(self._records(payload, key=None))

    def _normalize_pairs(self, records: list) -> list[Token]:
        mapper = partial(
            normalize_dexscreener_pair, chain_id=self.chain_id, now_ms=self._clock()
        )
        return self._normalize_many(records, mapper)
