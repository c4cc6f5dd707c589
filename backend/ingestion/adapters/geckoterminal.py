from __future__ import annotations

from functools import partial
from typing import Any, Sequence

from app.domain import Token, TokenSource

from ..normalize import (
    index_included_tokens,
    normalize_geckoterminal_pool,
    normalize_geckoterminal_token,
)
from .base import AdapterRole, BaseSourceAdapter, dedupe_by_address

_POOL_INCLUDES = "base_token,quote_token,dex"


class GeckoTerminalAdapter(BaseSourceAdapter):
    source = TokenSource.GECKOTERMINAL
    role = AdapterRole.LISTING
    MAX_BATCH = 30

    async def search(self, query: str) -> list[Token]:
        payload = await self.client.get(
            "/search/pools",
            params={"query": query, "network": self.chain_id, "include": _POOL_INCLUDES},
        )
        return dedupe_by_address(self._normalize_pools(payload))

    async def get_trending(self) -> list[Token]:
        payload = await self.client.get(
            f"/networks/{self.chain_id}/trending_pools",
            params={"include": _POOL_INCLUDES},
        )
        return dedupe_by_address(self._normalize_pools(payload))

    async def get_by_address(self, address: str) -> list[Token]:
        payload = await self.client.get(f"/networks/{self.chain_id}/tokens/{address}")
        tokens = self._normalize_tokens(self._records(payload))
        return [token for token in tokens if token.address == address]

    async def _fetch_chunk(self, addresses: Sequence[str]) -> list[Token]:
        joined = ",".join(addresses)
        payload = await self.client.get(
            f"/networks/{self.chain_id}/tokens/multi/{joined}"
        )
        return self._normalize_tokens(self._records(payload))

    def _normalize_pools(self, payload: Any) -> list[Token]:
        records = self._records(payload)
        included = index_included_tokens(payload.get("included"), chain_id=self.chain_id)
        mapper = partial(
            normalize_geckoterminal_pool,
            chain_id=self.chain_id,
            now_ms=self._clock(),
            included=included,
        )
        return self._normalize_many(records, mapper)

    def _normalize_tokens(self, records: list) -> list[Token]:
        mapper = partial(
            normalize_geckoterminal_token, chain_id=self.chain_id, now_ms=self._clock()
        )
        return self._normalize_many(records, mapper)
