"""Typed domain representations shared by ingestion, aggregation, and the API."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping


class TokenSource(str, Enum):
    DEXSCREENER = "dexscreener"
    GECKOTERMINAL = "geckoterminal"
    JUPITER = "jupiter"


@dataclass(frozen=True, slots=True)
class Token:
    """Canonical, provider-agnostic token record."""

    address: str
    name: str
    ticker: str
    source: TokenSource
    updated_at: int
    price_native: float = 0.0
    price_usd: float | None = None
    market_cap_native: float = 0.0
    market_cap_usd: float = 0.0
    volume_native: float = 0.0
    volume_usd: float = 0.0
    liquidity_native: float = 0.0
    liquidity_usd: float = 0.0
    transaction_count: int = 0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    price_change_7d: float = 0.0
    protocol: str | None = None
    venue_id: str | None = None
    pair_address: str | None = None
    created_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["source"] = self.source.value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Token":
        data = dict(payload)
        data["source"] = TokenSource(data["source"])
        return cls(**data)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Immutable merged token set captured at ``captured_at`` (epoch ms)."""

    tokens: Mapping[str, Token]
    captured_at: int

    @classmethod
    def from_tokens(cls, tokens: Iterable[Token], *, captured_at: int) -> "Snapshot":
        indexed: dict[str, Token] = {}
        for token in tokens:
            indexed[token.address] = token
        return cls(tokens=MappingProxyType(indexed), captured_at=captured_at)

    def __len__(self) -> int:
        return len(self.tokens)

    def __iter__(self) -> Iterator[Token]:
        return iter(self.tokens.values())

    def __contains__(self, address: object) -> bool:
        return address in self.tokens

    def get(self, address: str) -> Token | None:
        return self.tokens.get(address)

    def values(self) -> list[Token]:
        return list(self.tokens.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "captured_at": self.captured_at,
            "tokens": [token.to_dict() for token in self.tokens.values()],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snapshot":
        tokens = [Token.from_dict(item) for item in payload.get("tokens", [])]
        return cls.from_tokens(tokens, captured_at=int(payload["captured_at"]))


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    snapshot: Snapshot
    expires_at: int

    def is_live(self, now_ms: int) -> bool:
        return now_ms < self.expires_at


SORT_FIELDS = ("volume", "market_cap", "price_change", "liquidity", "created_at")
SORT_DIRECTIONS = ("asc", "desc")
TIMEFRAMES = ("1h", "24h", "7d")


@dataclass(slots=True)
class TokenFilters:
    min_volume: float | None = None
    min_market_cap: float | None = None
    min_liquidity: float | None = None
    protocols: list[str] = field(default_factory=list)
    timeframe: str = "24h"


@dataclass(slots=True)
class TokenSort:
    field: str = "volume"
    direction: str = "desc"

    def __post_init__(self) -> None:
        if self.field not in SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{self.field}'")
        if self.direction not in SORT_DIRECTIONS:
            raise ValueError(f"Unsupported sort direction '{self.direction}'")


@dataclass(slots=True)
class PageRequest:
    cursor: str | None = None
    limit: int | None = None


@dataclass(slots=True)
class TokenPage:
    items: list[Token]
    has_more: bool
    total: int
    next_cursor: str | None = None


@dataclass(frozen=True, slots=True)
class PriceDelta:
    address: str
    old_price: float
    new_price: float
    change_percent: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
