from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from app.domain import TokenSource

T = TypeVar("T")


class TokenOut(BaseModel):
    address: str
    name: str
    ticker: str
    source: TokenSource
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
    created_at: int | None = Field(default=None, description="Epoch seconds")
    updated_at: int = Field(description="Epoch milliseconds of the last merge")

    model_config = {"from_attributes": True}


class TokenPageOut(BaseModel):
    items: list[TokenOut]
    has_more: bool
    total: int
    next_cursor: str | None = None


class CacheStatsOut(BaseModel):
    backend: str
    connected: bool
    entries: int | None = None
    hits: int
    misses: int
    coalesced: int
    errors: int


class HealthOut(BaseModel):
    status: str
    sources: dict[str, bool]
    cache: CacheStatsOut


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Any | None = None


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every REST response."""

    success: bool = True
    data: T | None = None
    timestamp: int
    error: ErrorBody | None = None
