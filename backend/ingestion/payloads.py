"""Raw provider payload schemas.

These models describe what each upstream API returns. They never leave the
ingestion package: adapters validate raw records against them and
``ingestion.normalize`` maps the validated records onto :class:`Token`.
Numeric fields are lenient: strings are parsed and anything unparseable,
missing, NaN, or infinite becomes ``0``.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def coerce_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def coerce_int(value: Any) -> int:
    return int(round(coerce_float(value)))


def _coerce_float_map(value: Any) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {str(key): coerce_float(item) for key, item in value.items()}


def _window_map(value: Any) -> dict[str, Any]:
    """Keep only the windows that carry a counts object; null windows are skipped."""

    if not isinstance(value, dict):
        return {}
    return {str(key): item for key, item in value.items() if isinstance(item, dict)}


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class DexScreenerTokenRef(_Payload):
    address: str = Field(min_length=1)
    name: str = ""
    symbol: str = ""

    @field_validator("name", "symbol", mode="before")
    @classmethod
    def _blank_strings(cls, value: Any) -> str:
        return "" if value is None else str(value)


class TxnWindow(_Payload):
    buys: int = 0
    sells: int = 0

    @field_validator("buys", "sells", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> int:
        return max(coerce_int(value), 0)


class DexScreenerLiquidity(_Payload):
    usd: float = 0.0
    base: float = 0.0
    quote: float = 0.0

    @field_validator("usd", "base", "quote", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float:
        return coerce_float(value)


class DexScreenerPair(_Payload):
    chain_id: str = Field(alias="chainId")
    dex_id: str | None = Field(default=None, alias="dexId")
    pair_address: str | None = Field(default=None, alias="pairAddress")
    base_token: DexScreenerTokenRef = Field(alias="baseToken")
    quote_token: DexScreenerTokenRef | None = Field(default=None, alias="quoteToken")
    price_native: float = Field(default=0.0, alias="priceNative")
    price_usd: float = Field(default=0.0, alias="priceUsd")
    txns: dict[str, TxnWindow] = Field(default_factory=dict)
    volume: dict[str, float] = Field(default_factory=dict)
    price_change: dict[str, float] = Field(default_factory=dict, alias="priceChange")
    liquidity: DexScreenerLiquidity = Field(default_factory=DexScreenerLiquidity)
    fdv: float = 0.0
    market_cap: float = Field(default=0.0, alias="marketCap")
    pair_created_at: int | None = Field(default=None, alias="pairCreatedAt")

    @field_validator("price_native", "price_usd", "fdv", "market_cap", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float:
        return coerce_float(value)

    @field_validator("volume", "price_change", mode="before")
    @classmethod
    def _coerce_windows(cls, value: Any) -> dict[str, float]:
        return _coerce_float_map(value)

    @field_validator("txns", mode="before")
    @classmethod
    def _coerce_txns(cls, value: Any) -> dict[str, Any]:
        return _window_map(value)

    @field_validator("liquidity", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("pair_created_at", mode="before")
    @classmethod
    def _coerce_created(cls, value: Any) -> int | None:
        created = coerce_int(value)
        return created if created > 0 else None


class GeckoTerminalRelationRef(_Payload):
    id: str
    type: str | None = None


class GeckoTerminalRelation(_Payload):
    data: GeckoTerminalRelationRef | None = None


class GeckoTerminalPoolAttributes(_Payload):
    address: str | None = None
    name: str = ""
    base_token_price_usd: float = 0.0
    base_token_price_native_currency: float = 0.0
    quote_token_price_usd: float = 0.0
    quote_token_price_native_currency: float = 0.0
    fdv_usd: float = 0.0
    market_cap_usd: float = 0.0
    reserve_in_usd: float = 0.0
    pool_created_at: str | None = None
    volume_usd: dict[str, float] = Field(default_factory=dict)
    price_change_percentage: dict[str, float] = Field(default_factory=dict)
    transactions: dict[str, TxnWindow] = Field(default_factory=dict)

    @field_validator(
        "base_token_price_usd",
        "base_token_price_native_currency",
        "quote_token_price_usd",
        "quote_token_price_native_currency",
        "fdv_usd",
        "market_cap_usd",
        "reserve_in_usd",
        mode="before",
    )
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float:
        return coerce_float(value)

    @field_validator("volume_usd", "price_change_percentage", mode="before")
    @classmethod
    def _coerce_windows(cls, value: Any) -> dict[str, float]:
        return _coerce_float_map(value)

    @field_validator("transactions", mode="before")
    @classmethod
    def _coerce_transactions(cls, value: Any) -> dict[str, Any]:
        return _window_map(value)

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name(cls, value: Any) -> str:
        return "" if value is None else str(value)


class GeckoTerminalPoolRelationships(_Payload):
    base_token: GeckoTerminalRelation = Field(default_factory=GeckoTerminalRelation)
    quote_token: GeckoTerminalRelation = Field(default_factory=GeckoTerminalRelation)
    dex: GeckoTerminalRelation = Field(default_factory=GeckoTerminalRelation)


class GeckoTerminalPool(_Payload):
    id: str
    attributes: GeckoTerminalPoolAttributes
    relationships: GeckoTerminalPoolRelationships = Field(
        default_factory=GeckoTerminalPoolRelationships
    )


class GeckoTerminalTokenAttributes(_Payload):
    address: str = Field(min_length=1)
    name: str = ""
    symbol: str = ""
    price_usd: float = 0.0
    fdv_usd: float = 0.0
    market_cap_usd: float = 0.0
    total_reserve_in_usd: float = 0.0
    volume_usd: dict[str, float] = Field(default_factory=dict)

    @field_validator(
        "price_usd", "fdv_usd", "market_cap_usd", "total_reserve_in_usd", mode="before"
    )
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float:
        return coerce_float(value)

    @field_validator("volume_usd", mode="before")
    @classmethod
    def _coerce_windows(cls, value: Any) -> dict[str, float]:
        return _coerce_float_map(value)

    @field_validator("name", "symbol", mode="before")
    @classmethod
    def _blank_strings(cls, value: Any) -> str:
        return "" if value is None else str(value)


class GeckoTerminalToken(_Payload):
    id: str
    type: str = "token"
    attributes: GeckoTerminalTokenAttributes


class JupiterPrice(_Payload):
    id: str = Field(min_length=1)
    price: float = 0.0

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float:
        return coerce_float(value)
