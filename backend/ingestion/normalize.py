from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from dateutil import parser as date_parser

from app.domain import Token, TokenSource

from .payloads import (
    DexScreenerPair,
    GeckoTerminalPool,
    GeckoTerminalToken,
    GeckoTerminalTokenAttributes,
    JupiterPrice,
)

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

# Mints that normally sit on the quote side of a pool; when one of them is the
# base token the other side is the token being described.
KNOWN_QUOTE_MINTS = frozenset({WRAPPED_SOL_MINT, USDC_MINT, USDT_MINT})


class NormalizationError(ValueError):
    """Raised when a raw provider record cannot be mapped onto a Token."""


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError, OverflowError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _epoch_seconds(value: Any) -> int | None:
    parsed = _parse_datetime(value)
    return int(parsed.timestamp()) if parsed else None


def _native_ratio(price_native: float, price_usd: float) -> float:
    """Native units per USD, or 0 when either price is unknown."""

    if price_native <= 0 or price_usd <= 0:
        return 0.0
    return price_native / price_usd


def _invert_change(change_pct: float) -> float:
    """Convert a base-side percentage move into the quote-side move."""

    if change_pct <= -100:
        return 0.0
    return (100.0 / (100.0 + change_pct) - 1.0) * 100.0


def _address_from_id(identifier: str | None, chain_id: str) -> str | None:
    """Extract ``ADDRESS`` from GeckoTerminal identifiers shaped ``<network>_<ADDRESS>``."""

    if not identifier:
        return None
    network, sep, address = identifier.partition("_")
    if not sep or network != chain_id or not address:
        return None
    return address


def normalize_dexscreener_pair(
    raw: Mapping[str, Any], *, chain_id: str, now_ms: int
) -> Token | None:
    """Map a DexScreener pair onto a Token.

    Returns ``None`` for pairs on another chain and raises
    :class:`NormalizationError` (or pydantic's ``ValidationError``) for
    records missing identity fields.
    """

    pair = DexScreenerPair.model_validate(raw)
    if pair.chain_id != chain_id:
        return None

    subject = pair.base_token
    price_native = pair.price_native
    price_usd = pair.price_usd
    market_cap_usd = pair.market_cap or pair.fdv
    change_1h = pair.price_change.get("h1", 0.0)
    change_24h = pair.price_change.get("h24", 0.0)

    if subject.address in KNOWN_QUOTE_MINTS:
        quote = pair.quote_token
        if quote is None or quote.address in KNOWN_QUOTE_MINTS:
            raise NormalizationError(
                f"pair {pair.pair_address} has no non-quote token to describe"
            )
        subject = quote
        price_native = 1.0 / pair.price_native if pair.price_native > 0 else 0.0
        price_usd = pair.price_usd * price_native
        # Market cap and moves reported for the pair describe the base token.
        market_cap_usd = 0.0
        change_1h = _invert_change(change_1h)
        change_24h = _invert_change(change_24h)

    ratio = _native_ratio(price_native, price_usd)
    volume_usd = pair.volume.get("h24", 0.0)
    liquidity_usd = pair.liquidity.usd
    window = pair.txns.get("h24")
    transaction_count = (window.buys + window.sells) if window else 0

    return Token(
        address=subject.address,
        name=subject.name or subject.symbol,
        ticker=subject.symbol,
        source=TokenSource.DEXSCREENER,
        updated_at=now_ms,
        price_native=max(price_native, 0.0),
        price_usd=price_usd if price_usd > 0 else None,
        market_cap_native=max(market_cap_usd * ratio, 0.0),
        market_cap_usd=max(market_cap_usd, 0.0),
        volume_native=max(volume_usd * ratio, 0.0),
        volume_usd=max(volume_usd, 0.0),
        liquidity_native=max(liquidity_usd * ratio, 0.0),
        liquidity_usd=max(liquidity_usd, 0.0),
        transaction_count=transaction_count,
        price_change_1h=change_1h,
        price_change_24h=change_24h,
        protocol=pair.dex_id,
        venue_id=pair.dex_id,
        pair_address=pair.pair_address,
        created_at=pair.pair_created_at // 1000 if pair.pair_created_at else None,
    )


def index_included_tokens(
    included: Any, *, chain_id: str
) -> dict[str, GeckoTerminalTokenAttributes]:
    """Index the ``included`` token side-load of a GeckoTerminal pools response by address."""

    indexed: dict[str, GeckoTerminalTokenAttributes] = {}
    if not isinstance(included, list):
        return indexed
    for item in included:
        if not isinstance(item, dict) or item.get("type") != "token":
            continue
        try:
            token = GeckoTerminalToken.model_validate(item)
        except ValueError:
            continue
        if _address_from_id(token.id, chain_id) is None:
            continue
        indexed[token.attributes.address] = token.attributes
    return indexed


def normalize_geckoterminal_pool(
    raw: Mapping[str, Any],
    *,
    chain_id: str,
    now_ms: int,
    included: Mapping[str, GeckoTerminalTokenAttributes] | None = None,
) -> Token | None:
    pool = GeckoTerminalPool.model_validate(raw)
    if _address_from_id(pool.id, chain_id) is None:
        return None

    attrs = pool.attributes
    relationships = pool.relationships
    base_address = _address_from_id(
        relationships.base_token.data.id if relationships.base_token.data else None,
        chain_id,
    )
    quote_address = _address_from_id(
        relationships.quote_token.data.id if relationships.quote_token.data else None,
        chain_id,
    )
    if base_address is None:
        raise NormalizationError(f"pool {pool.id} is missing its base token")

    name_parts = [part.strip() for part in attrs.name.split("/")] if attrs.name else []
    address = base_address
    price_usd = attrs.base_token_price_usd
    price_native = attrs.base_token_price_native_currency
    change_1h = attrs.price_change_percentage.get("h1", 0.0)
    change_24h = attrs.price_change_percentage.get("h24", 0.0)
    market_cap_usd = attrs.market_cap_usd or attrs.fdv_usd
    label = name_parts[0] if name_parts else ""

    if base_address in KNOWN_QUOTE_MINTS and quote_address and quote_address not in KNOWN_QUOTE_MINTS:
        address = quote_address
        price_usd = attrs.quote_token_price_usd
        price_native = attrs.quote_token_price_native_currency
        change_1h = _invert_change(change_1h)
        change_24h = _invert_change(change_24h)
        market_cap_usd = 0.0
        label = name_parts[1] if len(name_parts) > 1 else ""

    token_meta = (included or {}).get(address)
    ratio = _native_ratio(price_native, price_usd)
    volume_usd = attrs.volume_usd.get("h24", 0.0)
    liquidity_usd = attrs.reserve_in_usd
    window = attrs.transactions.get("h24")
    dex = relationships.dex.data.id if relationships.dex.data else None

    return Token(
        address=address,
        name=(token_meta.name if token_meta and token_meta.name else label),
        ticker=(token_meta.symbol if token_meta and token_meta.symbol else label),
        source=TokenSource.GECKOTERMINAL,
        updated_at=now_ms,
        price_native=max(price_native, 0.0),
        price_usd=price_usd if price_usd > 0 else None,
        market_cap_native=max(market_cap_usd * ratio, 0.0),
        market_cap_usd=max(market_cap_usd, 0.0),
        volume_native=max(volume_usd * ratio, 0.0),
        volume_usd=max(volume_usd, 0.0),
        liquidity_native=max(liquidity_usd * ratio, 0.0),
        liquidity_usd=max(liquidity_usd, 0.0),
        transaction_count=(window.buys + window.sells) if window else 0,
        price_change_1h=change_1h,
        price_change_24h=change_24h,
        protocol=dex,
        venue_id=dex,
        pair_address=attrs.address or _address_from_id(pool.id, chain_id),
        created_at=_epoch_seconds(attrs.pool_created_at),
    )


def normalize_geckoterminal_token(
    raw: Mapping[str, Any], *, chain_id: str, now_ms: int
) -> Token | None:
    token = GeckoTerminalToken.model_validate(raw)
    if _address_from_id(token.id, chain_id) is None:
        return None
    attrs = token.attributes
    return Token(
        address=attrs.address,
        name=attrs.name or attrs.symbol,
        ticker=attrs.symbol,
        source=TokenSource.GECKOTERMINAL,
        updated_at=now_ms,
        price_usd=attrs.price_usd if attrs.price_usd > 0 else None,
        market_cap_usd=max(attrs.market_cap_usd or attrs.fdv_usd, 0.0),
        volume_usd=max(attrs.volume_usd.get("h24", 0.0), 0.0),
        liquidity_usd=max(attrs.total_reserve_in_usd, 0.0),
    )


def normalize_jupiter_price(raw: Mapping[str, Any], *, now_ms: int) -> Token:
    price = JupiterPrice.model_validate(raw)
    if price.price <= 0:
        raise NormalizationError(f"Jupiter returned no usable price for {price.id}")
    return Token(
        address=price.id,
        name="",
        ticker="",
        source=TokenSource.JUPITER,
        updated_at=now_ms,
        price_usd=price.price,
    )
