"""Filter, sort, and page over a merged snapshot."""

from __future__ import annotations

import base64
import json
from typing import Callable, Iterable

from loguru import logger

from app.core.errors import ValidationError
from app.domain import PageRequest, Token, TokenFilters, TokenPage, TokenSort
from app.domain.models import TIMEFRAMES

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
# Cursors only ever carry {"offset": n}.
MAX_CURSOR_LENGTH = 64


def encode_cursor(offset: int) -> str:
    raw = json.dumps({"offset": offset}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> int:
    """Return the offset stored in ``cursor``; anything unreadable restarts at 0."""

    if not cursor:
        return 0
    if len(cursor) > MAX_CURSOR_LENGTH:
        logger.warning("Ignoring oversized cursor ({} characters)", len(cursor))
        return 0
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        offset = payload["offset"]
    except (ValueError, KeyError, TypeError, RecursionError) as exc:
        logger.warning("Ignoring malformed cursor {!r}: {}", cursor, exc)
        return 0
    if isinstance(offset, bool) or not isinstance(offset, int):
        logger.warning("Ignoring non-integer cursor offset {!r}", offset)
        return 0
    if offset < 0:
        logger.warning("Ignoring negative cursor offset {}", offset)
        return 0
    return offset


def clamp_limit(limit: int | None, *, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    if limit is None:
        limit = default
    return max(1, min(int(limit), maximum))


def filter_tokens(tokens: Iterable[Token], filters: TokenFilters) -> list[Token]:
    protocols = {protocol.lower() for protocol in filters.protocols if protocol}
    min_volume = filters.min_volume or 0.0
    min_market_cap = filters.min_market_cap or 0.0
    min_liquidity = filters.min_liquidity or 0.0

    def keep(token: Token) -> bool:
        if token.volume_usd < min_volume:
            return False
        if token.market_cap_usd < min_market_cap:
            return False
        if token.liquidity_usd < min_liquidity:
            return False
        if protocols and (token.protocol or "").lower() not in protocols:
            return False
        return True

    return [token for token in tokens if keep(token)]


def _sort_key(sort: TokenSort, timeframe: str) -> Callable[[Token], float]:
    if sort.field == "price_change":
        attribute = f"price_change_{timeframe}"
    else:
        attribute = {
            "volume": "volume_usd",
            "market_cap": "market_cap_usd",
            "liquidity": "liquidity_usd",
            "created_at": "created_at",
        }[sort.field]
    return lambda token: getattr(token, attribute) or 0


def sort_tokens(tokens: Iterable[Token], sort: TokenSort, *, timeframe: str = "24h") -> list[Token]:
    """Stable sort; equal keys keep their incoming order in both directions."""

    return sorted(tokens, key=_sort_key(sort, timeframe), reverse=sort.direction == "desc")


def query_tokens(
    tokens: Iterable[Token],
    filters: TokenFilters | None = None,
    sort: TokenSort | None = None,
    page: PageRequest | None = None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> TokenPage:
    filters = filters or TokenFilters()
    sort = sort or TokenSort()
    page = page or PageRequest()
    if filters.timeframe not in TIMEFRAMES:
        raise ValidationError(
            f"Unsupported timeframe '{filters.timeframe}'",
            details={"allowed": list(TIMEFRAMES)},
        )

    ordered = sort_tokens(filter_tokens(tokens, filters), sort, timeframe=filters.timeframe)
    total = len(ordered)
    offset = decode_cursor(page.cursor)
    limit = clamp_limit(page.limit, default=default_limit, maximum=max_limit)
    items = ordered[offset : offset + limit]
    has_more = offset + limit < total
    return TokenPage(
        items=items,
        has_more=has_more,
        total=total,
        next_cursor=encode_cursor(offset + limit) if has_more else None,
    )
