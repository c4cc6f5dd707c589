"""Merge per-provider token records into one canonical record per address.

Every field is resolved independently over all records for an address. A
record only competes for a field when its value is present (non-zero,
non-empty, not ``None``); among competitors the highest ``(rank, value)``
wins, where rank comes from the field class precedence in
:class:`MergePolicy`. Because the winner is a maximum over the whole group,
the result does not depend on arrival order or on repeated inputs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from app.domain import Token, TokenSource

IDENTITY_FIELDS = ("name", "ticker", "protocol", "venue_id", "pair_address")
PRICE_FIELDS = ("price_native", "price_usd")
MARKET_FIELDS = (
    "market_cap_native",
    "market_cap_usd",
    "volume_native",
    "volume_usd",
    "liquidity_native",
    "liquidity_usd",
)
ACTIVITY_FIELDS = (
    "transaction_count",
    "price_change_1h",
    "price_change_24h",
    "price_change_7d",
)


@dataclass(frozen=True, slots=True)
class MergePolicy:
    """Source precedence per field class, highest priority first."""

    identity: tuple[TokenSource, ...] = (
        TokenSource.DEXSCREENER,
        TokenSource.GECKOTERMINAL,
        TokenSource.JUPITER,
    )
    price: tuple[TokenSource, ...] = (
        TokenSource.JUPITER,
        TokenSource.DEXSCREENER,
        TokenSource.GECKOTERMINAL,
    )
    market: tuple[TokenSource, ...] = (
        TokenSource.GECKOTERMINAL,
        TokenSource.DEXSCREENER,
        TokenSource.JUPITER,
    )
    activity: tuple[TokenSource, ...] = (
        TokenSource.DEXSCREENER,
        TokenSource.GECKOTERMINAL,
        TokenSource.JUPITER,
    )

    def rank(self, order: Sequence[TokenSource], source: TokenSource) -> int:
        """Higher is better; sources missing from ``order`` rank lowest."""

        if source not in order:
            return 0
        return len(order) - order.index(source)


DEFAULT_POLICY = MergePolicy()


def _present(value: Any) -> bool:
    return value is not None and value != 0 and value != ""


def _resolve(
    group: Sequence[Token], field_name: str, order: Sequence[TokenSource], policy: MergePolicy
) -> Any:
    candidates = [
        (policy.rank(order, token.source), getattr(token, field_name))
        for token in group
        if _present(getattr(token, field_name))
    ]
    if not candidates:
        return None
    return max(candidates)[1]


def merge_tokens(group: Sequence[Token], policy: MergePolicy = DEFAULT_POLICY) -> Token:
    """Merge records that share one address. ``group`` must be non-empty."""

    address = group[0].address
    resolved: dict[str, Any] = {}
    for names, order in (
        (IDENTITY_FIELDS, policy.identity),
        (PRICE_FIELDS, policy.price),
        (MARKET_FIELDS, policy.market),
        (ACTIVITY_FIELDS, policy.activity),
    ):
        for name in names:
            value = _resolve(group, name, order, policy)
            if value is not None:
                resolved[name] = value

    created = [token.created_at for token in group if _present(token.created_at)]
    source = max(group, key=lambda token: (policy.rank(policy.identity, token.source), token.source.value)).source

    return Token(
        address=address,
        name=resolved.pop("name", ""),
        ticker=resolved.pop("ticker", ""),
        source=source,
        updated_at=max(token.updated_at for token in group),
        created_at=min(created) if created else None,
        **resolved,
    )


def merge_all(
    results_per_source: Iterable[Iterable[Token]],
    policy: MergePolicy = DEFAULT_POLICY,
) -> list[Token]:
    """Group every token by address and merge each group, ordered by address."""

    groups: dict[str, list[Token]] = defaultdict(list)
    for batch in results_per_source:
        for token in batch:
            groups[token.address].append(token)
    return [merge_tokens(groups[address], policy) for address in sorted(groups)]
