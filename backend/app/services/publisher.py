"""Periodic diffing of fresh snapshots against the last published one."""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from loguru import logger

from app.core.errors import AggregatorError
from app.domain import PriceDelta, Snapshot, Token, TokenSort

from .push import NEW_TOKEN, PRICE_UPDATE, TOKEN_UPDATES_TOPIC, PushChannel
from .query import sort_tokens
from .scheduler import IntervalScheduler
from .token_service import TokenAggregationService


class PublisherState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    COMPARING = "comparing"
    PUBLISHING = "publishing"


def _comparable_prices(old: Token, new: Token) -> tuple[float, float] | None:
    if old.price_usd and new.price_usd:
        return old.price_usd, new.price_usd
    if old.price_native > 0 and new.price_native > 0:
        return old.price_native, new.price_native
    return None


def compute_price_deltas(
    previous: Snapshot, current: Iterable[Token], threshold_pct: float
) -> list[PriceDelta]:
    """Price moves strictly larger than ``threshold_pct`` for addresses in both sets."""

    deltas: list[PriceDelta] = []
    for token in current:
        old = previous.get(token.address)
        if old is None:
            continue
        prices = _comparable_prices(old, token)
        if prices is None:
            continue
        old_price, new_price = prices
        change = (new_price - old_price) / old_price * 100.0
        if abs(change) > threshold_pct:
            deltas.append(
                PriceDelta(
                    address=token.address,
                    old_price=old_price,
                    new_price=new_price,
                    change_percent=change,
                )
            )
    return deltas


class DeltaPublisher:
    """Refresh on a schedule and push only what changed to subscribers.

    The retained snapshot is private to the publisher. The first successful
    cycle only records a baseline. A failed refresh leaves the baseline as is.
    """

    def __init__(
        self,
        service: TokenAggregationService,
        channel: PushChannel,
        *,
        threshold_pct: float = 0.1,
        topic: str = TOKEN_UPDATES_TOPIC,
    ) -> None:
        self.service = service
        self.channel = channel
        self.threshold_pct = threshold_pct
        self.topic = topic
        self.state = PublisherState.IDLE
        self._snapshot: Snapshot | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def top_tokens(self, limit: int) -> list[Token]:
        if self._snapshot is None or limit <= 0:
            return []
        ordered = sort_tokens(self._snapshot.values(), TokenSort(field="volume", direction="desc"))
        return ordered[:limit]

    def schedule(
        self,
        scheduler: IntervalScheduler,
        *,
        price_interval_seconds: float,
        discovery_interval_seconds: float,
    ) -> None:
        scheduler.every(discovery_interval_seconds, self.discovery_cycle, name="discovery_cycle")
        scheduler.every(price_interval_seconds, self.price_cycle, name="price_cycle")

    async def price_cycle(self) -> list[PriceDelta]:
        if self.channel.subscriber_count(self.topic) == 0:
            logger.debug("Skipping price cycle; no subscribers on {}", self.topic)
            return []
        current = await self._refresh(use_cache=False)
        if current is None:
            return []
        try:
            if self._snapshot is None:
                self._snapshot = current
                logger.info("Publisher baseline set with {} tokens", len(current))
                return []

            self.state = PublisherState.COMPARING
            deltas = compute_price_deltas(self._snapshot, current, self.threshold_pct)
            retained = dict(self._snapshot.tokens)
            for token in current:
                # Unseen addresses are announced by the discovery cycle.
                if token.address in retained:
                    retained[token.address] = token
            self._snapshot = Snapshot.from_tokens(
                retained.values(), captured_at=current.captured_at
            )

            if deltas:
                self.state = PublisherState.PUBLISHING
                await self.channel.publish(
                    self.topic, PRICE_UPDATE, [delta.to_dict() for delta in deltas]
                )
            logger.debug("Price cycle found {} deltas", len(deltas))
            return deltas
        finally:
            self.state = PublisherState.IDLE

    async def discovery_cycle(self) -> list[Token]:
        await self.service.clear_cache()
        current = await self._refresh(use_cache=True)
        if current is None:
            return []
        try:
            if self._snapshot is None:
                self._snapshot = current
                logger.info("Publisher baseline set with {} tokens", len(current))
                return []

            self.state = PublisherState.COMPARING
            fresh = [token for token in current if token.address not in self._snapshot]
            self._snapshot = current

            if fresh:
                self.state = PublisherState.PUBLISHING
                await self.channel.publish(
                    self.topic, NEW_TOKEN, [token.to_dict() for token in fresh]
                )
            logger.info("Discovery cycle found {} new tokens", len(fresh))
            return fresh
        finally:
            self.state = PublisherState.IDLE

    async def _refresh(self, *, use_cache: bool) -> Snapshot | None:
        self.state = PublisherState.REFRESHING
        try:
            if use_cache:
                return await self.service.snapshot()
            return await self.service.fetch_snapshot()
        except AggregatorError as exc:
            logger.warning("Publisher refresh failed; keeping previous snapshot: {}", exc)
            self.state = PublisherState.IDLE
            return None
