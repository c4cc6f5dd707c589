from __future__ import annotations

import asyncio

import pytest

from app.core.errors import NotFoundError, UpstreamError, ValidationError
from app.domain import TokenFilters, TokenSource
from app.services.cache import AggregationCache, MemoryCacheStore
from app.services.token_service import TokenAggregationService
from conftest import StubAdapter, make_token
from ingestion.adapters import AdapterRole
from ingestion.service import AdapterSet

DEX = TokenSource.DEXSCREENER
GECKO = TokenSource.GECKOTERMINAL
JUP = TokenSource.JUPITER


@pytest.fixture
def dex():
    return StubAdapter(
        DEX,
        tokens=[
            make_token("BonkMint", DEX, name="Bonk", ticker="BONK", price_usd=0.00003,
                       volume_usd=500.0, updated_at=1_000),
            make_token("WifMint", DEX, name="dogwifhat", ticker="WIF", price_usd=3.0,
                       volume_usd=900.0, updated_at=1_000),
        ],
    )


@pytest.fixture
def gecko():
    return StubAdapter(
        GECKO,
        tokens=[
            make_token("BonkMint", GECKO, name="BONK", ticker="BONK", volume_usd=520.0,
                       liquidity_usd=1_000.0, updated_at=1_100),
            make_token("PopcatMint", GECKO, name="Popcat", ticker="POPCAT", volume_usd=50.0,
                       updated_at=1_100),
        ],
    )


@pytest.fixture
def jupiter():
    return StubAdapter(
        JUP,
        role=AdapterRole.ENRICHMENT,
        tokens=[make_token("BonkMint", JUP, name="", ticker="", price_usd=0.000031, updated_at=1_200)],
    )


def _service(test_settings, clock, listing, enrichment=()):
    adapters = AdapterSet(listing=list(listing), enrichment=list(enrichment))
    cache = AggregationCache(MemoryCacheStore(), clock=clock)
    return TokenAggregationService(adapters, cache, settings=test_settings, clock=clock)


def test_fetch_snapshot_merges_listing_and_enrichment(test_settings, clock, dex, gecko, jupiter):
    service = _service(test_settings, clock, [dex, gecko], [jupiter])

    snapshot = asyncio.run(service.fetch_snapshot())

    assert set(snapshot.tokens) == {"BonkMint", "WifMint", "PopcatMint"}
    bonk = snapshot.get("BonkMint")
    assert bonk.name == "Bonk"
    assert bonk.price_usd == 0.000031
    assert bonk.volume_usd == 520.0
    assert bonk.updated_at == 1_200
    assert snapshot.captured_at == clock.now
    assert jupiter.calls == [("get_batch", ["BonkMint", "PopcatMint", "WifMint"])]


def test_fetch_snapshot_tolerates_one_failed_listing_source(test_settings, clock, dex, jupiter):
    broken = StubAdapter(GECKO, fail=True)
    service = _service(test_settings, clock, [dex, broken], [jupiter])

    snapshot = asyncio.run(service.fetch_snapshot())

    assert set(snapshot.tokens) == {"BonkMint", "WifMint"}


def test_fetch_snapshot_fails_when_every_listing_source_fails(test_settings, clock, jupiter):
    service = _service(
        test_settings, clock, [StubAdapter(DEX, fail=True), StubAdapter(GECKO, fail=True)], [jupiter]
    )

    with pytest.raises(UpstreamError):
        asyncio.run(service.fetch_snapshot())
    assert jupiter.calls == []


def test_enrichment_failure_keeps_listing_data(test_settings, clock, dex):
    broken_prices = StubAdapter(JUP, role=AdapterRole.ENRICHMENT, fail=True)
    service = _service(test_settings, clock, [dex], [broken_prices])

    snapshot = asyncio.run(service.fetch_snapshot())

    assert snapshot.get("BonkMint").price_usd == 0.00003


def test_list_tokens_reuses_cached_snapshot(test_settings, clock, dex, gecko):
    service = _service(test_settings, clock, [dex, gecko])

    async def scenario():
        first = await service.list_tokens()
        second = await service.list_tokens(TokenFilters(min_volume=100))
        return first, second

    first, second = asyncio.run(scenario())

    assert [token.address for token in first.items] == ["WifMint", "BonkMint", "PopcatMint"]
    assert second.total == 2
    assert [call[0] for call in dex.calls] == ["get_trending"]


def test_search_validates_and_caches_per_query(test_settings, clock, dex, gecko):
    service = _service(test_settings, clock, [dex, gecko])

    with pytest.raises(ValidationError):
        asyncio.run(service.search(" b "))

    async def scenario():
        first = await service.search("bonk")
        again = await service.search("BONK")
        return first, again

    first, again = asyncio.run(scenario())

    assert [token.address for token in first.items] == ["BonkMint"]
    assert again.items == first.items
    assert [call for call in dex.calls if call[0] == "search"] == [("search", "bonk")]


def test_search_fails_when_every_source_fails(test_settings, clock):
    service = _service(test_settings, clock, [StubAdapter(DEX, fail=True)])

    with pytest.raises(UpstreamError):
        asyncio.run(service.search("bonk"))


def test_trending_orders_by_volume_and_limits(test_settings, clock, dex, gecko):
    service = _service(test_settings, clock, [dex, gecko])

    tokens = asyncio.run(service.trending(2))

    assert [token.address for token in tokens] == ["WifMint", "BonkMint"]


def test_get_token_falls_back_to_direct_lookup(test_settings, clock, dex, jupiter):
    lookup_only = StubAdapter(GECKO, tokens=[])
    service = _service(test_settings, clock, [dex, lookup_only], [jupiter])

    async def scenario():
        await service.snapshot()
        # Known upstream by address but missing from the cached listing.
        dex.tokens.append(make_token("LateMint", DEX, name="Late", ticker="LATE"))
        cached = await service.get_token("BonkMint")
        late = await service.get_token("LateMint")
        return cached, late

    cached, late = asyncio.run(scenario())

    assert cached.price_usd == 0.000031
    assert late.name == "Late"
    assert ("get_by_address", "LateMint") in dex.calls
    assert ("get_by_address", "BonkMint") not in dex.calls


def test_get_token_raises_not_found_for_unknown_address(test_settings, clock, dex):
    service = _service(test_settings, clock, [dex])

    with pytest.raises(NotFoundError):
        asyncio.run(service.get_token("NoSuchMint"))
    with pytest.raises(ValidationError):
        asyncio.run(service.get_token("  "))


def test_health_reports_degraded_and_unhealthy(test_settings, clock, dex, jupiter):
    down = StubAdapter(GECKO, healthy=False)

    degraded = asyncio.run(_service(test_settings, clock, [dex, down], [jupiter]).health())
    unhealthy = asyncio.run(
        _service(test_settings, clock, [StubAdapter(DEX, healthy=False)]).health()
    )
    healthy = asyncio.run(_service(test_settings, clock, [dex], [jupiter]).health())

    assert degraded["status"] == "degraded"
    assert degraded["sources"] == {"dexscreener": True, "geckoterminal": False, "jupiter": True}
    assert unhealthy["status"] == "unhealthy"
    assert healthy["status"] == "healthy"
    assert degraded["cache"]["backend"] == "memory"
