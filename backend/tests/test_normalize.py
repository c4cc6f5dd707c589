from __future__ import annotations

import copy

import pytest

from app.domain import TokenSource
from ingestion.normalize import (
    NormalizationError,
    index_included_tokens,
    normalize_dexscreener_pair,
    normalize_geckoterminal_pool,
    normalize_geckoterminal_token,
    normalize_jupiter_price,
)
from ingestion.payloads import coerce_float

NOW_MS = 1_700_000_123_000


def test_coerce_float_never_propagates_nan_or_infinity():
    assert coerce_float("1.5") == 1.5
    assert coerce_float("nan") == 0.0
    assert coerce_float("inf") == 0.0
    assert coerce_float(None) == 0.0
    assert coerce_float("abc") == 0.0
    assert coerce_float(True) == 0.0


def test_dexscreener_pair_maps_core_fields(dexscreener_search_payload):
    raw = dexscreener_search_payload["pairs"][0]
    token = normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS)

    assert token is not None
    assert token.address == "BonkMint111"
    assert token.name == "Bonk"
    assert token.ticker == "BONK"
    assert token.source is TokenSource.DEXSCREENER
    assert token.price_usd == pytest.approx(0.00003)
    assert token.price_native == pytest.approx(0.0000002)
    assert token.volume_usd == 500000
    assert token.liquidity_usd == 250000
    assert token.market_cap_usd == 1800000
    assert token.transaction_count == 2000
    assert token.price_change_1h == 1.5
    assert token.price_change_24h == -3.2
    assert token.protocol == "raydium"
    assert token.pair_address == "PairBonkRaydium"
    assert token.created_at == 1_700_000_000
    assert token.updated_at == NOW_MS
    # native values follow the pair's native/usd ratio
    assert token.volume_native == pytest.approx(500000 * 0.0000002 / 0.00003)


def test_dexscreener_null_txn_window_keeps_the_pair():
    raw = {
        "chainId": "solana",
        "dexId": "raydium",
        "pairAddress": "PairNullWindow",
        "baseToken": {"address": "NullWindowMint", "name": "Null Window", "symbol": "NULW"},
        "quoteToken": {"address": "So11111111111111111111111111111111111111112", "symbol": "SOL"},
        "priceNative": "0.001",
        "priceUsd": "0.15",
        "txns": {"h24": {"buys": 3, "sells": 4}, "m5": None, "h1": "n/a"},
    }

    token = normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS)

    assert token is not None
    assert token.address == "NullWindowMint"
    assert token.transaction_count == 7


def test_geckoterminal_null_transaction_window_keeps_the_pool(geckoterminal_trending_payload):
    raw = copy.deepcopy(geckoterminal_trending_payload["data"][0])
    raw["attributes"]["transactions"]["m5"] = None

    token = normalize_geckoterminal_pool(raw, chain_id="solana", now_ms=NOW_MS)

    assert token is not None
    assert token.address == "BonkMint111"
    assert token.transaction_count == 2000


def test_dexscreener_pair_with_quote_mint_as_base_describes_quote_token(dexscreener_search_payload):
    raw = dexscreener_search_payload["pairs"][2]
    token = normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS)

    assert token is not None
    assert token.address == "WifMint222"
    assert token.ticker == "WIF"
    assert token.price_native == pytest.approx(0.02)
    assert token.price_usd == pytest.approx(3.0)
    assert token.market_cap_usd == 0.0
    assert token.price_change_24h == pytest.approx((100 / 110 - 1) * 100)
    assert token.transaction_count == 500


def test_dexscreener_pair_on_other_chain_is_skipped(dexscreener_search_payload):
    raw = dexscreener_search_payload["pairs"][3]
    assert normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS) is None


def test_dexscreener_pair_without_base_token_raises(dexscreener_search_payload):
    raw = dexscreener_search_payload["pairs"][4]
    with pytest.raises(ValueError):
        normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS)


def test_dexscreener_pair_between_two_quote_mints_is_rejected():
    raw = {
        "chainId": "solana",
        "pairAddress": "SolUsdc",
        "baseToken": {"address": "So11111111111111111111111111111111111111112", "symbol": "SOL"},
        "quoteToken": {"address": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "symbol": "USDC"},
        "priceNative": "150",
        "priceUsd": "150",
    }
    with pytest.raises(NormalizationError):
        normalize_dexscreener_pair(raw, chain_id="solana", now_ms=NOW_MS)


def test_geckoterminal_pool_uses_included_token_metadata(geckoterminal_trending_payload):
    included = index_included_tokens(geckoterminal_trending_payload["included"], chain_id="solana")
    raw = geckoterminal_trending_payload["data"][0]
    token = normalize_geckoterminal_pool(raw, chain_id="solana", now_ms=NOW_MS, included=included)

    assert token is not None
    assert token.address == "BonkMint111"
    assert token.name == "Bonk"
    assert token.source is TokenSource.GECKOTERMINAL
    assert token.price_usd == pytest.approx(0.0000305)
    assert token.market_cap_usd == 2100000
    assert token.liquidity_usd == pytest.approx(260000.5)
    assert token.volume_usd == 520000
    assert token.transaction_count == 2000
    assert token.protocol == "raydium"
    assert token.pair_address == "PoolBonkGecko"
    assert token.created_at == 1_700_000_000


def test_geckoterminal_pool_falls_back_to_pool_name(geckoterminal_trending_payload):
    raw = geckoterminal_trending_payload["data"][1]
    token = normalize_geckoterminal_pool(raw, chain_id="solana", now_ms=NOW_MS)

    assert token is not None
    assert token.address == "PopcatMint333"
    assert token.name == "POPCAT"
    assert token.ticker == "POPCAT"
    assert token.created_at is None


def test_geckoterminal_pool_filters_chain_and_requires_base(geckoterminal_trending_payload):
    other_chain, broken = geckoterminal_trending_payload["data"][2:4]
    assert normalize_geckoterminal_pool(other_chain, chain_id="solana", now_ms=NOW_MS) is None
    with pytest.raises(NormalizationError):
        normalize_geckoterminal_pool(broken, chain_id="solana", now_ms=NOW_MS)


def test_geckoterminal_token_prefers_market_cap_over_fdv(geckoterminal_tokens_payload):
    bonk, wif, other = geckoterminal_tokens_payload["data"]

    bonk_token = normalize_geckoterminal_token(bonk, chain_id="solana", now_ms=NOW_MS)
    wif_token = normalize_geckoterminal_token(wif, chain_id="solana", now_ms=NOW_MS)

    assert bonk_token.market_cap_usd == 1900000
    assert wif_token.market_cap_usd == 3000000000
    assert wif_token.liquidity_usd == 15000000
    assert wif_token.price_native == 0.0
    assert normalize_geckoterminal_token(other, chain_id="solana", now_ms=NOW_MS) is None


def test_jupiter_price_maps_usd_price_only():
    token = normalize_jupiter_price({"id": "BonkMint111", "price": "0.000031"}, now_ms=NOW_MS)

    assert token.source is TokenSource.JUPITER
    assert token.price_usd == pytest.approx(0.000031)
    assert token.name == ""
    assert token.volume_usd == 0.0


def test_jupiter_price_without_value_is_rejected():
    with pytest.raises(NormalizationError):
        normalize_jupiter_price({"id": "ZeroMint444", "price": "0"}, now_ms=NOW_MS)
