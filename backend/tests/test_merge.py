from __future__ import annotations

import itertools

from app.domain import TokenSource
from app.services.merge import MergePolicy, merge_all, merge_tokens
from conftest import make_token

DEX = TokenSource.DEXSCREENER
GECKO = TokenSource.GECKOTERMINAL
JUP = TokenSource.JUPITER


def _by_address(tokens):
    return {token.address: token for token in tokens}


def _sample_batches():
    dex = [
        make_token("X", DEX, name="Dex X", volume_usd=100.0, price_usd=1.0, price_native=0.01,
                   transaction_count=50, price_change_24h=-4.0, protocol="raydium",
                   created_at=1_600, updated_at=1_000),
        make_token("Y", DEX, name="Dex Y", liquidity_usd=10.0, updated_at=1_500),
    ]
    gecko = [
        make_token("X", GECKO, name="Gecko X", volume_usd=150.0, liquidity_usd=900.0,
                   price_usd=1.1, transaction_count=70, created_at=1_500, updated_at=2_000),
        make_token("Z", GECKO, name="Gecko Z", market_cap_usd=5.0, updated_at=1_200),
    ]
    jupiter = [make_token("X", JUP, name="", ticker="", price_usd=1.05, updated_at=2_500)]
    return [dex, gecko, jupiter]


def test_higher_priority_market_source_wins_volume():
    low = [make_token("X", DEX, volume_usd=100.0, updated_at=1_000)]
    high = [make_token("X", GECKO, volume_usd=150.0, updated_at=2_000)]

    (merged,) = merge_all([low, high])

    assert merged.address == "X"
    assert merged.volume_usd == 150.0
    assert merged.updated_at == 2_000


def test_field_classes_follow_precedence_table():
    merged = _by_address(merge_all(_sample_batches()))["X"]

    assert merged.name == "Dex X"
    assert merged.source is DEX
    assert merged.protocol == "raydium"
    assert merged.price_usd == 1.05
    assert merged.price_native == 0.01
    assert merged.volume_usd == 150.0
    assert merged.liquidity_usd == 900.0
    assert merged.transaction_count == 50
    assert merged.price_change_24h == -4.0
    assert merged.created_at == 1_500
    assert merged.updated_at == 2_500


def test_absent_values_never_override_present_ones():
    dex = make_token("X", DEX, volume_usd=0.0, price_usd=None, protocol=None)
    gecko = make_token("X", GECKO, volume_usd=42.0, price_usd=2.0, protocol="orca")

    merged = merge_tokens([dex, gecko])

    assert merged.volume_usd == 42.0
    assert merged.price_usd == 2.0
    assert merged.protocol == "orca"
    assert merged.source is DEX


def test_equal_rank_ties_go_to_larger_value():
    first = make_token("X", DEX, volume_usd=10.0, name="Alpha")
    second = make_token("X", DEX, volume_usd=30.0, name="Beta")

    assert merge_tokens([first, second]) == merge_tokens([second, first])
    assert merge_tokens([first, second]).volume_usd == 30.0


def test_merge_is_order_independent():
    batches = _sample_batches()
    expected = merge_all(batches)

    for ordering in itertools.permutations(batches):
        shuffled = [list(reversed(batch)) for batch in ordering]
        assert merge_all(shuffled) == expected


def test_merge_is_idempotent():
    merged = merge_all(_sample_batches())

    assert merge_all([merged]) == merged
    assert merge_all([merged, merged]) == merged


def test_merge_output_has_one_token_per_address():
    merged = merge_all(_sample_batches())

    addresses = [token.address for token in merged]
    assert addresses == sorted(set(addresses)) == ["X", "Y", "Z"]


def test_custom_policy_changes_price_winner():
    policy = MergePolicy(price=(GECKO, DEX, JUP))

    merged = _by_address(merge_all(_sample_batches(), policy))["X"]

    assert merged.price_usd == 1.1
