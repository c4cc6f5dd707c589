from __future__ import annotations

from app.domain import Snapshot, Token, TokenSource
from app.schemas import ApiResponse, ErrorBody, TokenOut
from conftest import make_token


def test_token_out_reads_domain_dataclass():
    token = make_token("A", TokenSource.JUPITER, price_usd=1.25, created_at=123)

    out = TokenOut.model_validate(token)

    assert out.address == "A"
    assert out.source is TokenSource.JUPITER
    assert out.price_usd == 1.25
    assert out.model_dump(mode="json")["source"] == "jupiter"


def test_api_response_envelope_shapes():
    ok = ApiResponse[list[int]](data=[1, 2], timestamp=10)
    failed = ApiResponse[None](
        success=False, timestamp=11, error=ErrorBody(code="NOT_FOUND", message="missing")
    )

    assert ok.model_dump() == {"success": True, "data": [1, 2], "timestamp": 10, "error": None}
    assert failed.model_dump()["error"] == {"code": "NOT_FOUND", "message": "missing", "details": None}


def test_snapshot_round_trips_through_json_dict():
    snapshot = Snapshot.from_tokens(
        [make_token("A", volume_usd=3.0), make_token("B", TokenSource.GECKOTERMINAL)],
        captured_at=42,
    )

    restored = Snapshot.from_dict(snapshot.to_dict())

    assert restored.captured_at == 42
    assert dict(restored.tokens) == dict(snapshot.tokens)
    assert isinstance(restored.get("B"), Token)
    assert "A" in restored and len(restored) == 2
