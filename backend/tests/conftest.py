from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from app.core.config import Settings
from app.core.errors import UpstreamError
from app.domain import Token, TokenSource
from ingestion.adapters import AdapterRole

DATA_DIR = Path(__file__).parent / "data"


def load_fixture(name: str) -> Any:
    return json.loads((DATA_DIR / name).read_text(encoding="utf-8"))


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(round(seconds * 1000))


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_token(address: str = "Mint1", source: TokenSource = TokenSource.DEXSCREENER, **overrides) -> Token:
    fields: dict[str, Any] = {
        "address": address,
        "name": f"Token {address}",
        "ticker": address[:4].upper(),
        "source": source,
        "updated_at": 1_000,
    }
    fields.update(overrides)
    return Token(**fields)


class StubAdapter:
    """In-memory adapter returning canned tokens, or raising when ``fail`` is set."""

    def __init__(
        self,
        source: TokenSource,
        *,
        role: AdapterRole = AdapterRole.LISTING,
        tokens: list[Token] | None = None,
        fail: bool = False,
        healthy: bool = True,
    ) -> None:
        self.source = source
        self.role = role
        self.tokens = list(tokens or [])
        self.fail = fail
        self.healthy = healthy
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self.source.value

    def _reply(self, operation: str, argument: Any, tokens: list[Token]) -> list[Token]:
        self.calls.append((operation, argument))
        if self.fail:
            raise UpstreamError(self.name, f"{operation} unavailable")
        return tokens

    async def get_trending(self) -> list[Token]:
        return self._reply("get_trending", None, self.tokens)

    async def search(self, query: str) -> list[Token]:
        needle = query.lower()
        matches = [t for t in self.tokens if needle in t.name.lower() or needle in t.ticker.lower()]
        return self._reply("search", query, matches)

    async def get_by_address(self, address: str) -> list[Token]:
        return self._reply("get_by_address", address, [t for t in self.tokens if t.address == address])

    async def get_batch(self, addresses) -> list[Token]:
        wanted = set(addresses)
        return self._reply("get_batch", list(addresses), [t for t in self.tokens if t.address in wanted])

    async def health_check(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def dexscreener_search_payload() -> dict[str, Any]:
    return load_fixture("dexscreener_search.json")


@pytest.fixture
def geckoterminal_trending_payload() -> dict[str, Any]:
    return load_fixture("geckoterminal_trending.json")


@pytest.fixture
def geckoterminal_tokens_payload() -> dict[str, Any]:
    return load_fixture("geckoterminal_tokens.json")


@pytest.fixture
def jupiter_price_payload() -> dict[str, Any]:
    return load_fixture("jupiter_price.json")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        _env_file=None,
        cache_backend="memory",
        cache_ttl_seconds=30,
        dexscreener_retry_delay_seconds=0.5,
        geckoterminal_retry_delay_seconds=0.5,
        jupiter_retry_delay_seconds=0.5,
        publisher_enabled=False,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def route_transport() -> Callable[..., httpx.MockTransport]:
    """Build a MockTransport dispatching on ``host`` + ``path`` prefixes.

    Each route maps to a payload, an ``httpx.Response``, or a callable taking
    the request. Every request seen is appended to ``transport.calls``.
    """

    def factory(routes: dict[str, Any]) -> httpx.MockTransport:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            target = request.url.host + request.url.path
            for prefix, reply in routes.items():
                if target.startswith(prefix):
                    if callable(reply):
                        reply = reply(request)
                    if isinstance(reply, httpx.Response):
                        return reply
                    return httpx.Response(200, json=reply)
            return httpx.Response(404, json={"error": "no route"})

        transport = httpx.MockTransport(handler)
        transport.calls = calls  # type: ignore[attr-defined]
        return transport

    return factory
