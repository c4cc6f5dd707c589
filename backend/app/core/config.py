from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.models import TokenSource


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Connection settings for one upstream market-data provider."""

    source: TokenSource
    base_url: str
    timeout_seconds: float
    max_retries: int
    retry_delay_seconds: float
    headers: dict[str, str]


def _split_csv(value: Any, *, field_name: str) -> list[str]:
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [item for item in (part.strip() for part in value.split(",")) if item]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ValueError(
        f"{field_name} must be provided as a list or comma-separated string"
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    log_level: str = Field(default="INFO", description="Minimum loguru level")
    chain_id: str = Field(
        default="solana",
        description="Chain identifier used to filter provider results",
    )

    dexscreener_base_url: AnyUrl = Field(
        default="https://api.dexscreener.com",
        description="Base URL for the DexScreener API",
    )
    dexscreener_timeout_seconds: float = Field(default=15.0, gt=0)
    dexscreener_max_retries: int = Field(default=2, ge=0)
    dexscreener_retry_delay_seconds: float = Field(default=5.0, ge=0)

    geckoterminal_base_url: AnyUrl = Field(
        default="https://api.geckoterminal.com/api/v2",
        description="Base URL for the GeckoTerminal API",
    )
    geckoterminal_api_version: str = Field(
        default="20230302",
        description="Version pinned through the GeckoTerminal Accept header",
    )
    geckoterminal_timeout_seconds: float = Field(default=10.0, gt=0)
    geckoterminal_max_retries: int = Field(default=2, ge=0)
    geckoterminal_retry_delay_seconds: float = Field(default=2.0, ge=0)

    jupiter_base_url: AnyUrl = Field(
        default="https://lite-api.jup.ag",
        description="Base URL for the Jupiter price API",
    )
    jupiter_timeout_seconds: float = Field(default=5.0, gt=0)
    jupiter_max_retries: int = Field(default=1, ge=0)
    jupiter_retry_delay_seconds: float = Field(default=1.0, ge=0)

    enabled_sources: list[str] | str = Field(
        default_factory=lambda: [source.value for source in TokenSource],
        description="Providers queried by the aggregator (comma-separated)",
    )
    trending_search_terms: list[str] | str = Field(
        default_factory=lambda: ["SOL", "USDC", "meme", "pump"],
        description="Candidate search terms used when a provider has no trending endpoint",
    )
    search_min_query_length: int = Field(
        default=2,
        ge=1,
        description="Shortest accepted search query",
    )

    cache_backend: str = Field(
        default="memory",
        description="Snapshot cache backend (memory|redis)",
        pattern="^(memory|redis)$",
    )
    cache_ttl_seconds: int = Field(
        default=30,
        ge=1,
        description="Lifetime of a cached token snapshot",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL used when cache_backend=redis",
    )
    redis_key_prefix: str = Field(
        default="tokens:",
        description="Prefix applied to every Redis cache key",
    )

    pagination_default_limit: int = Field(default=20, ge=1)
    pagination_max_limit: int = Field(default=100, ge=1)

    publisher_enabled: bool = Field(
        default=True,
        description="Run the periodic delta publisher alongside the API",
    )
    publisher_price_interval_seconds: float = Field(default=5.0, gt=0)
    publisher_discovery_interval_seconds: float = Field(default=30.0, gt=0)
    publisher_price_change_threshold_pct: float = Field(
        default=0.1,
        ge=0,
        description="Smallest absolute price change (percent) worth publishing",
    )
    publisher_initial_tokens: int = Field(
        default=20,
        ge=0,
        description="Number of tokens sent to a WebSocket client on connect",
    )

    @field_validator("trending_search_terms", mode="after")
    @classmethod
    def _parse_trending_terms(cls, value: Any) -> list[str]:
        terms = _split_csv(value, field_name="TRENDING_SEARCH_TERMS")
        if not terms:
            raise ValueError("TRENDING_SEARCH_TERMS must contain at least one term")
        return terms

    @field_validator("enabled_sources", mode="after")
    @classmethod
    def _parse_enabled_sources(cls, value: Any) -> list[str]:
        sources = [item.lower() for item in _split_csv(value, field_name="ENABLED_SOURCES")]
        known = {source.value for source in TokenSource}
        unknown = sorted(set(sources) - known)
        if unknown:
            raise ValueError(f"ENABLED_SOURCES contains unknown providers: {unknown}")
        return sources

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def provider_config(self, source: TokenSource | str) -> ProviderConfig:
        source = TokenSource(source)
        prefix = source.value
        headers: dict[str, str] = {"User-Agent": "token-aggregator/0.1.0"}
        if source is TokenSource.GECKOTERMINAL:
            headers["Accept"] = f"application/json;version={self.geckoterminal_api_version}"
        return ProviderConfig(
            source=source,
            base_url=str(getattr(self, f"{prefix}_base_url")).rstrip("/"),
            timeout_seconds=float(getattr(self, f"{prefix}_timeout_seconds")),
            max_retries=int(getattr(self, f"{prefix}_max_retries")),
            retry_delay_seconds=float(getattr(self, f"{prefix}_retry_delay_seconds")),
            headers=headers,
        )

    @property
    def redis_enabled(self) -> bool:
        return self.cache_backend == "redis" and bool(self.redis_url)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
