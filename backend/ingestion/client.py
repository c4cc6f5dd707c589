from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Mapping

import httpx
from loguru import logger

from app.core.config import ProviderConfig
from app.core.errors import UpstreamError

MAX_RETRY_DELAY_SECONDS = 30.0
_RETRYABLE_STATUS_CODES = {429}

SleepFn = Callable[[float], Awaitable[None]]


def retry_delay_seconds(attempt: int, base_delay: float) -> float:
    """Exponential backoff for 0-based ``attempt`` capped at 30 seconds."""

    return min(base_delay * (2 ** max(attempt, 0)), MAX_RETRY_DELAY_SECONDS)


def _is_retryable_status(status: int) -> bool:
    return status in _RETRYABLE_STATUS_CODES or status >= 500


class FetchClient:
    """Async JSON client with retry, backoff, and timeout for one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.provider = config.source.value
        self.base_url = config.base_url
        self.max_retries = config.max_retries
        self.retry_delay = config.retry_delay_seconds
        self.timeout = config.timeout_seconds
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout_seconds,
            headers=dict(config.headers),
            transport=transport,
        )

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        return await self.request("GET", url, params=params, headers=headers, timeout=timeout)

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        method = method.upper()
        total_attempts = self.max_retries + 1
        last_exc: Exception | None = None
        last_status: int | None = None

        for attempt in range(total_attempts):
            logger.debug(
                "{} {} {} attempt={}/{}",
                self.provider,
                method,
                url,
                attempt + 1,
                total_attempts,
            )
            try:
                response = await self.client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=timeout if timeout is not None else self.timeout,
                )
            except httpx.TransportError as exc:
                # Covers connect/read/pool timeouts as well as network errors.
                last_exc = exc
                last_status = None
            else:
                status = response.status_code
                if response.is_success:
                    return self._decode(response, method=method, url=url)
                last_status = status
                last_exc = httpx.HTTPStatusError(
                    f"HTTP {status}", request=response.request, response=response
                )
                if not _is_retryable_status(status):
                    logger.warning(
                        "{} {} {} failed with non-retryable status {}",
                        self.provider,
                        method,
                        url,
                        status,
                    )
                    raise UpstreamError(
                        self.provider,
                        f"client error {status} for {method} {url}",
                        base_url=self.base_url,
                        status=status,
                        cause=last_exc,
                    )

            if attempt + 1 >= total_attempts:
                break

            delay = retry_delay_seconds(attempt, self.retry_delay)
            logger.warning(
                "Retrying {} {} {} attempt={}/{} delay={:.2f}s error={}",
                self.provider,
                method,
                url,
                attempt + 1,
                total_attempts,
                delay,
                last_exc.__class__.__name__ if last_exc else "unknown",
            )
            await self._sleep(delay)

        raise UpstreamError(
            self.provider,
            f"failed after {total_attempts} attempts: {last_exc}",
            base_url=self.base_url,
            status=last_status,
            cause=last_exc,
        )

    def _decode(self, response: httpx.Response, *, method: str, url: str) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UpstreamError(
                self.provider,
                f"unparseable payload for {method} {url}",
                base_url=self.base_url,
                status=response.status_code,
                cause=exc,
            ) from exc

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
