from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.requests import HTTPConnection

from . import schemas
from .core.clock import now_ms
from .core.config import settings
from .core.errors import AggregatorError, UpstreamError
from .core.logging import configure_logging
from .domain import PageRequest, Token, TokenFilters, TokenSort
from .runtime import Runtime, build_runtime
from .services.publisher import DeltaPublisher
from .services.push import INITIAL_DATA, WebSocketHub
from .services.token_service import TokenAggregationService

app = FastAPI(title="Token Aggregator API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
async def on_startup() -> None:
    """Build the process runtime and start the publisher schedule."""

    configure_logging(settings.log_level)
    logger.info("Starting Token Aggregator API (environment={})", settings.environment)
    runtime = build_runtime(settings)
    app.state.runtime = runtime
    runtime.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    runtime: Runtime | None = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.aclose()


def _envelope(data: Any) -> schemas.ApiResponse:
    return schemas.ApiResponse(data=data, timestamp=now_ms())


def _error_response(
    status_code: int, code: str, message: str, details: Any | None = None
) -> JSONResponse:
    body = schemas.ApiResponse[Any](
        success=False,
        timestamp=now_ms(),
        error=schemas.ErrorBody(code=code, message=message, details=details),
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def _request_validation_error(_request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        400, "VALIDATION_ERROR", "Invalid request parameters", jsonable_encoder(exc.errors())
    )


@app.exception_handler(AggregatorError)
async def _aggregator_error(_request, exc: AggregatorError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        # Provider bodies and URLs stay in the logs.
        logger.warning("Upstream failure surfaced to client: {}", exc)
        return _error_response(exc.status_code, exc.code, "upstream fetch failed")
    return _error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(Exception)
async def _unhandled_error(_request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled error while serving request")
    return _error_response(500, "INTERNAL_ERROR", "Internal server error")


def _runtime(connection: HTTPConnection) -> Runtime:
    return connection.app.state.runtime


def _token_service(runtime: Runtime = Depends(_runtime)) -> TokenAggregationService:
    """Provide the aggregation driver shared by the whole process."""

    return runtime.service


def _push_hub(runtime: Runtime = Depends(_runtime)) -> WebSocketHub:
    return runtime.hub


def _publisher(runtime: Runtime = Depends(_runtime)) -> DeltaPublisher:
    return runtime.publisher


def _token_filters(
    *,
    min_volume: Annotated[float | None, Query(ge=0, description="Minimum 24h volume in USD")] = None,
    min_market_cap: Annotated[float | None, Query(ge=0, description="Minimum market cap in USD")] = None,
    min_liquidity: Annotated[float | None, Query(ge=0, description="Minimum liquidity in USD")] = None,
    protocols: Annotated[
        str | None, Query(description="Comma-separated protocol filter", examples=["raydium,orca"])
    ] = None,
    timeframe: Annotated[
        str, Query(description="Window used by price_change sorting", pattern="^(1h|24h|7d)$")
    ] = "24h",
) -> TokenFilters:
    return TokenFilters(
        min_volume=min_volume,
        min_market_cap=min_market_cap,
        min_liquidity=min_liquidity,
        protocols=[item.strip() for item in (protocols or "").split(",") if item.strip()],
        timeframe=timeframe,
    )


def _token_sort(
    *,
    sort_by: Annotated[
        str,
        Query(
            description="Field to sort by",
            pattern="^(volume|market_cap|price_change|liquidity|created_at)$",
        ),
    ] = "volume",
    sort_dir: Annotated[
        str, Query(description="Sort order (asc|desc)", pattern="^(asc|desc)$")
    ] = "desc",
) -> TokenSort:
    return TokenSort(field=sort_by, direction=sort_dir)


def _page_request(
    *,
    cursor: Annotated[str | None, Query(description="Opaque cursor from a previous page")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Page size, capped server-side")] = None,
) -> PageRequest:
    return PageRequest(cursor=cursor, limit=limit)


def _page_out(page) -> schemas.TokenPageOut:
    return schemas.TokenPageOut(
        items=[schemas.TokenOut.model_validate(token) for token in page.items],
        has_more=page.has_more,
        total=page.total,
        next_cursor=page.next_cursor,
    )


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Liveness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/health", response_model=schemas.ApiResponse[schemas.HealthOut], tags=["system"])
async def provider_health(
    response: Response, service: TokenAggregationService = Depends(_token_service)
):
    """Probe every provider; 503 when none of them answer."""

    report = await service.health()
    if report["status"] == "unhealthy":
        response.status_code = 503
    return _envelope(schemas.HealthOut.model_validate(report))


@app.get("/api/tokens", response_model=schemas.ApiResponse[schemas.TokenPageOut], tags=["tokens"])
async def list_tokens(
    *,
    filters: TokenFilters = Depends(_token_filters),
    sort: TokenSort = Depends(_token_sort),
    page: PageRequest = Depends(_page_request),
    service: TokenAggregationService = Depends(_token_service),
):
    """List merged tokens with filtering, sorting, and cursor pagination."""

    result = await service.list_tokens(filters, sort, page)
    return _envelope(_page_out(result))


@app.get(
    "/api/tokens/search",
    response_model=schemas.ApiResponse[schemas.TokenPageOut],
    tags=["tokens"],
)
async def search_tokens(
    *,
    q: Annotated[str, Query(description="Name, ticker, or address fragment")],
    sort: TokenSort = Depends(_token_sort),
    page: PageRequest = Depends(_page_request),
    service: TokenAggregationService = Depends(_token_service),
):
    result = await service.search(q, sort, page)
    return _envelope(_page_out(result))


@app.get(
    "/api/tokens/trending",
    response_model=schemas.ApiResponse[list[schemas.TokenOut]],
    tags=["tokens"],
)
async def trending_tokens(
    limit: Annotated[int | None, Query(ge=1, description="Number of tokens")] = None,
    service: TokenAggregationService = Depends(_token_service),
):
    """Top tokens by 24h volume."""

    tokens = await service.trending(limit)
    return _envelope([schemas.TokenOut.model_validate(token) for token in tokens])


@app.post("/api/tokens/cache/clear", response_model=schemas.ApiResponse[dict], tags=["cache"])
async def clear_cache(service: TokenAggregationService = Depends(_token_service)):
    await service.clear_cache()
    return _envelope({"cleared": True})


@app.get(
    "/api/tokens/cache/stats",
    response_model=schemas.ApiResponse[schemas.CacheStatsOut],
    tags=["cache"],
)
async def cache_stats(service: TokenAggregationService = Depends(_token_service)):
    stats = await service.cache_stats()
    return _envelope(schemas.CacheStatsOut.model_validate(stats.to_dict()))


@app.get(
    "/api/tokens/{address}",
    response_model=schemas.ApiResponse[schemas.TokenOut],
    tags=["tokens"],
)
async def get_token(address: str, service: TokenAggregationService = Depends(_token_service)):
    """Retrieve one merged token by mint address."""

    token = await service.get_token(address)
    return _envelope(schemas.TokenOut.model_validate(token))


async def _initial_tokens(
    publisher: DeltaPublisher, service: TokenAggregationService, limit: int
) -> list[Token]:
    tokens = publisher.top_tokens(limit)
    if tokens or limit <= 0:
        return tokens
    try:
        return await service.trending(limit)
    except AggregatorError as exc:
        logger.warning("No initial data for new WebSocket client: {}", exc)
        return []


@app.websocket("/ws")
async def token_updates_socket(
    websocket: WebSocket,
    hub: WebSocketHub = Depends(_push_hub),
    publisher: DeltaPublisher = Depends(_publisher),
    service: TokenAggregationService = Depends(_token_service),
):
    """Stream price deltas and new tokens to subscribed clients."""

    await hub.connect(websocket)
    try:
        initial = await _initial_tokens(publisher, service, settings.publisher_initial_tokens)
        await hub.send(websocket, INITIAL_DATA, [token.to_dict() for token in initial])
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON WebSocket frame")
                continue
            await hub.handle_client_message(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
