import argparse
import asyncio
import json

from loguru import logger

from app.core.config import get_settings
from app.core.errors import AggregatorError
from app.core.logging import configure_logging
from app.domain import PageRequest, TokenFilters, TokenSort
from app.domain.models import SORT_FIELDS
from app.services.cache import AggregationCache, MemoryCacheStore
from app.services.token_service import TokenAggregationService
from ingestion.adapters import available_sources
from ingestion.service import open_adapters


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one aggregation pass and print a page of tokens")
    parser.add_argument("--search", default=None, help="Search term instead of the trending listing")
    parser.add_argument("--limit", type=int, default=None, help="Page size")
    parser.add_argument("--cursor", default=None, help="Cursor returned by a previous run")
    parser.add_argument("--sort-by", choices=SORT_FIELDS, default="volume")
    parser.add_argument("--sort-dir", choices=("asc", "desc"), default="desc")
    parser.add_argument("--min-volume", type=float, default=None, help="Minimum 24h volume in USD")
    parser.add_argument(
        "--source",
        action="append",
        default=None,
        choices=[source.value for source in available_sources()],
        metavar="NAME",
        help="Restrict to one provider (repeatable, e.g. --source dexscreener)",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> dict:
    settings = get_settings()
    sort = TokenSort(field=args.sort_by, direction=args.sort_dir)
    page = PageRequest(cursor=args.cursor, limit=args.limit)
    async with open_adapters(settings, sources=args.source) as adapters:
        service = TokenAggregationService(
            adapters, AggregationCache(MemoryCacheStore()), settings=settings
        )
        if args.search:
            result = await service.search(args.search, sort, page)
        else:
            result = await service.list_tokens(TokenFilters(min_volume=args.min_volume), sort, page)
    return {
        "total": result.total,
        "has_more": result.has_more,
        "next_cursor": result.next_cursor,
        "items": [token.to_dict() for token in result.items],
    }


def main() -> None:
    args = parse_args()
    configure_logging(get_settings().log_level)
    try:
        payload = asyncio.run(run(args))
    except AggregatorError as exc:
        logger.error("Aggregation failed: {}", exc)
        raise SystemExit(1) from exc
    print(json.dumps(payload, indent=2))
    logger.info("Printed {} of {} tokens", len(payload["items"]), payload["total"])


if __name__ == "__main__":
    main()
