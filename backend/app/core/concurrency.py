"""Concurrency helpers for fan-out calls that tolerate partial failure."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Generic, Iterable, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class Settled(Generic[T]):
    """Outcome of :func:`settle`: successful results and the errors that were set aside."""

    ok: list[T] = field(default_factory=list)
    failed: list[Exception] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return not self.ok and bool(self.failed)


async def settle(awaitables: Iterable[Awaitable[T]]) -> Settled[T]:
    """Await every awaitable concurrently and split results from failures.

    Results keep the submission order. Cancellation and other non-``Exception``
    signals are re-raised rather than collected.
    """

    results = await asyncio.gather(*awaitables, return_exceptions=True)
    settled: Settled[T] = Settled()
    for result in results:
        if isinstance(result, Exception):
            settled.failed.append(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            settled.ok.append(result)
    return settled
