"""
Bounded-concurrency fan-out helpers for async job steps.

Every item produces exactly one ``Ok`` or ``Err``; a failing item never
cancels its siblings. Callers partition the results and decide what a
failure means for them.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Ok(Generic[R]):
    value: R


@dataclass(frozen=True)
class Err:
    error: Exception


Result = Ok | Err


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def _capture(awaitable: Awaitable[R]) -> Result:
    try:
        return Ok(await awaitable)
    except Exception as exc:
        return Err(exc)


async def run_bounded(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[Result]:
    """Run ``handler`` over all items with at most ``limit`` in flight."""
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def guarded(item: T) -> Result:
        async with semaphore:
            return await _capture(handler(item))

    return list(await asyncio.gather(*(guarded(item) for item in items)))


async def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    handler: Callable[[T], Awaitable[R]],
) -> tuple[list[Result], int]:
    """
    Process fixed-size batches one after another, each batch fully parallel.

    Returns the per-item results in input order and the number of batches run.
    """
    results: list[Result] = []
    batches = 0
    for batch in chunked(items, batch_size):
        batches += 1
        results.extend(await run_bounded(batch, handler, limit=len(batch)))
        logger.debug("Batch %d done (%d items)", batches, len(batch))
    return results, batches


def partition(results: list[Result]) -> tuple[list, list[Exception]]:
    values = [r.value for r in results if isinstance(r, Ok)]
    errors = [r.error for r in results if isinstance(r, Err)]
    return values, errors
