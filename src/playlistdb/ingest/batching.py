"""Fixed-size batching with sequential, fail-fast processing."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from playlistdb.errors import BatchProcessingError

log = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def batch(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive chunks of at most *size* elements."""
    if size < 1:
        msg = f"batch size must be positive, got {size}"
        raise ValueError(msg)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def process_batches(
    items: Sequence[T],
    size: int,
    operation: Callable[[list[T], int], Awaitable[R]],
) -> list[R]:
    """Await *operation* on each chunk in order and collect the results.

    *operation* receives the chunk and its one-based batch number. The first
    failure stops processing; it is re-raised as :class:`BatchProcessingError`
    with the zero-based batch index and the original error attached.
    """
    chunks = batch(items, size)
    log.info("batches_start", items=len(items), batches=len(chunks), batch_size=size)

    results: list[R] = []
    for index, chunk in enumerate(chunks):
        log.debug("batch_start", batch=index + 1, total=len(chunks), size=len(chunk))
        try:
            results.append(await operation(chunk, index + 1))
        except Exception as exc:
            log.error("batch_failed", batch=index + 1, error=str(exc))
            raise BatchProcessingError(index, len(chunk), exc) from exc
    return results
