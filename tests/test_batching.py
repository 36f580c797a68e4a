"""Tests for batching and sequential batch processing."""

from __future__ import annotations

import pytest

from playlistdb.errors import BatchProcessingError
from playlistdb.ingest.batching import batch, process_batches

# ---------------------------------------------------------------------------
# batch()
# ---------------------------------------------------------------------------


def test_batch_with_remainder():
    assert batch(list(range(1, 11)), 3) == [[1, 2, 3], [4, 5, 6], [7, 8, 9], [10]]


def test_batch_exact_multiple():
    assert batch(["a", "b", "c", "d"], 2) == [["a", "b"], ["c", "d"]]


def test_batch_larger_than_input():
    assert batch([1, 2], 100) == [[1, 2]]


def test_batch_empty_input():
    assert batch([], 5) == []


@pytest.mark.parametrize("size", [0, -1])
def test_batch_rejects_non_positive_size(size):
    with pytest.raises(ValueError, match="batch size must be positive"):
        batch([1, 2, 3], size)


# ---------------------------------------------------------------------------
# process_batches()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio()
async def test_process_batches_runs_in_order():
    calls: list[tuple[list[int], int]] = []

    async def operation(chunk: list[int], number: int) -> int:
        calls.append((chunk, number))
        return sum(chunk)

    results = await process_batches([1, 2, 3, 4, 5], 2, operation)

    assert results == [3, 7, 5]
    assert calls == [([1, 2], 1), ([3, 4], 2), ([5], 3)]


@pytest.mark.asyncio()
async def test_process_batches_empty_input():
    called = False

    async def operation(chunk: list[int], number: int) -> None:
        nonlocal called
        called = True

    assert await process_batches([], 10, operation) == []
    assert called is False


@pytest.mark.asyncio()
async def test_process_batches_stops_at_first_failure():
    seen: list[int] = []
    boom = RuntimeError("disk full")

    async def operation(chunk: list[int], number: int) -> None:
        seen.append(number)
        if number == 2:
            raise boom

    with pytest.raises(BatchProcessingError) as exc_info:
        await process_batches(list(range(7)), 3, operation)

    err = exc_info.value
    assert seen == [1, 2]
    assert err.batch_index == 1
    assert err.batch_size == 3
    assert err.error is boom
    assert err.__cause__ is boom
    assert str(err) == "Batch 2 (3 items) failed: disk full"


@pytest.mark.asyncio()
async def test_process_batches_reports_short_last_batch():
    async def operation(chunk: list[int], number: int) -> None:
        if len(chunk) < 3:
            raise ValueError("short")

    with pytest.raises(BatchProcessingError) as exc_info:
        await process_batches(list(range(7)), 3, operation)

    assert exc_info.value.batch_index == 2
    assert exc_info.value.batch_size == 1
