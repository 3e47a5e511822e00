"""
TCGMaster — Batch Helpers

Fixed-size sub-batching with a cooperative delay between sub-batches, and a
capped error collector for job results.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split items into consecutive chunks of at most size."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def iter_sub_batches(
    items: Sequence[T],
    size: int,
    delay_seconds: float,
) -> AsyncIterator[Sequence[T]]:
    """
    Yield sub-batches in order, sleeping delay_seconds between them.

    No sleep happens before the first batch or after the last one.
    """
    batches = chunked(items, size)
    for i, batch in enumerate(batches):
        if i > 0 and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)
        yield batch


class ErrorCollector:
    """Collects per-item error messages; exposes at most `limit` of them."""

    def __init__(self, limit: int):
        self._limit = limit
        self._messages: list[str] = []

    def add(self, message: str) -> None:
        self._messages.append(message)

    @property
    def total(self) -> int:
        return len(self._messages)

    @property
    def capped(self) -> list[str]:
        return self._messages[: self._limit]

    def __bool__(self) -> bool:
        return bool(self._messages)
