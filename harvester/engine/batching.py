"""Bounded-concurrency helpers for per-item fetches."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

import structlog

T = TypeVar("T")
R = TypeVar("R")


async def gather_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R | None]],
    *,
    batch_size: int = 3,
    batch_delay: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: structlog.BoundLogger | None = None,
) -> list[R]:
    """Run ``worker`` over ``items`` in fixed-size concurrent batches.

    Each batch runs to completion before the next starts. A failing item is
    logged and dropped without cancelling its siblings; ``None`` results are
    dropped silently. Successful results keep input order. ``batch_delay``
    separates batches, never individual items.
    """

    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    log = logger or structlog.get_logger("harvester.batching")
    results: list[R] = []
    for offset in range(0, len(items), batch_size):
        batch = items[offset : offset + batch_size]
        outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log.warning(
                    "item_failed",
                    index=offset + index,
                    item=str(batch[index]),
                    error=str(outcome),
                )
                continue
            if outcome is None:
                log.debug("item_empty", index=offset + index, item=str(batch[index]))
                continue
            results.append(outcome)
        if offset + batch_size < len(items) and batch_delay > 0:
            await sleep(batch_delay)
    return results


__all__ = ["gather_in_batches"]
