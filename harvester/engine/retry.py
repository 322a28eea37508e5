"""Retry-with-backoff combinator for fallible async operations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from ..config import ScrapingConfig

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


class RetryExhaustedError(Exception):
    """Raised once every attempt of a labelled operation has failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        reason = str(last_error) or type(last_error).__name__
        super().__init__(f"{reason}; {label} failed after {attempts} attempts")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Attempt count plus capped exponential backoff, in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_config(cls, config: ScrapingConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""

        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str = "operation",
    policy: RetryPolicy | None = None,
    max_attempts: int | None = None,
    sleep: SleepFn = asyncio.sleep,
    logger: structlog.BoundLogger | None = None,
) -> T:
    """Invoke ``operation`` until it succeeds or the attempts run out.

    Every failure matching ``policy.retry_on`` is retried uniformly. Once the
    attempts are exhausted a ``RetryExhaustedError`` naming ``label`` is raised
    from the last error; anything outside ``retry_on`` propagates immediately.
    """

    policy = policy or RetryPolicy()
    attempts = max_attempts if max_attempts is not None else policy.max_attempts
    if attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    log = logger or structlog.get_logger("harvester.retry")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except policy.retry_on as exc:
            if attempt >= attempts:
                log.warning("retry_exhausted", label=label, attempts=attempts, error=str(exc))
                raise RetryExhaustedError(label, attempts, exc) from exc
            delay = policy.delay_for(attempt)
            log.debug(
                "retry_scheduled",
                label=label,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryExhaustedError", "RetryPolicy", "with_retry"]
