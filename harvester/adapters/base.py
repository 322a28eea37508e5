"""Source adapter contract consumed by the orchestrator."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Sequence

import structlog

from ..engine import Record, gather_in_batches


class AdapterNotInitialisedError(RuntimeError):
    """Raised when an adapter is used before ``initialize`` or after ``cleanup``."""


class SourceAdapter(ABC):
    """Knows how to page through and extract records from one external source.

    Instances are stateful (they own network resources) and must never be
    shared between jobs; the registry hands each job a fresh one via
    :meth:`new_instance`.
    """

    source_code: str = ""
    detail_batch_size: int = 3
    detail_batch_delay: float = 2.0

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("harvester.adapter").bind(
            source=self.source_code
        )

    @abstractmethod
    async def initialize(self) -> None:
        """Acquire resources; calling twice on one instance is a no-op."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources. Always called by the orchestrator."""

    @abstractmethod
    async def get_total_pages(self, listing_url: str) -> int:
        """Return the page count (>= 1); default to 1 when it cannot be extracted."""

    @abstractmethod
    def get_page_url(self, listing_url: str, page: int) -> str:
        """Build the URL of listing page ``page``."""

    @abstractmethod
    async def scrape_property_list(self, page_url: str) -> list[Record]:
        """Return every record found on one listing page."""

    @abstractmethod
    async def scrape_property(self, detail_url: str) -> Record | None:
        """Return the record behind one detail URL, or ``None``."""

    @abstractmethod
    def new_instance(self) -> "SourceAdapter":
        """Return an unshared, uninitialised copy of this adapter."""

    async def collect_details(self, detail_urls: Sequence[str]) -> list[Record]:
        """Scrape detail pages in fixed-size concurrent batches."""

        return await gather_in_batches(
            detail_urls,
            self.scrape_property,
            batch_size=self.detail_batch_size,
            batch_delay=self.detail_batch_delay,
            sleep=self._sleep,
            logger=self.logger,
        )


__all__ = ["AdapterNotInitialisedError", "SourceAdapter"]
