"""Selector-driven adapter built from a ``SourceConfig`` file."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable
from urllib.parse import urlsplit, urlunsplit

import structlog

from ..config import ScrapingConfig, SourceConfig
from ..engine import PageFetcher, Parser, RateLimiter, Record, RetryPolicy, with_retry
from .base import AdapterNotInitialisedError, SourceAdapter
from .registry import AdapterRegistry

FetcherFactory = Callable[[], PageFetcher]


class TemplateAdapter(SourceAdapter):
    """Crawl a paginated listing using CSS selectors from configuration.

    Listing navigation and page-count discovery raise on network failure so the
    orchestrator's retry and skip policies apply; detail pages are retried
    here and dropped (``None``) once retries are exhausted.
    """

    def __init__(
        self,
        source: SourceConfig,
        scraping: ScrapingConfig,
        rate_limiter: RateLimiter | None = None,
        *,
        fetcher_factory: FetcherFactory | None = None,
        parser: Parser | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.source_code = source.source_code
        self.scraping = scraping
        self.rate_limiter = rate_limiter
        self.detail_batch_size = scraping.detail_batch_size
        self.detail_batch_delay = scraping.detail_batch_delay
        super().__init__(sleep=sleep, logger=logger)
        self._fetcher_factory = fetcher_factory
        self.parser = parser or Parser()
        self.retry_policy = RetryPolicy.from_config(scraping)
        self._fetcher: PageFetcher | None = None

    def _build_fetcher(self) -> PageFetcher:
        if self._fetcher_factory is not None:
            return self._fetcher_factory()
        return PageFetcher(
            self.scraping,
            self.rate_limiter,
            use_browser=self.source.use_browser,
            extra_headers=self.source.extra_headers,
            logger=self.logger,
        )

    @property
    def fetcher(self) -> PageFetcher:
        if self._fetcher is None:
            raise AdapterNotInitialisedError(f"Adapter {self.source_code} is not initialised")
        return self._fetcher

    async def initialize(self) -> None:
        if self._fetcher is not None:
            return
        fetcher = self._build_fetcher()
        await fetcher.start()
        self._fetcher = fetcher

    async def cleanup(self) -> None:
        if self._fetcher is None:
            return
        fetcher, self._fetcher = self._fetcher, None
        await fetcher.close()

    def new_instance(self) -> "TemplateAdapter":
        return TemplateAdapter(
            self.source,
            self.scraping,
            self.rate_limiter,
            fetcher_factory=self._fetcher_factory,
            parser=self.parser,
            sleep=self._sleep,
        )

    async def get_total_pages(self, listing_url: str) -> int:
        response = await self.fetcher.fetch(listing_url, wait_selector=self.source.wait_selector)
        try:
            total = self.parser.parse_total_pages(response.text, self.source.pagination_pattern)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("total_pages_unparsed", url=listing_url, error=str(exc))
            return 1
        return max(1, total)

    def get_page_url(self, listing_url: str, page: int) -> str:
        parts = urlsplit(listing_url)
        base = urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), "", ""))
        url = self.source.page_url_template.format(base=base, page=page)
        if parts.query:
            url += ("&" if "?" in url else "?") + parts.query
        return url

    async def scrape_property_list(self, page_url: str) -> list[Record]:
        response = await self.fetcher.fetch(page_url, wait_selector=self.source.wait_selector)
        links = self.parser.parse_links(response.text, self.source.item_link_pattern, response.url)
        self.logger.info("listing_parsed", url=page_url, links=len(links))
        if not self.source.fetch_details:
            return [Record(key=link, source=self.source_code) for link in links]
        return await self.collect_details(links)

    async def scrape_property(self, detail_url: str) -> Record | None:
        try:
            response = await with_retry(
                lambda: self.fetcher.fetch(detail_url),
                label=f"detail page {detail_url}",
                policy=self.retry_policy,
                sleep=self._sleep,
                logger=self.logger,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error("detail_failed", url=detail_url, error=str(exc))
            return None
        data = self.parser.parse_fields(response.text, self.source.detail_pattern)
        key = detail_url
        if self.source.key_field != "source_url" and data.get(self.source.key_field):
            key = str(data[self.source.key_field])
        data.setdefault("source_url", detail_url)
        return Record(key=key, data=data, source=self.source_code)


def register_template_sources(
    registry: AdapterRegistry,
    sources: Iterable[SourceConfig],
    scraping: ScrapingConfig,
    rate_limiter: RateLimiter | None = None,
) -> list[str]:
    """Register one template adapter per configured source."""

    codes: list[str] = []
    for source in sources:
        registry.register(source.source_code, TemplateAdapter(source, scraping, rate_limiter))
        codes.append(source.source_code)
    return codes


__all__ = ["TemplateAdapter", "register_template_sources"]
