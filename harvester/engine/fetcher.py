"""Async page fetching over httpx or a headless Playwright browser."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

import httpx
import structlog

from ..config import ScrapingConfig
from .rate_limiter import RateLimiter

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
)
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "vi-VN,vi;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}
BLOCKED_RESOURCES = frozenset({"image", "stylesheet", "font", "media"})


class FetchError(RuntimeError):
    """Raised when a page cannot be retrieved or answers with a failure status."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)


class PageFetcher:
    """Fetch pages for one adapter instance, throttled by the shared limiter.

    Plain mode reuses one ``httpx.AsyncClient``. Browser mode launches a
    Chromium instance on first use and gives every fetch its own browser
    context, so concurrent fetches never share page state.
    """

    def __init__(
        self,
        config: ScrapingConfig,
        rate_limiter: RateLimiter | None = None,
        *,
        use_browser: bool = False,
        extra_headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter
        self.use_browser = use_browser
        self.headers = {"User-Agent": DEFAULT_USER_AGENT, **DEFAULT_HEADERS, **(extra_headers or {})}
        self.logger = logger or structlog.get_logger("harvester.fetcher")
        self._client = client
        self._owns_client = client is None
        self._browser: _BrowserSession | None = None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.config.timeout_seconds,
                headers=self.headers,
            )
            self._owns_client = True
        if self.use_browser and self._browser is None:
            self._browser = _BrowserSession(self.config, self.headers)
            await self._browser.start()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def fetch(self, url: str, *, wait_selector: str | None = None) -> FetchResponse:
        if self._client is None:
            await self.start()
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        if self.use_browser:
            response = await self._browser.fetch(url, wait_selector=wait_selector)
        else:
            try:
                raw = await self._client.get(url, headers=self.headers)
            except httpx.HTTPError as exc:
                raise FetchError(f"Request failed for {url}: {exc}", url=url) from exc
            response = FetchResponse(
                url=str(raw.url),
                status_code=raw.status_code,
                text=raw.text,
                headers=dict(raw.headers),
            )
        if self._is_failure(response.status_code):
            raise FetchError(
                f"Unexpected status {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
            )
        self.logger.debug("page_fetched", url=url, status=response.status_code)
        return response

    @staticmethod
    def _is_failure(status_code: int) -> bool:
        if status_code >= 500:
            return True
        if status_code in {401, 403, 404, 429}:
            return True
        return False


class _BrowserSession:
    def __init__(self, config: ScrapingConfig, headers: dict[str, str]) -> None:
        self._config = config
        self._headers = headers
        self._playwright: Any = None
        self._browser: Any = None

    async def start(self) -> None:
        if self._playwright is not None:
            return
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.headless,
            args=[*self._config.browser_args, "--disable-blink-features=AutomationControlled"],
        )

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def fetch(self, url: str, *, wait_selector: str | None = None) -> FetchResponse:
        from playwright.async_api import Error as PlaywrightError

        headers = dict(self._headers)
        user_agent = headers.pop("User-Agent", None)
        context = await self._browser.new_context(
            user_agent=user_agent,
            viewport={"width": 1366, "height": 768},
            extra_http_headers=headers,
        )
        try:
            page = await context.new_page()
            await page.route("**/*", _block_heavy_resources)
            timeout_ms = self._config.timeout_ms
            try:
                response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                if wait_selector:
                    await page.wait_for_selector(wait_selector, timeout=timeout_ms)
                text = await page.content()
            except PlaywrightError as exc:
                raise FetchError(f"Browser navigation failed for {url}: {exc}", url=url) from exc
            return FetchResponse(
                url=page.url,
                status_code=response.status if response is not None else 200,
                text=text,
                headers=dict(response.headers) if response is not None else {},
            )
        finally:
            await context.close()


async def _block_heavy_resources(route: Any) -> None:
    if route.request.resource_type in BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()


__all__ = ["FetchError", "FetchResponse", "PageFetcher"]
