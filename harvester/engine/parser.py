"""DOM parsing helpers and the record type flowing through the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import urljoin

from selectolax.parser import HTMLParser


@dataclass(slots=True)
class Record:
    """One unit of scraped data.

    ``key`` is the stable natural key (canonical source URL) destinations use
    to decide insert-vs-update; ``data`` is opaque to the engine.
    """

    key: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.key or not str(self.key).strip():
            raise ValueError("Record key cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.data)
        payload.setdefault("source_url", self.key)
        payload["source"] = self.source or payload.get("source", "")
        payload["scraped_at"] = self.scraped_at.isoformat()
        return payload


class Parser:
    """Selector-driven extraction used by template adapters."""

    def parse_links(self, html: str, selector: str, base_url: str) -> list[str]:
        tree = HTMLParser(html)
        links: list[str] = []
        seen: set[str] = set()
        for node in tree.css(selector):
            href = node.attributes.get("href")
            if not href:
                continue
            href = href.strip()
            if not href or href.startswith(("javascript:", "#")):
                continue
            full_url = urljoin(base_url, href)
            if full_url not in seen:
                seen.add(full_url)
                links.append(full_url)
        return links

    def parse_fields(self, html: str, patterns: Mapping[str, str | list[str]]) -> dict[str, Any]:
        """Extract each field with the first selector that yields a value."""

        tree = HTMLParser(html)
        data: dict[str, Any] = {}
        for name, selector_config in patterns.items():
            selectors = selector_config if isinstance(selector_config, list) else [selector_config]
            value: str | None = None
            for selector in selectors:
                css, mode = self._split_selector(selector)
                if not css:
                    continue
                node = tree.css_first(css)
                if node is None:
                    continue
                if mode == "html":
                    value = node.html
                elif mode.startswith("attr:"):
                    value = node.attributes.get(mode.split(":", 1)[1])
                else:
                    value = node.text(separator=" ", strip=True)
                if value and value.strip():
                    break
            data[name] = value.strip() if value and value.strip() else None
        return data

    def parse_total_pages(self, html: str, selector: str | None) -> int:
        """Return the highest numeric label matched by ``selector``, or 1."""

        if not selector:
            return 1
        tree = HTMLParser(html)
        pages = [1]
        for node in tree.css(selector):
            text = node.text(strip=True).replace(",", "").replace(".", "")
            if text.isdigit():
                pages.append(int(text))
        return max(pages)

    @staticmethod
    def _split_selector(selector: str) -> tuple[str, str]:
        if "::" in selector:
            css, mode = selector.split("::", 1)
            return css.strip(), mode.strip().lower()
        return selector.strip(), "text"


__all__ = ["Parser", "Record"]
