from __future__ import annotations

import pytest

from harvester.engine import Parser, Record

LISTING_HTML = """
<html><body>
  <ul class="listing">
    <li><a href="/homes/1">One</a></li>
    <li><a href="https://example.com/homes/2">Two</a></li>
    <li><a href="/homes/1">Duplicate</a></li>
    <li><a href="javascript:void(0)">Ignored</a></li>
    <li><a>No href</a></li>
  </ul>
  <ul class="pagination">
    <li><a>1</a></li><li><a>2</a></li><li><a>12</a></li><li><a>Next</a></li>
  </ul>
</body></html>
"""

DETAIL_HTML = """
<html><body>
  <h1> Sunny flat </h1>
  <span class="price" data-value="1250000">1.25 bn</span>
  <div class="body"><p>Two rooms</p></div>
</body></html>
"""


def test_parse_links_resolves_and_dedupes() -> None:
    links = Parser().parse_links(LISTING_HTML, "ul.listing li a", "https://example.com/search?page=1")
    assert links == ["https://example.com/homes/1", "https://example.com/homes/2"]


def test_parse_total_pages_takes_highest_number() -> None:
    parser = Parser()
    assert parser.parse_total_pages(LISTING_HTML, "ul.pagination li a") == 12
    assert parser.parse_total_pages("<html></html>", "ul.pagination li a") == 1
    assert parser.parse_total_pages(LISTING_HTML, None) == 1


def test_parse_fields_supports_modes_and_fallbacks() -> None:
    data = Parser().parse_fields(
        DETAIL_HTML,
        {
            "title": "h1",
            "price": [".price-now", ".price::attr:data-value"],
            "body": "div.body::html",
            "missing": ".nothing",
        },
    )
    assert data["title"] == "Sunny flat"
    assert data["price"] == "1250000"
    assert data["body"].startswith('<div class="body">')
    assert data["missing"] is None


def test_record_requires_key_and_serialises() -> None:
    with pytest.raises(ValueError):
        Record(key="  ")
    record = Record(key="https://example.com/homes/1", data={"title": "One"}, source="example")
    payload = record.to_dict()
    assert payload["source_url"] == "https://example.com/homes/1"
    assert payload["source"] == "example"
    assert payload["title"] == "One"
    assert payload["scraped_at"].endswith("+00:00")
