from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.adapters.news_sources import NewsApiProvider, NewsProvider, ProviderResult
from app.core.errors import ErrorKind
from app.core.http import ResilientHTTPClient
from app.core.models import Provenance
from app.services.news import PLACEHOLDER_SOURCE, NewsService, truncate_title

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class DummyProvider(NewsProvider):
    def __init__(self, name: str, result: ProviderResult | None = None, exc: Exception | None = None) -> None:
        self.name = name
        self.result = result
        self.exc = exc
        self.queries: list[str] = []

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        self.queries.append(query)
        if self.exc is not None:
            raise self.exc
        return self.result or ProviderResult.success(self.name, [])


def _story(title: str, hours_ago: float, url: str | None = None) -> dict:
    return {
        "title": title,
        "description": f"{title} body",
        "url": url or f"https://news.example.com/{title.replace(' ', '-').lower()}",
        "source": "Example Wire",
        "published_at": (NOW - timedelta(hours=hours_ago)).isoformat(),
    }


def _service(primary: NewsProvider, *secondaries: NewsProvider) -> NewsService:
    return NewsService(primary, list(secondaries), clock=lambda: NOW)


@pytest.mark.asyncio
async def test_healthy_primary_returns_newest_recent_articles() -> None:
    stories = [
        _story("story c", 3),
        _story("story a", 1),
        _story("story f", 6),
        _story("story stale", 30),
        _story("story b", 2),
        _story("story e", 5),
        _story("story d", 4),
    ]
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", stories))
    secondary = DummyProvider("newsdata")
    articles = await _service(primary, secondary).get_articles("bitcoin", limit=5)

    assert [a.title for a in articles] == ["story a", "story b", "story c", "story d", "story e"]
    assert all(a.provenance is Provenance.LIVE for a in articles)
    assert articles[0].published_at == "2024-05-01 19:00"
    assert secondary.queries == []


@pytest.mark.asyncio
async def test_duplicate_urls_are_collapsed() -> None:
    stories = [_story("one", 1, url="https://x.example/a"), _story("one again", 2, url="https://X.example/a")]
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", stories))
    articles = await _service(primary).get_articles("bitcoin", limit=5)
    assert [a.title for a in articles] == ["one"]


@pytest.mark.asyncio
async def test_quota_error_on_primary_falls_back_to_secondary() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"status": "error"}))
    http = ResilientHTTPClient(transport=transport)
    primary = NewsApiProvider(http, api_key="test-key")
    secondary = DummyProvider("newsdata", ProviderResult.success("newsdata", [_story("from backup", 1)]))
    try:
        articles = await _service(primary, secondary).get_articles("bitcoin", limit=3)
    finally:
        await http.close()

    assert [a.title for a in articles] == ["from backup"]
    assert articles[0].source_name == "Example Wire"
    assert secondary.queries == ["bitcoin"]


@pytest.mark.asyncio
async def test_non_quota_primary_failure_also_escalates() -> None:
    primary = DummyProvider("newsapi", ProviderResult.failure("newsapi", ErrorKind.UNAVAILABLE, "timeout"))
    secondary = DummyProvider("newsdata", ProviderResult.success("newsdata", [_story("backup", 2)]))
    articles = await _service(primary, secondary).get_articles("eth", limit=3)
    assert [a.title for a in articles] == ["backup"]


@pytest.mark.asyncio
async def test_all_providers_failing_yields_placeholders() -> None:
    primary = DummyProvider("newsapi", ProviderResult.failure("newsapi", ErrorKind.QUOTA, "429"))
    broken = DummyProvider("newsdata", exc=RuntimeError("boom"))
    empty = DummyProvider("rss")
    articles = await _service(primary, broken, empty).get_articles(None, limit=3)

    assert articles
    assert all(a.is_fallback for a in articles)
    assert all(a.source_name == PLACEHOLDER_SOURCE for a in articles)
    assert primary.queries == ["cryptocurrency OR bitcoin OR ethereum"]


@pytest.mark.asyncio
async def test_only_stale_articles_count_as_empty() -> None:
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", [_story("old", 48)]))
    articles = await _service(primary).get_articles("bitcoin", limit=3)
    assert all(a.is_fallback for a in articles)


@pytest.mark.asyncio
async def test_undated_articles_are_dropped() -> None:
    undated = {"title": "no date", "url": "https://n.example/undated", "source": "Wire", "published_at": None}
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", [undated, _story("dated", 2)]))
    articles = await _service(primary).get_articles("bitcoin", limit=5)
    assert [a.title for a in articles] == ["dated"]


def test_placeholders_filter_by_keyword() -> None:
    service = _service(DummyProvider("newsapi"))
    picked = service.placeholders("regulation", limit=5)
    assert len(picked) == 1
    assert "policy" in picked[0].title
    everything = service.placeholders("zzzz", limit=5)
    assert len(everything) == 5


@pytest.mark.asyncio
async def test_limit_is_clamped() -> None:
    stories = [_story(f"s{i}", i / 10) for i in range(5)]
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", stories))
    articles = await _service(primary).get_articles("bitcoin", limit=0)
    assert len(articles) == 1


@pytest.mark.asyncio
async def test_coin_news_queries_ticker_and_coin_name() -> None:
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", [_story("eth rally", 1)]))
    await _service(primary).get_coin_news("$ETH")
    assert primary.queries == ["eth OR ethereum"]


@pytest.mark.asyncio
async def test_coin_news_uses_refreshed_id_lookup() -> None:
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", [_story("hype rally", 1)]))
    service = NewsService(primary, clock=lambda: NOW, id_lookup={"hype": "hyperliquid"}.get)
    await service.get_coin_news("HYPE")
    assert primary.queries == ["hype OR hyperliquid"]


@pytest.mark.asyncio
async def test_keyword_search_truncates_titles() -> None:
    long_title = "x" * 120
    primary = DummyProvider("newsapi", ProviderResult.success("newsapi", [_story(long_title, 1)]))
    articles = await _service(primary).search_by_keyword("solana")
    assert articles[0].title == "x" * 80 + "..."


def test_truncate_title() -> None:
    assert truncate_title("short") == "short"
    assert truncate_title(None) == "Untitled"
    assert len(truncate_title("y" * 81)) == 83
