from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable

import feedparser

from app.core.errors import BotError, ErrorKind, QuotaExceeded, error_kind
from app.core.http import ResilientHTTPClient

logger = logging.getLogger(__name__)

# NewsAPI reports key/quota problems in the body as well as the status.
NEWSAPI_QUOTA_CODES = frozenset(
    {"rateLimited", "apiKeyInvalid", "apiKeyMissing", "apiKeyDisabled", "apiKeyExhausted"}
)


@dataclass
class ProviderResult:
    provider: str
    items: list[dict] = field(default_factory=list)
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, provider: str, items: list[dict]) -> ProviderResult:
        if not items:
            return cls(provider=provider, error=ErrorKind.NO_DATA, detail="no articles")
        return cls(provider=provider, items=items)

    @classmethod
    def failure(cls, provider: str, kind: ErrorKind, detail: str = "") -> ProviderResult:
        return cls(provider=provider, error=kind, detail=detail)


def _iso(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value).strip()
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def query_terms(query: str) -> list[str]:
    """Keywords of a NewsAPI-style query, minus boolean operators."""
    words = re.findall(r"[A-Za-z0-9]+", query or "")
    return [w.lower() for w in words if w.upper() not in {"OR", "AND", "NOT"}]


def matches_query(item: dict, terms: Iterable[str]) -> bool:
    terms = list(terms)
    if not terms:
        return True
    haystack = f"{item.get('title', '')} {item.get('description', '')}".lower()
    return any(re.search(rf"\b{re.escape(t)}\b", haystack) for t in terms)


class NewsProvider:
    name = "provider"

    async def _fetch(self, query: str, limit: int, since: datetime) -> list[dict]:
        raise NotImplementedError

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        try:
            items = await self._fetch(query, limit, since)
        except BotError as exc:
            return ProviderResult.failure(self.name, error_kind(exc), str(exc))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            return ProviderResult.failure(self.name, ErrorKind.UNAVAILABLE, f"malformed payload: {exc}")
        return ProviderResult.success(self.name, items)


class NewsApiProvider(NewsProvider):
    name = "newsapi"

    def __init__(
        self,
        http: ResilientHTTPClient,
        api_key: str,
        base_url: str = "https://newsapi.org/v2",
        language: str = "en",
        timeout: float = 20.0,
    ) -> None:
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        if not self.api_key:
            return ProviderResult.failure(self.name, ErrorKind.QUOTA, "api key not configured")
        return await super().fetch(query, limit, since)

    async def _fetch(self, query: str, limit: int, since: datetime) -> list[dict]:
        data = await self.http.get_json(
            f"{self.base_url}/everything",
            params={
                "q": query,
                "language": self.language,
                "sortBy": "publishedAt",
                "from": since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
                "pageSize": limit,
                "apiKey": self.api_key,
            },
            timeout=self.timeout,
            provider=self.name,
        )
        if data.get("status") != "ok":
            code = str(data.get("code") or "")
            if code in NEWSAPI_QUOTA_CODES:
                raise QuotaExceeded(f"{self.name} refused request ({code})", provider=self.name)
            raise ValueError(f"status={data.get('status')} code={code}")
        return [
            {
                "title": a.get("title") or "Untitled",
                "description": a.get("description"),
                "url": a.get("url") or "",
                "source": (a.get("source") or {}).get("name") or "NewsAPI",
                "published_at": _iso(a.get("publishedAt")),
            }
            for a in data.get("articles") or []
        ]


class NewsDataProvider(NewsProvider):
    name = "newsdata"

    def __init__(
        self,
        http: ResilientHTTPClient,
        api_key: str,
        base_url: str = "https://newsdata.io/api/1",
        language: str = "en",
        timeout: float = 10.0,
    ) -> None:
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        if not self.api_key:
            return ProviderResult.failure(self.name, ErrorKind.QUOTA, "api key not configured")
        return await super().fetch(query, limit, since)

    async def _fetch(self, query: str, limit: int, since: datetime) -> list[dict]:
        data = await self.http.get_json(
            f"{self.base_url}/news",
            params={
                "apikey": self.api_key,
                "q": " ".join(query_terms(query)) or query,
                "language": self.language,
                "category": "business,technology",
                # Free plan caps page size at 10.
                "size": min(limit, 10),
            },
            timeout=self.timeout,
            provider=self.name,
        )
        if data.get("status") != "success":
            raise ValueError(f"status={data.get('status')}")
        return [
            {
                "title": a.get("title") or "Untitled",
                "description": a.get("description"),
                "url": a.get("link") or "",
                "source": a.get("source_id") or "NewsData.io",
                "published_at": _iso(a.get("pubDate")),
            }
            for a in data.get("results") or []
        ][:limit]


class CryptoPanicProvider(NewsProvider):
    name = "cryptopanic"

    def __init__(
        self,
        http: ResilientHTTPClient,
        api_key: str,
        base_url: str = "https://cryptopanic.com/api/v1",
        timeout: float = 10.0,
    ) -> None:
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        if not self.api_key:
            return ProviderResult.failure(self.name, ErrorKind.QUOTA, "api key not configured")
        return await super().fetch(query, limit, since)

    async def _fetch(self, query: str, limit: int, since: datetime) -> list[dict]:
        data = await self.http.get_json(
            f"{self.base_url}/posts/",
            params={"auth_token": self.api_key, "public": "true"},
            timeout=self.timeout,
            provider=self.name,
        )
        terms = query_terms(query)
        rows = []
        for item in data.get("results") or []:
            row = {
                "title": item.get("title") or "Untitled",
                "description": None,
                "url": item.get("url") or "",
                "source": (item.get("source") or {}).get("title") or "CryptoPanic",
                "published_at": _iso(item.get("published_at")),
            }
            if matches_query(row, terms):
                rows.append(row)
        return rows[:limit]


class RssFeedProvider(NewsProvider):
    name = "rss"

    def __init__(self, feeds: list[str], feed_timeout: float = 5.0, per_feed: int = 12) -> None:
        self.feeds = feeds
        self.feed_timeout = feed_timeout
        self.per_feed = per_feed

    async def fetch(self, query: str, limit: int, since: datetime) -> ProviderResult:
        if not self.feeds:
            return ProviderResult.failure(self.name, ErrorKind.UNAVAILABLE, "no feeds configured")
        return await super().fetch(query, limit, since)

    async def _fetch_feed(self, url: str) -> list[dict]:
        parsed = await asyncio.to_thread(feedparser.parse, url)
        items: list[dict] = []
        for entry in parsed.entries[: self.per_feed]:
            items.append(
                {
                    "title": entry.get("title", "Untitled"),
                    "description": entry.get("summary") or entry.get("description"),
                    "url": entry.get("link", ""),
                    "source": parsed.feed.get("title", "rss"),
                    "published_at": _iso(entry.get("published") or entry.get("updated")),
                }
            )
        return items

    async def _fetch(self, query: str, limit: int, since: datetime) -> list[dict]:
        tasks = [asyncio.wait_for(self._fetch_feed(url), timeout=self.feed_timeout) for url in self.feeds]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        terms = query_terms(query)
        stories: list[dict] = []
        for feed, result in zip(self.feeds, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "rss_feed_failed",
                    extra={"event": "rss_feed_failed", "provider": feed, "error": str(result)},
                )
                continue
            stories.extend(s for s in result if matches_query(s, terms))
        return stories
