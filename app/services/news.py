from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from app.adapters.news_sources import NewsProvider, ProviderResult, query_terms
from app.adapters.symbols import CANONICAL_IDS, normalize_ticker
from app.core.errors import ErrorKind
from app.core.models import NewsArticle, Provenance

logger = logging.getLogger(__name__)

PLACEHOLDER_SOURCE = "Placeholder"
TITLE_MAX_LEN = 80
MAX_LIMIT = 100

# (title template, url slug, topic keywords)
PLACEHOLDER_TEMPLATES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("{topic} market update", "crypto-update", ("market", "price", "crypto", "cryptocurrency", "bitcoin", "btc", "ethereum", "eth")),
    ("{topic} technical analysis report", "tech-report", ("analysis", "technical", "chart", "trading", "price")),
    ("{topic} policy and regulation impact", "policy-impact", ("policy", "regulation", "sec", "etf", "law")),
    ("{topic} investor sentiment analysis", "investor-sentiment", ("sentiment", "investor", "fear", "greed", "market")),
    ("{topic} blockchain innovation roundup", "blockchain-innovation", ("blockchain", "defi", "nft", "web3", "technology")),
)


def truncate_title(title: str | None, max_len: int = TITLE_MAX_LEN) -> str:
    if not title:
        return "Untitled"
    if len(title) <= max_len:
        return title
    return title[:max_len] + "..."


def _parse_ts(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class NewsService:
    """Articles for a query from the first provider that has any.

    Order: primary, then each secondary, then static placeholders. Any primary
    failure (quota, auth, timeout, bad payload) or an empty primary result
    moves on to the next provider. Nothing here raises for upstream trouble.
    """

    def __init__(
        self,
        primary: NewsProvider,
        secondaries: list[NewsProvider] | None = None,
        default_query: str = "cryptocurrency OR bitcoin OR ethereum",
        recency_hours: int = 24,
        display_timezone: str = "Asia/Taipei",
        clock: Callable[[], datetime] | None = None,
        id_lookup: Callable[[str], str | None] | None = None,
    ) -> None:
        self.primary = primary
        self.secondaries = secondaries or []
        self.default_query = default_query
        self.recency = timedelta(hours=recency_hours)
        self.display_tz = ZoneInfo(display_timezone)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.id_lookup = id_lookup or CANONICAL_IDS.get

    def _display(self, dt: datetime | None) -> str:
        if dt is None:
            return ""
        return dt.astimezone(self.display_tz).strftime("%Y-%m-%d %H:%M")

    def _dedupe_stories(self, stories: list[dict]) -> list[dict]:
        deduped: list[dict] = []
        seen = set()
        for story in stories:
            url_key = (story.get("url") or "").strip().lower()
            title_key = (story.get("title") or "").strip().lower()
            key = url_key or title_key
            if not key or key in seen:
                continue
            seen.add(key)
            deduped.append(story)
        return deduped

    def _normalize(self, stories: list[dict], since: datetime, limit: int) -> list[NewsArticle]:
        dated: list[tuple[datetime, dict]] = []
        for story in self._dedupe_stories(stories):
            published = _parse_ts(story.get("published_at"))
            # undated stories cannot pass the recency window
            if published is None or published < since:
                continue
            dated.append((published, story))
        dated.sort(key=lambda pair: pair[0], reverse=True)
        return [
            NewsArticle(
                title=story.get("title") or "Untitled",
                description=story.get("description") or None,
                url=story.get("url") or "",
                published_at=self._display(published),
                source_name=story.get("source") or "unknown",
            )
            for published, story in dated[:limit]
        ]

    async def _try(self, provider: NewsProvider, query: str, limit: int, since: datetime) -> list[NewsArticle]:
        try:
            result = await provider.fetch(query, limit, since)
        except Exception as exc:  # noqa: BLE001
            result = ProviderResult.failure(provider.name, ErrorKind.UNAVAILABLE, str(exc))
        articles = self._normalize(result.items, since, limit) if result.ok else []
        if not articles:
            kind = result.error.value if result.error else ErrorKind.NO_DATA.value
            logger.warning(
                "news_provider_failed",
                extra={"event": "news_provider_failed", "provider": provider.name, "kind": kind, "error": result.detail},
            )
        return articles

    def placeholders(self, query: str, limit: int) -> list[NewsArticle]:
        terms = query_terms(query)
        picked = [t for t in PLACEHOLDER_TEMPLATES if any(k in terms for k in t[2])]
        if not picked:
            picked = list(PLACEHOLDER_TEMPLATES)
        if terms:
            topic = terms[0].upper() if len(terms[0]) <= 5 else terms[0].capitalize()
        else:
            topic = "Crypto"
        stamp = self._display(self.clock())
        return [
            NewsArticle(
                title=template.format(topic=topic),
                url=f"https://example.com/{slug}",
                published_at=stamp,
                source_name=PLACEHOLDER_SOURCE,
                provenance=Provenance.FALLBACK,
            )
            for template, slug, _ in picked[: max(1, limit)]
        ]

    async def get_articles(self, query: str | None = None, limit: int = 3) -> list[NewsArticle]:
        query = (query or "").strip() or self.default_query
        limit = max(1, min(int(limit), MAX_LIMIT))
        since = self.clock() - self.recency

        for provider in [self.primary, *self.secondaries]:
            articles = await self._try(provider, query, limit, since)
            if articles:
                logger.info(
                    "news_served",
                    extra={"event": "news_served", "provider": provider.name, "count": len(articles)},
                )
                return articles

        logger.warning("news_placeholders_used", extra={"event": "news_placeholders_used"})
        return self.placeholders(query, limit)

    async def get_coin_news(self, ticker: str, limit: int = 3) -> list[NewsArticle]:
        t = normalize_ticker(ticker)
        if not t:
            return await self.get_articles(None, limit)
        parts = [t]
        coin_id = self.id_lookup(t)
        if coin_id and coin_id != t:
            parts.append(coin_id.split("-")[0])
        return await self.get_articles(" OR ".join(parts), limit)

    async def search_by_keyword(self, keyword: str, limit: int = 3) -> list[NewsArticle]:
        articles = await self.get_articles(keyword, limit)
        return [replace(a, title=truncate_title(a.title)) for a in articles]

    async def get_daily_summary(self, limit: int = 3) -> list[NewsArticle]:
        return await self.get_articles(self.default_query, limit)
