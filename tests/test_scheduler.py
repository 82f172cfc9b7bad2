from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.core.errors import UpstreamUnavailable
from app.core.models import NewsArticle, PriceSnapshot
from app.services.users import UserRegistry
from app.workers.scheduler import WorkerScheduler


class DummyBot:
    def __init__(self, failing: set[int] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str, **kwargs) -> None:
        if chat_id in self.failing:
            raise RuntimeError("bot was blocked by the user")
        self.sent.append((chat_id, text))


class DummyNews:
    def __init__(self) -> None:
        self.coin_requests: list[str] = []

    async def get_daily_summary(self, limit: int = 3) -> list[NewsArticle]:
        return [NewsArticle(title="Daily headline", url="https://n.example/d", published_at="", source_name="Wire")]

    async def get_coin_news(self, ticker: str, limit: int = 3) -> list[NewsArticle]:
        self.coin_requests.append(ticker)
        return [NewsArticle(title=f"{ticker} headline", url="https://n.example/c", published_at="", source_name="Wire")]


class DummyResolver:
    async def resolve_or_raw(self, ticker: str) -> tuple[str, bool]:
        return {"btc": "bitcoin", "eth": "ethereum", "sol": "solana"}.get(ticker, ticker), True


class DummyMarket:
    def __init__(self, overview_ok: bool = True) -> None:
        self.overview_ok = overview_ok
        self.requested: list[str] = []

    async def get_price_snapshots(self, ids) -> list[PriceSnapshot]:
        self.requested = list(ids)
        return [
            PriceSnapshot(
                symbol=coin_id[:3].upper(),
                canonical_id=coin_id,
                price_usd=100.0,
                price_local=None,
                local_currency="TWD",
                change_24h_pct=1.0,
                volume_24h_usd=None,
                market_cap_usd=None,
                fetched_at=datetime.now(timezone.utc),
            )
            for coin_id in ids
        ]

    async def get_market_overview(self) -> dict:
        if not self.overview_ok:
            raise UpstreamUnavailable("global down", provider="coingecko")
        return {"total_market_cap_usd": 2.4e12, "market_cap_change_24h_pct": -0.8, "btc_dominance": 54.31}


async def _hub(bot: DummyBot) -> SimpleNamespace:
    users = UserRegistry()
    await users.touch(1)
    await users.touch(2)
    await users.subscribe(1, "btc")
    return SimpleNamespace(
        bot=bot,
        user_registry=users,
        news_service=DummyNews(),
        resolver=DummyResolver(),
        market_service=DummyMarket(),
    )


@pytest.mark.asyncio
async def test_daily_news_continues_past_failed_chat() -> None:
    bot = DummyBot(failing={2})
    hub = await _hub(bot)
    sent = await WorkerScheduler(hub).broadcast_daily_news()

    assert sent == 2
    assert [chat for chat, _ in bot.sent] == [1, 1]
    assert "Daily headline" in bot.sent[0][1]
    assert "btc headline" in bot.sent[1][1]
    assert hub.news_service.coin_requests == ["btc"]


@pytest.mark.asyncio
async def test_market_summary_resolves_configured_coins() -> None:
    bot = DummyBot()
    hub = await _hub(bot)
    sent = await WorkerScheduler(hub).broadcast_market_summary()

    assert sent == 2
    assert hub.market_service.requested == ["bitcoin", "ethereum", "solana"]
    assert "Total cap: $2.4T (-0.80%)" in bot.sent[0][1]
    assert "BTC dominance: 54.3%" in bot.sent[0][1]


@pytest.mark.asyncio
async def test_market_summary_survives_overview_failure() -> None:
    bot = DummyBot()
    hub = await _hub(bot)
    hub.market_service = DummyMarket(overview_ok=False)
    sent = await WorkerScheduler(hub).broadcast_market_summary()

    assert sent == 2
    assert "Total cap" not in bot.sent[0][1]
    assert "ETH" in bot.sent[0][1]


@pytest.mark.asyncio
async def test_broadcast_without_users_sends_nothing() -> None:
    bot = DummyBot()
    hub = SimpleNamespace(bot=bot, user_registry=UserRegistry(), news_service=DummyNews())
    assert await WorkerScheduler(hub).broadcast_daily_news() == 0
    assert bot.sent == []
