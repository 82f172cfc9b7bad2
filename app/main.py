from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BotCommand, Update
from fastapi import FastAPI, HTTPException, Request

from app.adapters.coingecko import CoinGeckoClient
from app.adapters.news_sources import CryptoPanicProvider, NewsApiProvider, NewsDataProvider, RssFeedProvider
from app.adapters.symbols import symbol_for_id
from app.bot.handlers import init_handlers, router
from app.core.cache import JsonCache, build_cache
from app.core.config import Settings, get_settings
from app.core.container import ServiceHub
from app.core.http import ResilientHTTPClient
from app.core.logging import setup_logging
from app.services.coin_info import CoinInfoService
from app.services.market_data import MarketDataService
from app.services.news import NewsService
from app.services.resolver import IdentifierResolver
from app.services.users import UserRegistry
from app.workers.scheduler import WorkerScheduler

logger = logging.getLogger(__name__)


async def _sync_bot_commands(bot: Bot) -> None:
    command_specs = [
        ("help", "Show what I can do"),
        ("info", "Price + fundamentals for a coin"),
        ("news", "Latest crypto headlines"),
        ("price", "Live price for a coin"),
        ("start", "Start the bot"),
        ("status", "Show your subscription"),
        ("subscribe", "Daily news for a coin"),
        ("unsubscribe", "Stop coin news"),
    ]
    await bot.set_my_commands([BotCommand(command=c, description=d) for c, d in command_specs])


def build_hub(settings: Settings, bot: Bot, cache: JsonCache, http: ResilientHTTPClient) -> ServiceHub:
    coingecko = CoinGeckoClient(
        http=http,
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        timeout=settings.coingecko_timeout_sec,
        listing_timeout=settings.coingecko_listing_timeout_sec,
    )
    resolver = IdentifierResolver(
        client=coingecko,
        cache=cache,
        ttl_seconds=settings.resolution_cache_ttl_seconds(),
        coin_list_ttl_seconds=settings.coin_list_ttl_min * 60,
    )
    market_service = MarketDataService(
        client=coingecko,
        local_currency=settings.local_currency,
        symbol_lookup=lambda coin_id: symbol_for_id(coin_id, resolver.known_ids),
    )
    news_service = NewsService(
        primary=NewsApiProvider(
            http=http,
            api_key=settings.news_api_key,
            base_url=settings.news_api_base_url,
            language=settings.news_language,
            timeout=settings.news_api_timeout_sec,
        ),
        secondaries=[
            NewsDataProvider(
                http=http,
                api_key=settings.newsdata_api_key,
                base_url=settings.newsdata_base_url,
                language=settings.news_language,
                timeout=settings.newsdata_timeout_sec,
            ),
            CryptoPanicProvider(http=http, api_key=settings.cryptopanic_api_key, base_url=settings.cryptopanic_base_url),
            RssFeedProvider(feeds=settings.rss_feed_list()),
        ],
        default_query=settings.news_default_query,
        recency_hours=settings.news_recency_hours,
        display_timezone=settings.display_timezone,
        id_lookup=lambda ticker: resolver.known_ids.get(ticker),
    )
    return ServiceHub(
        bot=bot,
        http=http,
        cache=cache,
        resolver=resolver,
        market_service=market_service,
        coin_info_service=CoinInfoService(resolver, market_service),
        news_service=news_service,
        user_registry=UserRegistry(settings.users_file or None),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is required")

    cache = build_cache(settings.redis_url, settings.resolution_cache_max_entries)
    http = ResilientHTTPClient(
        retries=settings.http_retries,
        breaker_threshold=settings.http_breaker_threshold,
        breaker_cooldown=settings.http_breaker_cooldown_sec,
    )
    bot = Bot(token=settings.telegram_bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()

    hub = build_hub(settings, bot, cache, http)
    try:
        await _sync_bot_commands(bot)
    except Exception as exc:  # noqa: BLE001
        logger.warning("set_bot_commands_failed", extra={"event": "set_bot_commands_failed", "error": str(exc)})
    init_handlers(hub)
    dp.include_router(router)

    scheduler = WorkerScheduler(hub)
    scheduler.start()

    polling_task = None
    if settings.telegram_use_webhook:
        webhook_url = settings.telegram_webhook_url.rstrip("/") + settings.telegram_webhook_path
        try:
            await bot.set_webhook(webhook_url, secret_token=settings.telegram_webhook_secret or None)
            logger.info("webhook_configured", extra={"event": "webhook_configured"})
        except Exception as exc:  # noqa: BLE001
            logger.exception("webhook_configure_failed", extra={"event": "webhook_configure_failed", "error": str(exc)})
    else:
        polling_task = asyncio.create_task(dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types()))

    app.state.settings = settings
    app.state.hub = hub
    app.state.dp = dp
    app.state.bot = bot
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        scheduler.stop()
        if polling_task:
            polling_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await polling_task
        await bot.session.close()
        await http.close()
        await cache.close()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Coin News Bot", version="1.0.0", lifespan=lifespan)

    def _cron_authorized(req: Request) -> bool:
        if not settings.cron_secret:
            return False
        auth = req.headers.get("authorization", "")
        if auth == f"Bearer {settings.cron_secret}":
            return True
        return req.headers.get("x-cron-secret", "") == settings.cron_secret

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post(settings.telegram_webhook_path)
    async def telegram_webhook(req: Request) -> dict:
        app_settings = app.state.settings
        if not app_settings.telegram_use_webhook:
            raise HTTPException(status_code=400, detail="Webhook mode disabled")
        if app_settings.telegram_webhook_secret:
            secret = req.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
            if secret != app_settings.telegram_webhook_secret:
                raise HTTPException(status_code=403, detail="Invalid secret")

        payload = await req.json()
        update = Update.model_validate(payload)
        await app.state.dp.feed_update(app.state.bot, update)
        return {"ok": True}

    @app.api_route("/tasks/news/broadcast", methods=["GET", "POST"])
    async def task_news(req: Request) -> dict:
        if not _cron_authorized(req):
            raise HTTPException(status_code=401, detail="Unauthorized")
        try:
            sent = await app.state.scheduler.broadcast_daily_news()
            return {"ok": True, "task": "news", "sent": sent, "ts": datetime.now(timezone.utc).isoformat()}
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_news_failed", extra={"event": "task_news_failed", "error": str(exc)})
            return {"ok": False, "task": "news", "sent": 0, "ts": datetime.now(timezone.utc).isoformat()}

    @app.api_route("/tasks/market/broadcast", methods=["GET", "POST"])
    async def task_market(req: Request) -> dict:
        if not _cron_authorized(req):
            raise HTTPException(status_code=401, detail="Unauthorized")
        try:
            sent = await app.state.scheduler.broadcast_market_summary()
            return {"ok": True, "task": "market", "sent": sent, "ts": datetime.now(timezone.utc).isoformat()}
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_market_failed", extra={"event": "task_market_failed", "error": str(exc)})
            return {"ok": False, "task": "market", "sent": 0, "ts": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=False)
