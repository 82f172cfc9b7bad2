from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.bot.templates import market_summary_template, news_template
from app.core.config import get_settings
from app.core.container import ServiceHub
from app.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class WorkerScheduler:
    def __init__(self, hub: ServiceHub) -> None:
        self.hub = hub
        self.settings = get_settings()
        self.scheduler = AsyncIOScheduler(timezone=self.settings.schedule_timezone)

    async def _send(self, chat_id: int, text: str) -> bool:
        try:
            await self.hub.bot.send_message(chat_id=chat_id, text=text, disable_web_page_preview=True)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "broadcast_send_failed",
                extra={"event": "broadcast_send_failed", "user_id": chat_id, "error": str(exc)},
            )
            return False

    async def broadcast_daily_news(self) -> int:
        """Digest to every active chat, then coin news to each coin's subscribers."""
        users = self.hub.user_registry.active_users()
        if not users:
            return 0
        news = await self.hub.news_service.get_daily_summary(limit=3)
        body = news_template(news, title="Daily crypto digest")
        sent = 0
        for chat_id in users:
            sent += await self._send(chat_id, body)

        for ticker, chat_ids in self.hub.user_registry.subscribers().items():
            coin_news = await self.hub.news_service.get_coin_news(ticker, limit=3)
            coin_body = news_template(coin_news, title=f"{ticker.upper()} news")
            for chat_id in chat_ids:
                sent += await self._send(chat_id, coin_body)
        logger.info("daily_news_broadcast", extra={"event": "daily_news_broadcast", "count": sent})
        return sent

    async def broadcast_market_summary(self) -> int:
        users = self.hub.user_registry.active_users()
        if not users:
            return 0
        ids = []
        for ticker in self.settings.market_summary_coin_list():
            coin_id, _ = await self.hub.resolver.resolve_or_raw(ticker)
            ids.append(coin_id)
        snapshots = await self.hub.market_service.get_price_snapshots(ids)
        try:
            overview = await self.hub.market_service.get_market_overview()
        except UpstreamUnavailable as exc:
            logger.warning("market_overview_failed", extra={"event": "market_overview_failed", "error": str(exc)})
            overview = None
        body = market_summary_template(snapshots, overview)
        sent = 0
        for chat_id in users:
            sent += await self._send(chat_id, body)
        logger.info("market_summary_broadcast", extra={"event": "market_summary_broadcast", "count": sent})
        return sent

    async def _daily_news_job(self) -> None:
        try:
            await self.broadcast_daily_news()
        except Exception as exc:  # noqa: BLE001
            logger.exception("daily_news_task_failed", extra={"event": "daily_news_task_failed", "error": str(exc)})

    async def _market_summary_job(self) -> None:
        try:
            await self.broadcast_market_summary()
        except Exception as exc:  # noqa: BLE001
            logger.exception("market_summary_task_failed", extra={"event": "market_summary_task_failed", "error": str(exc)})

    async def _sweep_resolution_cache(self) -> None:
        try:
            cleared = await self.hub.resolver.sweep_expired()
            if cleared:
                logger.info("resolution_cache_swept", extra={"event": "resolution_cache_swept", "count": cleared})
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_sweep_failed", extra={"event": "cache_sweep_failed", "error": str(exc)})

    async def _refresh_known_ids(self) -> None:
        try:
            await self.hub.resolver.refresh_known_ids(self.settings.known_ids_refresh_size)
        except Exception as exc:  # noqa: BLE001
            logger.warning("known_ids_task_failed", extra={"event": "known_ids_task_failed", "error": str(exc)})

    def start(self) -> None:
        self.scheduler.add_job(
            self._daily_news_job, "cron", hour=self.settings.daily_news_hour, minute=0, max_instances=1
        )
        self.scheduler.add_job(
            self._market_summary_job, "cron", hour=self.settings.market_summary_hour, minute=0, max_instances=1
        )
        self.scheduler.add_job(self._sweep_resolution_cache, "interval", hours=1, max_instances=1)
        self.scheduler.add_job(self._refresh_known_ids, "cron", hour=3, minute=30, max_instances=1)
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
