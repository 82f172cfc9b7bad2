from __future__ import annotations

import logging
import re

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import Message

from app.adapters.symbols import is_valid_ticker, normalize_ticker
from app.bot.templates import (
    GENERIC_FAILURE,
    coin_info_template,
    help_text,
    news_template,
    price_template,
    status_template,
    unknown_ticker_text,
)
from app.core.container import ServiceHub
from app.core.errors import BotError, ResolutionFailed, UpstreamUnavailable, ValidationError

router = Router()
_hub: ServiceHub | None = None
logger = logging.getLogger(__name__)

BARE_TICKER_RE = re.compile(r"^\$?[A-Za-z0-9]{1,20}$")


def init_handlers(hub: ServiceHub) -> None:
    global _hub
    _hub = hub


def _require_hub() -> ServiceHub:
    if _hub is None:
        raise RuntimeError("Handlers not initialized")
    return _hub


def is_known_ticker(message: Message) -> bool:
    """Bare text counts as a price query only for tickers in the known table."""
    return normalize_ticker(message.text or "") in _require_hub().resolver.known_ids


def _args(message: Message) -> str:
    parts = (message.text or "").strip().split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


async def _touch(message: Message) -> None:
    hub = _require_hub()
    if await hub.user_registry.touch(message.chat.id):
        logger.info("user_registered", extra={"event": "user_registered", "user_id": message.chat.id})


async def _reply_price(message: Message, ticker: str) -> None:
    hub = _require_hub()
    try:
        snapshot = await hub.coin_info_service.get_price(ticker)
    except (ResolutionFailed, ValidationError):
        await message.answer(unknown_ticker_text(ticker))
        return
    except BotError as exc:
        logger.warning("price_reply_failed", extra={"event": "price_reply_failed", "ticker": ticker, "error": str(exc)})
        await message.answer(GENERIC_FAILURE)
        return
    await message.answer(price_template(snapshot))


@router.message(Command("start"))
async def start_cmd(message: Message) -> None:
    await _touch(message)
    await message.answer("gm 👋 send a ticker like <code>btc</code> for a live price.\n\n" + help_text())


@router.message(Command("help"))
async def help_cmd(message: Message) -> None:
    await _touch(message)
    await message.answer(help_text())


@router.message(Command("price"))
async def price_cmd(message: Message) -> None:
    await _touch(message)
    ticker = _args(message)
    if not ticker:
        await message.answer("Send a ticker.\nExample: <code>/price btc</code>")
        return
    await _reply_price(message, ticker)


@router.message(Command("info"))
async def info_cmd(message: Message) -> None:
    await _touch(message)
    ticker = _args(message)
    if not ticker:
        await message.answer("Send a ticker.\nExample: <code>/info eth</code>")
        return
    hub = _require_hub()
    try:
        overview = await hub.coin_info_service.get_overview(ticker)
    except (ResolutionFailed, ValidationError):
        await message.answer(unknown_ticker_text(ticker))
        return
    except UpstreamUnavailable as exc:
        logger.warning("info_reply_failed", extra={"event": "info_reply_failed", "ticker": ticker, "error": str(exc)})
        await message.answer(GENERIC_FAILURE)
        return
    await message.answer(coin_info_template(overview))


@router.message(Command("news"))
async def news_cmd(message: Message) -> None:
    await _touch(message)
    hub = _require_hub()
    keyword = _args(message)
    if keyword:
        articles = await hub.news_service.search_by_keyword(keyword, limit=5)
        await message.answer(news_template(articles, title=f"News: {keyword}"), disable_web_page_preview=True)
        return
    articles = await hub.news_service.get_daily_summary(limit=5)
    await message.answer(news_template(articles), disable_web_page_preview=True)


@router.message(Command("subscribe"))
async def subscribe_cmd(message: Message) -> None:
    await _touch(message)
    hub = _require_hub()
    raw = _args(message)
    ticker = normalize_ticker(raw)
    if not is_valid_ticker(ticker):
        await message.answer("Send a ticker to follow.\nExample: <code>/subscribe sol</code>")
        return
    try:
        await hub.resolver.require(ticker)
    except ResolutionFailed:
        await message.answer(unknown_ticker_text(raw))
        return
    except UpstreamUnavailable as exc:
        logger.warning("subscribe_resolve_failed", extra={"event": "subscribe_resolve_failed", "ticker": ticker, "error": str(exc)})
        await message.answer(GENERIC_FAILURE)
        return
    await hub.user_registry.subscribe(message.chat.id, ticker)
    await message.answer(status_template(ticker))


@router.message(Command("unsubscribe"))
async def unsubscribe_cmd(message: Message) -> None:
    hub = _require_hub()
    removed = await hub.user_registry.unsubscribe(message.chat.id)
    await message.answer("Coin news stopped." if removed else "You have no coin subscription.")


@router.message(Command("status"))
async def status_cmd(message: Message) -> None:
    await _touch(message)
    hub = _require_hub()
    await message.answer(status_template(hub.user_registry.subscription_for(message.chat.id)))


@router.message(F.text.regexp(BARE_TICKER_RE), is_known_ticker)
async def bare_ticker(message: Message) -> None:
    await _touch(message)
    await _reply_price(message, message.text or "")


@router.message(F.text)
async def fallback_text(message: Message) -> None:
    await _touch(message)
    await message.answer("Not sure what you need. Send a ticker like <code>eth</code> or /help.")
