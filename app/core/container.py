from __future__ import annotations

from dataclasses import dataclass

from aiogram import Bot

from app.core.cache import JsonCache
from app.core.http import ResilientHTTPClient
from app.services.coin_info import CoinInfoService
from app.services.market_data import MarketDataService
from app.services.news import NewsService
from app.services.resolver import IdentifierResolver
from app.services.users import UserRegistry


@dataclass
class ServiceHub:
    bot: Bot
    http: ResilientHTTPClient
    cache: JsonCache
    resolver: IdentifierResolver
    market_service: MarketDataService
    coin_info_service: CoinInfoService
    news_service: NewsService
    user_registry: UserRegistry
