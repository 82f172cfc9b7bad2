from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "coin-news-bot"
    env: str = "dev"
    log_level: str = "INFO"

    host: str = "0.0.0.0"
    port: int = 8000

    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_use_webhook: bool = False
    telegram_webhook_url: str = ""
    telegram_webhook_path: str = "/webhook"
    telegram_webhook_secret: str = ""
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = Field(default="", alias="COINGECKO_API_KEY")
    coingecko_timeout_sec: float = 5.0
    coingecko_listing_timeout_sec: float = 10.0
    local_currency: str = "twd"

    resolution_cache_ttl_hours: int = 24
    resolution_cache_max_entries: int = 5000
    coin_list_ttl_min: int = 360
    known_ids_refresh_size: int = 50

    news_api_key: str = Field(default="", alias="NEWS_API_KEY")
    news_api_base_url: str = "https://newsapi.org/v2"
    news_api_timeout_sec: float = 20.0
    newsdata_api_key: str = Field(default="", alias="NEWSDATA_API_KEY")
    newsdata_base_url: str = "https://newsdata.io/api/1"
    newsdata_timeout_sec: float = 10.0
    cryptopanic_api_key: str = ""
    cryptopanic_base_url: str = "https://cryptopanic.com/api/v1"
    news_rss_feeds: str = (
        "https://www.coindesk.com/arc/outboundfeeds/rss/;"
        "https://cointelegraph.com/rss"
    )
    news_language: str = "en"
    news_default_query: str = "cryptocurrency OR bitcoin OR ethereum"
    news_recency_hours: int = 24
    display_timezone: str = "Asia/Taipei"

    http_retries: int = 0
    http_breaker_threshold: int = 4
    http_breaker_cooldown_sec: int = 60

    redis_url: str = ""

    users_file: str = ""
    schedule_timezone: str = "Asia/Taipei"
    daily_news_hour: int = 9
    market_summary_hour: int = 18
    market_summary_coins: str = "btc,eth,sol"

    def rss_feed_list(self) -> List[str]:
        return [x.strip() for x in self.news_rss_feeds.split(";") if x.strip()]

    def market_summary_coin_list(self) -> List[str]:
        return [x.strip().lower() for x in self.market_summary_coins.split(",") if x.strip()]

    def resolution_cache_ttl_seconds(self) -> int:
        return max(1, self.resolution_cache_ttl_hours) * 3600


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
