"""Resolve user tickers (``btc``, ``$PEPE``, ``eth/usdt``) to CoinGecko ids.

Strategies run strictly in order and stop at the first hit:

1. known table  - seed/refreshed ticker -> id map, no network
2. direct lookup - treat the ticker as an id and ask /simple/price about it
3. listing      - full /coins/list, exact symbol first, then substring
4. search api   - /search keyword query, exact symbol first, then top hit

Hits are cached under the normalised ticker the user typed, for a fixed TTL.
A strategy that fails on transport is logged and counted as "no match";
failures are never cached.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Awaitable, Callable

from app.adapters.coingecko import CoinGeckoClient
from app.adapters.symbols import CANONICAL_IDS, is_valid_ticker, normalize_ticker
from app.core.cache import JsonCache
from app.core.errors import ResolutionFailed, UpstreamUnavailable
from app.core.models import ResolutionCacheEntry

logger = logging.getLogger(__name__)

RESOLVE_KEY_PREFIX = "resolve:"
COIN_LIST_KEY = "coingecko:coins_list"

Strategy = Callable[[str], Awaitable[str | None]]


class IdentifierResolver:
    def __init__(
        self,
        client: CoinGeckoClient,
        cache: JsonCache,
        ttl_seconds: int = 24 * 3600,
        coin_list_ttl_seconds: int = 6 * 3600,
        known_ids: dict[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.coin_list_ttl_seconds = coin_list_ttl_seconds
        self.known_ids: dict[str, str] = dict(CANONICAL_IDS if known_ids is None else known_ids)
        self.clock = clock
        self.strategies: list[tuple[str, Strategy]] = [
            ("known_table", self._from_known_table),
            ("direct_lookup", self._direct_lookup),
            ("listing", self._search_listing),
            ("search_api", self._search_api),
        ]
        self._counters: Counter[str] = Counter()

    # -- cache -------------------------------------------------------------

    async def _cached(self, ticker: str) -> str | None:
        key = RESOLVE_KEY_PREFIX + ticker
        payload = await self.cache.get_json(key)
        if not isinstance(payload, dict):
            return None
        entry = ResolutionCacheEntry.from_json(payload)
        if entry is None or entry.resolved_at + self.ttl_seconds <= self.clock():
            await self.cache.delete(key)
            return None
        return entry.canonical_id

    async def _remember(self, ticker: str, canonical_id: str) -> None:
        entry = ResolutionCacheEntry(ticker=ticker, canonical_id=canonical_id, resolved_at=self.clock())
        await self.cache.set_json(RESOLVE_KEY_PREFIX + ticker, entry.to_json(), ttl=self.ttl_seconds)

    # -- strategies --------------------------------------------------------

    async def _from_known_table(self, ticker: str) -> str | None:
        return self.known_ids.get(ticker)

    async def _direct_lookup(self, ticker: str) -> str | None:
        data = await self.client.simple_price([ticker])
        if data.get(ticker):
            return ticker
        return None

    async def _coin_list(self) -> list[dict]:
        cached = await self.cache.get_json(COIN_LIST_KEY)
        if isinstance(cached, list) and cached:
            return cached
        coins = await self.client.coins_list()
        rows = [
            {"id": c.get("id"), "symbol": (c.get("symbol") or "").lower(), "name": c.get("name")}
            for c in coins
            if c.get("id")
        ]
        if rows:
            await self.cache.set_json(COIN_LIST_KEY, rows, ttl=self.coin_list_ttl_seconds)
        return rows

    async def _search_listing(self, ticker: str) -> str | None:
        coins = await self._coin_list()
        for coin in coins:
            if coin["symbol"] == ticker:
                return coin["id"]
        for coin in coins:
            symbol = coin["symbol"]
            if symbol and (ticker in symbol or symbol in ticker):
                return coin["id"]
        return None

    async def _search_api(self, ticker: str) -> str | None:
        coins = [c for c in await self.client.search(ticker) if c.get("id")]
        if not coins:
            return None
        for coin in coins:
            if (coin.get("symbol") or "").lower() == ticker:
                return coin["id"]
        return coins[0]["id"]

    async def _lookup(self, ticker: str) -> tuple[str | None, bool]:
        """Canonical id or ``None``, plus whether any strategy failed on transport."""
        normalized = normalize_ticker(ticker)
        if not is_valid_ticker(normalized):
            self._counters["invalid"] += 1
            return None, False

        cached = await self._cached(normalized)
        if cached:
            self._counters["cache_hit"] += 1
            return cached, False
        self._counters["cache_miss"] += 1

        degraded = False
        for name, strategy in self.strategies:
            try:
                canonical_id = await strategy(normalized)
            except UpstreamUnavailable as exc:
                degraded = True
                logger.warning(
                    "resolve_strategy_failed",
                    extra={"event": "resolve_strategy_failed", "ticker": normalized, "strategy": name, "error": str(exc)},
                )
                continue
            if canonical_id:
                self._counters[name] += 1
                await self._remember(normalized, canonical_id)
                logger.info(
                    "ticker_resolved",
                    extra={"event": "ticker_resolved", "ticker": normalized, "canonical_id": canonical_id, "strategy": name},
                )
                return canonical_id, degraded

        self._counters["unresolved_degraded" if degraded else "unresolved"] += 1
        logger.info("ticker_unresolved", extra={"event": "ticker_unresolved", "ticker": normalized})
        return None, degraded

    # -- public API --------------------------------------------------------

    async def resolve(self, ticker: str) -> str | None:
        """Map a ticker to a canonical id, or ``None`` when nothing matches."""
        canonical_id, _ = await self._lookup(ticker)
        return canonical_id

    async def require(self, ticker: str) -> str:
        """Like ``resolve`` but raising.

        ``ResolutionFailed`` only when every strategy answered cleanly;
        ``UpstreamUnavailable`` when a miss may be down to an outage.
        """
        canonical_id, degraded = await self._lookup(ticker)
        if canonical_id is not None:
            return canonical_id
        if degraded:
            raise UpstreamUnavailable(f"Resolution of {ticker!r} incomplete", provider="coingecko")
        raise ResolutionFailed(ticker)

    async def resolve_or_raw(self, ticker: str) -> tuple[str, bool]:
        """Best effort: the resolved id, or the normalised ticker itself."""
        canonical_id = await self.resolve(ticker)
        if canonical_id:
            return canonical_id, True
        return normalize_ticker(ticker), False

    async def refresh_known_ids(self, limit: int = 50) -> int:
        """Merge the top ``limit`` coins by market cap into the known table."""
        try:
            rows = await self.client.coins_markets(per_page=limit)
        except UpstreamUnavailable as exc:
            logger.warning("known_ids_refresh_failed", extra={"event": "known_ids_refresh_failed", "error": str(exc)})
            return 0
        added = 0
        seen: set[str] = set()
        for row in rows:
            symbol = (row.get("symbol") or "").lower()
            coin_id = row.get("id")
            # Rows are ordered by market cap: first one wins a shared symbol.
            if not symbol or not coin_id or symbol in seen:
                continue
            seen.add(symbol)
            if self.known_ids.get(symbol) != coin_id:
                self.known_ids[symbol] = coin_id
                added += 1
        logger.info("known_ids_refreshed", extra={"event": "known_ids_refreshed", "count": added})
        return added

    async def sweep_expired(self) -> int:
        return await self.cache.sweep()

    def stats(self) -> dict[str, int]:
        out = dict(self._counters)
        out["known_ids"] = len(self.known_ids)
        return out
