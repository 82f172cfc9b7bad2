from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Iterator

from app.adapters.coingecko import CoinGeckoClient
from app.adapters.symbols import normalize_ticker, symbol_for_id
from app.core.errors import AssetNotFound, UpstreamUnavailable
from app.core.models import AssetMetadata, PricePoint, PriceSnapshot, Provenance

logger = logging.getLogger(__name__)

# Last-known values shown when CoinGecko is down; local prices are TWD.
FALLBACK_PRICES: dict[str, dict[str, float]] = {
    "BTC": {"usd": 45000.0, "local": 1350000.0, "change": 2.5},
    "ETH": {"usd": 3000.0, "local": 90000.0, "change": 1.8},
    "SOL": {"usd": 100.0, "local": 3000.0, "change": 3.2},
    "BNB": {"usd": 300.0, "local": 9000.0, "change": 1.5},
    "SUI": {"usd": 1.5, "local": 45.0, "change": 4.1},
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _positive(value: Any) -> float | None:
    """Provider float, or ``None`` when missing, malformed or zero."""
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if out != 0 else None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_description(raw: str | None) -> str | None:
    """First two sentences of a provider description, HTML tags removed."""
    if not raw:
        return None
    text = re.sub(r"<[^>]*>", "", raw)
    text = re.sub(r"\s+", " ", text)
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return None
    return ". ".join(sentences[:2]) + "."


def _parse_genesis(raw: Any) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


class MarketDataService:
    def __init__(
        self,
        client: CoinGeckoClient,
        local_currency: str = "twd",
        fallback_prices: dict[str, dict[str, float]] | None = None,
        symbol_lookup: Callable[[str], str] | None = None,
    ) -> None:
        self.client = client
        self.local_currency = local_currency.lower()
        self.fallback_prices = FALLBACK_PRICES if fallback_prices is None else fallback_prices
        self.symbol_lookup = symbol_lookup or symbol_for_id

    def _coin_id(self, id_or_ticker: str) -> str:
        return (id_or_ticker or "").strip().lower()

    def _snapshot(self, coin_id: str, row: dict[str, Any]) -> PriceSnapshot:
        cur = self.local_currency
        return PriceSnapshot(
            symbol=self.symbol_lookup(coin_id),
            canonical_id=coin_id,
            price_usd=_positive(row.get("usd")),
            price_local=_positive(row.get(cur)),
            local_currency=cur.upper(),
            change_24h_pct=_optional_float(row.get("usd_24h_change")),
            volume_24h_usd=_positive(row.get("usd_24h_vol")),
            market_cap_usd=_positive(row.get("usd_market_cap")),
            fetched_at=datetime.now(timezone.utc),
        )

    def _fallback_snapshot(self, coin_id: str) -> PriceSnapshot | None:
        symbol = self.symbol_lookup(coin_id)
        fallback = self.fallback_prices.get(symbol) or self.fallback_prices.get(normalize_ticker(coin_id).upper())
        if not fallback:
            return None
        return PriceSnapshot(
            symbol=symbol,
            canonical_id=coin_id,
            price_usd=fallback["usd"],
            price_local=fallback.get("local"),
            local_currency=self.local_currency.upper(),
            change_24h_pct=fallback.get("change"),
            volume_24h_usd=None,
            market_cap_usd=None,
            fetched_at=datetime.now(timezone.utc),
            provenance=Provenance.FALLBACK,
        )

    async def _batched_prices(self, coin_ids: list[str]) -> dict[str, dict[str, Any]]:
        return await self.client.simple_price(
            coin_ids,
            vs_currencies=("usd", self.local_currency),
            include_market_data=True,
        )

    async def get_price_snapshot(self, id_or_ticker: str) -> PriceSnapshot:
        """Live snapshot, else the static fallback, else ``UpstreamUnavailable``."""
        coin_id = self._coin_id(id_or_ticker)
        try:
            data = await self._batched_prices([coin_id])
            row = data.get(coin_id)
            if row:
                return self._snapshot(coin_id, row)
            error = AssetNotFound(f"No price record for {coin_id}", provider="coingecko")
        except UpstreamUnavailable as exc:
            error = exc

        fallback = self._fallback_snapshot(coin_id)
        if fallback is None:
            logger.warning(
                "price_unavailable",
                extra={"event": "price_unavailable", "canonical_id": coin_id, "error": str(error)},
            )
            raise error
        logger.warning(
            "price_fallback_used",
            extra={"event": "price_fallback_used", "canonical_id": coin_id, "error": str(error)},
        )
        return fallback

    async def get_price_snapshots(self, ids: Iterable[str]) -> list[PriceSnapshot]:
        coin_ids = list(dict.fromkeys(self._coin_id(i) for i in ids if i))
        if not coin_ids:
            return []
        try:
            data = await self._batched_prices(coin_ids)
        except UpstreamUnavailable as exc:
            logger.warning("batch_price_failed", extra={"event": "batch_price_failed", "error": str(exc)})
            data = {}

        out: list[PriceSnapshot] = []
        for coin_id in coin_ids:
            row = data.get(coin_id)
            snapshot = self._snapshot(coin_id, row) if row else self._fallback_snapshot(coin_id)
            if snapshot is not None:
                out.append(snapshot)
        return out

    async def get_asset_metadata(self, id_or_ticker: str) -> AssetMetadata:
        coin_id = self._coin_id(id_or_ticker)
        payload = await self.client.coin_detail(coin_id)
        if not payload:
            raise UpstreamUnavailable(f"Empty detail payload for {coin_id}", provider="coingecko")

        md = payload.get("market_data") or {}
        rank = md.get("market_cap_rank") or payload.get("market_cap_rank")
        return AssetMetadata(
            canonical_id=coin_id,
            name=str(payload.get("name") or coin_id),
            symbol=str(payload.get("symbol") or self.symbol_lookup(coin_id)).upper(),
            market_cap_rank=int(rank) if isinstance(rank, (int, float)) and rank > 0 else None,
            market_cap_usd=_positive((md.get("market_cap") or {}).get("usd")),
            volume_24h_usd=_positive((md.get("total_volume") or {}).get("usd")),
            genesis_date=_parse_genesis(payload.get("genesis_date")),
            description=extract_description((payload.get("description") or {}).get("en")),
        )

    async def get_historical_series(self, id_or_ticker: str, days: int) -> Iterator[PricePoint]:
        """Oldest-to-newest price points as a single-pass iterator.

        ``days <= 0`` and an empty provider series both give an empty
        iterator; transport failures raise ``UpstreamUnavailable``.
        """
        if days <= 0:
            return iter(())
        coin_id = self._coin_id(id_or_ticker)
        rows = await self.client.market_chart(coin_id, days=days)
        if not rows:
            logger.info("history_empty", extra={"event": "history_empty", "canonical_id": coin_id})
        return self._iter_points(rows)

    @staticmethod
    def _iter_points(rows: list[list[float]]) -> Iterator[PricePoint]:
        valid = [r for r in rows if len(r) >= 2 and r[0] is not None and r[1] is not None]
        for row in sorted(valid, key=lambda r: r[0]):
            yield PricePoint(
                timestamp=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
                price=float(row[1]),
            )

    async def get_market_overview(self) -> dict[str, Any]:
        data = await self.client.global_market()
        if not data:
            raise UpstreamUnavailable("Empty global market payload", provider="coingecko")
        dominance = data.get("market_cap_percentage") or {}
        return {
            "total_market_cap_usd": _positive((data.get("total_market_cap") or {}).get("usd")),
            "total_volume_usd": _positive((data.get("total_volume") or {}).get("usd")),
            "market_cap_change_24h_pct": _optional_float(data.get("market_cap_change_percentage_24h_usd")),
            "active_cryptocurrencies": data.get("active_cryptocurrencies"),
            "btc_dominance": _optional_float(dominance.get("btc")),
            "eth_dominance": _optional_float(dominance.get("eth")),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
