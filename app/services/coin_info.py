"""Ticker in, price + fundamentals out: resolve first, then fan out to CoinGecko."""

from __future__ import annotations

import asyncio
import logging

from app.adapters.symbols import is_valid_ticker, normalize_ticker
from app.core.errors import AssetNotFound, ResolutionFailed, UpstreamUnavailable, ValidationError
from app.core.models import AssetMetadata, CoinOverview, PriceSnapshot
from app.services.market_data import MarketDataService
from app.services.resolver import IdentifierResolver

logger = logging.getLogger(__name__)


def _check_ticker(ticker: str) -> None:
    if not is_valid_ticker(normalize_ticker(ticker)):
        raise ValidationError(f"Invalid ticker {ticker!r}")


class CoinInfoService:
    def __init__(self, resolver: IdentifierResolver, market: MarketDataService) -> None:
        self.resolver = resolver
        self.market = market

    async def get_price(self, ticker: str) -> PriceSnapshot:
        """Snapshot for a ticker; unresolvable tickers fall through as raw ids.

        Raises ``ResolutionFailed`` only when the ticker never resolved and
        CoinGecko cleanly reported no record for the raw id. Outages surface
        as ``UpstreamUnavailable``.
        """
        _check_ticker(ticker)
        coin_id, resolved = await self.resolver.resolve_or_raw(ticker)
        try:
            return await self.market.get_price_snapshot(coin_id)
        except AssetNotFound as exc:
            if not resolved:
                raise ResolutionFailed(ticker) from exc
            raise

    async def get_overview(self, ticker: str) -> CoinOverview:
        _check_ticker(ticker)
        coin_id, resolved = await self.resolver.resolve_or_raw(ticker)
        overview = CoinOverview(ticker=ticker, canonical_id=coin_id, resolved=resolved)

        snapshot, metadata = await asyncio.gather(
            self.market.get_price_snapshot(coin_id),
            self.market.get_asset_metadata(coin_id),
            return_exceptions=True,
        )
        if isinstance(snapshot, PriceSnapshot):
            overview.snapshot = snapshot
        elif isinstance(snapshot, UpstreamUnavailable):
            overview.errors.append("price")
        else:
            raise snapshot
        if isinstance(metadata, AssetMetadata):
            overview.metadata = metadata
        elif isinstance(metadata, UpstreamUnavailable):
            overview.errors.append("metadata")
        else:
            raise metadata

        if overview.snapshot is None and overview.metadata is None:
            logger.warning(
                "coin_overview_unavailable",
                extra={"event": "coin_overview_unavailable", "ticker": ticker, "canonical_id": coin_id},
            )
            if not resolved and isinstance(snapshot, AssetNotFound):
                raise ResolutionFailed(ticker) from snapshot
            raise UpstreamUnavailable(f"No data for {coin_id}", provider="coingecko")
        return overview
