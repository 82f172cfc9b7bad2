from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class Provenance(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ResolutionCacheEntry:
    ticker: str
    canonical_id: str
    resolved_at: float

    def to_json(self) -> dict:
        return {"ticker": self.ticker, "canonical_id": self.canonical_id, "resolved_at": self.resolved_at}

    @classmethod
    def from_json(cls, payload: dict) -> ResolutionCacheEntry | None:
        try:
            return cls(
                ticker=str(payload["ticker"]),
                canonical_id=str(payload["canonical_id"]),
                resolved_at=float(payload["resolved_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class PriceSnapshot:
    """Price view of one asset. ``None`` on a numeric field means unavailable."""

    symbol: str
    canonical_id: str
    price_usd: float | None
    price_local: float | None
    local_currency: str
    change_24h_pct: float | None
    volume_24h_usd: float | None
    market_cap_usd: float | None
    fetched_at: datetime
    provenance: Provenance = Provenance.LIVE

    @property
    def is_fallback(self) -> bool:
        return self.provenance is Provenance.FALLBACK


@dataclass
class AssetMetadata:
    canonical_id: str
    name: str
    symbol: str
    market_cap_rank: int | None
    market_cap_usd: float | None
    volume_24h_usd: float | None
    genesis_date: date | None
    description: str | None


@dataclass(frozen=True)
class PricePoint:
    timestamp: datetime
    price: float


@dataclass
class NewsArticle:
    title: str
    url: str
    published_at: str
    source_name: str
    description: str | None = None
    provenance: Provenance = Provenance.LIVE

    @property
    def is_fallback(self) -> bool:
        return self.provenance is Provenance.FALLBACK


@dataclass
class CoinOverview:
    ticker: str
    canonical_id: str
    resolved: bool
    snapshot: PriceSnapshot | None = None
    metadata: AssetMetadata | None = None
    errors: list[str] = field(default_factory=list)
