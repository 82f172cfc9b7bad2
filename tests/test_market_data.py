from __future__ import annotations

from datetime import date

import pytest

from app.core.errors import AssetNotFound, UpstreamUnavailable
from app.core.models import Provenance
from app.services.market_data import MarketDataService, extract_description


class DummyCoinGecko:
    def __init__(
        self,
        prices: dict | None = None,
        detail: dict | None = None,
        chart: list | None = None,
        global_data: dict | None = None,
        fail: bool = False,
    ) -> None:
        self.prices = prices or {}
        self.detail = detail or {}
        self.chart = chart or []
        self.global_data = global_data or {}
        self.fail = fail
        self.calls: list[tuple] = []

    async def simple_price(self, ids, vs_currencies=("usd",), include_market_data=False) -> dict:
        self.calls.append(("simple_price", tuple(ids), tuple(vs_currencies), include_market_data))
        if self.fail:
            raise UpstreamUnavailable("coingecko down", provider="coingecko")
        return {i: self.prices[i] for i in ids if i in self.prices}

    async def coin_detail(self, coin_id: str) -> dict:
        self.calls.append(("coin_detail", coin_id))
        if self.fail:
            raise UpstreamUnavailable("coingecko down", provider="coingecko")
        return self.detail

    async def market_chart(self, coin_id: str, days: int, vs_currency: str = "usd") -> list:
        self.calls.append(("market_chart", coin_id, days))
        if self.fail:
            raise UpstreamUnavailable("coingecko down", provider="coingecko")
        return self.chart

    async def global_market(self) -> dict:
        self.calls.append(("global_market",))
        if self.fail:
            raise UpstreamUnavailable("coingecko down", provider="coingecko")
        return self.global_data


@pytest.mark.asyncio
async def test_live_snapshot_uses_one_batched_call() -> None:
    client = DummyCoinGecko(
        prices={
            "bitcoin": {
                "usd": 67000.5,
                "twd": 2_150_000,
                "usd_24h_change": -1.25,
                "usd_24h_vol": 3.1e10,
                "usd_market_cap": 1.3e12,
            }
        }
    )
    service = MarketDataService(client, local_currency="twd")
    snap = await service.get_price_snapshot("bitcoin")

    assert snap.symbol == "BTC"
    assert snap.price_usd == 67000.5
    assert snap.price_local == 2_150_000
    assert snap.local_currency == "TWD"
    assert snap.change_24h_pct == -1.25
    assert snap.provenance is Provenance.LIVE
    assert client.calls == [("simple_price", ("bitcoin",), ("usd", "twd"), True)]


@pytest.mark.asyncio
async def test_zero_and_missing_values_are_unavailable() -> None:
    client = DummyCoinGecko(prices={"pepe": {"usd": 0.0000012, "usd_24h_vol": 0, "usd_24h_change": 0.0}})
    snap = await MarketDataService(client).get_price_snapshot("pepe")
    assert snap.price_usd == 0.0000012
    assert snap.volume_24h_usd is None
    assert snap.market_cap_usd is None
    assert snap.price_local is None
    assert snap.change_24h_pct == 0.0


@pytest.mark.asyncio
async def test_provider_failure_uses_flagged_fallback() -> None:
    service = MarketDataService(DummyCoinGecko(fail=True))
    snap = await service.get_price_snapshot("bitcoin")
    assert snap.is_fallback
    assert snap.price_usd == 45000.0
    assert snap.volume_24h_usd is None


@pytest.mark.asyncio
async def test_unknown_coin_without_fallback_raises() -> None:
    service = MarketDataService(DummyCoinGecko(fail=True))
    with pytest.raises(UpstreamUnavailable) as err:
        await service.get_price_snapshot("zzzznotacoin")
    assert not isinstance(err.value, AssetNotFound)


@pytest.mark.asyncio
async def test_empty_provider_answer_counts_as_failure() -> None:
    service = MarketDataService(DummyCoinGecko())
    with pytest.raises(AssetNotFound):
        await service.get_price_snapshot("zzzznotacoin")
    fallback = await service.get_price_snapshot("solana")
    assert fallback.is_fallback
    assert fallback.symbol == "SOL"


@pytest.mark.asyncio
async def test_batch_snapshots_mix_live_and_fallback() -> None:
    client = DummyCoinGecko(prices={"bitcoin": {"usd": 60000.0}})
    snaps = await MarketDataService(client).get_price_snapshots(["bitcoin", "ethereum", "zzzz", "bitcoin"])
    assert [s.canonical_id for s in snaps] == ["bitcoin", "ethereum"]
    assert not snaps[0].is_fallback
    assert snaps[1].is_fallback
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_asset_metadata_mapping() -> None:
    client = DummyCoinGecko(
        detail={
            "name": "Bitcoin",
            "symbol": "btc",
            "genesis_date": "2009-01-03",
            "market_cap_rank": 1,
            "market_data": {"market_cap": {"usd": 1.3e12}, "total_volume": {"usd": 0}},
            "description": {"en": "<p>Bitcoin is money.</p> It is digital! Third one."},
        }
    )
    meta = await MarketDataService(client).get_asset_metadata("bitcoin")
    assert meta.name == "Bitcoin"
    assert meta.symbol == "BTC"
    assert meta.market_cap_rank == 1
    assert meta.market_cap_usd == 1.3e12
    assert meta.volume_24h_usd is None
    assert meta.genesis_date == date(2009, 1, 3)
    assert meta.description == "Bitcoin is money. It is digital."


@pytest.mark.asyncio
async def test_asset_metadata_failure_propagates() -> None:
    with pytest.raises(UpstreamUnavailable):
        await MarketDataService(DummyCoinGecko(fail=True)).get_asset_metadata("bitcoin")


def test_extract_description_handles_empty() -> None:
    assert extract_description(None) is None
    assert extract_description("<br/>") is None


@pytest.mark.asyncio
async def test_historical_series_sorted_oldest_first() -> None:
    client = DummyCoinGecko(chart=[[1_700_086_400_000, 101.0], [1_700_000_000_000, 100.0], [None, 5.0]])
    points = list(await MarketDataService(client).get_historical_series("bitcoin", days=2))
    assert [p.price for p in points] == [100.0, 101.0]
    assert points[0].timestamp < points[1].timestamp


@pytest.mark.asyncio
async def test_historical_series_empty_cases() -> None:
    client = DummyCoinGecko()
    service = MarketDataService(client)
    assert list(await service.get_historical_series("bitcoin", days=0)) == []
    assert client.calls == []
    assert list(await service.get_historical_series("bitcoin", days=7)) == []


@pytest.mark.asyncio
async def test_historical_series_transport_failure_raises() -> None:
    with pytest.raises(UpstreamUnavailable):
        await MarketDataService(DummyCoinGecko(fail=True)).get_historical_series("bitcoin", days=7)


@pytest.mark.asyncio
async def test_market_overview_mapping() -> None:
    client = DummyCoinGecko(
        global_data={
            "total_market_cap": {"usd": 2.4e12},
            "total_volume": {"usd": 0},
            "market_cap_change_percentage_24h_usd": -0.8,
            "active_cryptocurrencies": 12000,
            "market_cap_percentage": {"btc": 54.3, "eth": 17.1},
        }
    )
    overview = await MarketDataService(client).get_market_overview()
    assert overview["total_market_cap_usd"] == 2.4e12
    assert overview["total_volume_usd"] is None
    assert overview["market_cap_change_24h_pct"] == -0.8
    assert overview["btc_dominance"] == 54.3
    assert overview["eth_dominance"] == 17.1


@pytest.mark.asyncio
async def test_market_overview_empty_payload_raises() -> None:
    with pytest.raises(UpstreamUnavailable):
        await MarketDataService(DummyCoinGecko()).get_market_overview()
