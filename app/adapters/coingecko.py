from __future__ import annotations

from typing import Any, Iterable

from app.core.http import ResilientHTTPClient

PROVIDER = "coingecko"


class CoinGeckoClient:
    """Thin wrapper over the CoinGecko v3 REST endpoints used by the bot."""

    def __init__(
        self,
        http: ResilientHTTPClient,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        listing_timeout: float = 10.0,
    ) -> None:
        self.http = http
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.listing_timeout = listing_timeout

    def _params(self, **params: Any) -> dict[str, Any]:
        if self.api_key:
            params["x_cg_demo_api_key"] = self.api_key
        return params

    async def _get(self, path: str, timeout: float | None = None, **params: Any) -> Any:
        return await self.http.get_json(
            f"{self.base_url}{path}",
            params=self._params(**params),
            timeout=timeout or self.timeout,
            provider=PROVIDER,
        )

    async def simple_price(
        self,
        ids: Iterable[str],
        vs_currencies: Iterable[str] = ("usd",),
        include_market_data: bool = False,
    ) -> dict[str, dict[str, Any]]:
        params: dict[str, Any] = {
            "ids": ",".join(ids),
            "vs_currencies": ",".join(vs_currencies),
            "include_24hr_change": "true",
        }
        if include_market_data:
            params["include_24hr_vol"] = "true"
            params["include_market_cap"] = "true"
        data = await self._get("/simple/price", **params)
        return data if isinstance(data, dict) else {}

    async def coins_list(self) -> list[dict[str, Any]]:
        data = await self._get("/coins/list", timeout=self.listing_timeout)
        return data if isinstance(data, list) else []

    async def search(self, query: str) -> list[dict[str, Any]]:
        data = await self._get("/search", query=query)
        if not isinstance(data, dict):
            return []
        return list(data.get("coins") or [])

    async def coin_detail(self, coin_id: str) -> dict[str, Any]:
        data = await self._get(
            f"/coins/{coin_id}",
            localization="false",
            tickers="false",
            market_data="true",
            community_data="false",
            developer_data="false",
            sparkline="false",
        )
        return data if isinstance(data, dict) else {}

    async def market_chart(self, coin_id: str, days: int, vs_currency: str = "usd") -> list[list[float]]:
        data = await self._get(f"/coins/{coin_id}/market_chart", vs_currency=vs_currency, days=days)
        if not isinstance(data, dict):
            return []
        return list(data.get("prices") or [])

    async def coins_markets(self, per_page: int = 50, page: int = 1, vs_currency: str = "usd") -> list[dict[str, Any]]:
        data = await self._get(
            "/coins/markets",
            vs_currency=vs_currency,
            order="market_cap_desc",
            per_page=per_page,
            page=page,
            sparkline="false",
        )
        return data if isinstance(data, list) else []

    async def global_market(self) -> dict[str, Any]:
        data = await self._get("/global")
        if not isinstance(data, dict):
            return {}
        return data.get("data") or {}
