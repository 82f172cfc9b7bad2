from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import QUOTA_STATUSES, QuotaExceeded, UpstreamUnavailable

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})


@dataclass
class CircuitState:
    failures: int = 0
    open_until: float = 0.0


class ResilientHTTPClient:
    def __init__(
        self,
        timeout: float = 10.0,
        retries: int = 0,
        backoff_base: float = 0.4,
        breaker_threshold: int = 4,
        breaker_cooldown: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.retries = retries
        self.backoff_base = backoff_base
        self.breaker_threshold = breaker_threshold
        self.breaker_cooldown = breaker_cooldown
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._state: dict[str, CircuitState] = {}

    async def close(self) -> None:
        await self._client.aclose()

    def _is_open(self, host: str) -> bool:
        state = self._state.setdefault(host, CircuitState())
        return state.open_until > time.time()

    def _record_failure(self, host: str) -> None:
        state = self._state.setdefault(host, CircuitState())
        state.failures += 1
        if state.failures >= self.breaker_threshold:
            state.open_until = time.time() + self.breaker_cooldown

    def _record_success(self, host: str) -> None:
        self._state[host] = CircuitState()

    def _classify(self, response: httpx.Response, provider: str) -> None:
        status = response.status_code
        if status in QUOTA_STATUSES:
            raise QuotaExceeded(f"{provider} refused request ({status})", provider=provider, status=status)
        if status >= 400:
            raise UpstreamUnavailable(f"{provider} returned {status}", provider=provider, status=status)

    async def _request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        provider: str | None = None,
    ) -> Any:
        host = httpx.URL(url).host or "unknown"
        provider = provider or host
        if self._is_open(host):
            raise UpstreamUnavailable(f"Circuit open for {host}", provider=provider)

        last_error: UpstreamUnavailable | None = None
        for attempt in range(self.retries + 1):
            started = time.perf_counter()
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    headers=headers,
                    timeout=timeout if timeout is not None else self.timeout,
                )
                self._classify(response, provider)
                payload = response.json()
                self._record_success(host)
                logger.debug(
                    "upstream_ok",
                    extra={
                        "event": "upstream_ok",
                        "provider": provider,
                        "latency_ms": round((time.perf_counter() - started) * 1000, 1),
                    },
                )
                return payload
            except QuotaExceeded:
                self._record_failure(host)
                raise
            except UpstreamUnavailable as exc:
                last_error = exc
                if exc.status is not None and exc.status not in TRANSIENT_STATUSES:
                    # 4xx other than quota: the request itself is wrong, not the host.
                    raise
            except httpx.TimeoutException as exc:
                last_error = UpstreamUnavailable(f"{provider} timed out: {exc}", provider=provider)
            except httpx.HTTPError as exc:
                last_error = UpstreamUnavailable(f"{provider} transport error: {exc}", provider=provider)
            except ValueError as exc:
                last_error = UpstreamUnavailable(f"{provider} sent malformed JSON: {exc}", provider=provider)

            self._record_failure(host)
            if attempt >= self.retries:
                break
            await asyncio.sleep(self.backoff_base * (2**attempt))

        assert last_error is not None
        raise last_error

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        provider: str | None = None,
    ) -> Any:
        return await self._request_json(
            "GET", url, params=params, headers=headers, timeout=timeout, provider=provider
        )
