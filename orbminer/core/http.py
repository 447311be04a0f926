from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from orbminer.core.exceptions import (
    CircuitBreakerOpen,
    TransientNetworkError,
    UpstreamBadResponse,
    UpstreamRateLimited,
)
from orbminer.core.request_spec import JsonRpcSpec, RequestSpec

logger = logging.getLogger(__name__)


class TokenBucket:
    def __init__(self, rate_per_sec: float, capacity: Optional[float] = None) -> None:
        self.rate_per_sec = max(rate_per_sec, 0.1)
        self.capacity = capacity or self.rate_per_sec
        self.tokens = self.capacity
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self, amount: float = 1.0) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                self.tokens = min(self.capacity, self.tokens + (now - self.last_refill) * self.rate_per_sec)
                self.last_refill = now
                if self.tokens >= amount:
                    self.tokens -= amount
                    return
                wait_time = (amount - self.tokens) / self.rate_per_sec
            await asyncio.sleep(wait_time)


class CircuitBreaker:
    def __init__(self, failure_threshold: int = 5, cooldown_sec: float = 30.0) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_sec = max(1.0, cooldown_sec)
        self.failures = 0
        self.open_until = 0.0

    def allow(self) -> bool:
        return not (self.open_until and time.monotonic() < self.open_until)

    def record_success(self) -> None:
        self.failures = 0
        self.open_until = 0.0

    def record_failure(self) -> None:
        self.failures += 1
        if self.failures >= self.failure_threshold:
            self.open_until = time.monotonic() + self.cooldown_sec
            self.failures = 0


def backoff_delay(attempt: int, base: float, ceiling: float) -> float:
    return min(ceiling, base * (2**attempt))


class HttpClient:
    label = "HTTP"

    def __init__(
        self,
        timeout: float = 10.0,
        rps: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        async_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = max(0.0, backoff_base)
        self.backoff_max = max(backoff_max, self.backoff_base)
        self._client = async_client
        self._owns_client = async_client is None
        self._rate_limiter = TokenBucket(rate_per_sec=rps)
        self._circuit_breaker = CircuitBreaker()

    async def __aenter__(self) -> "HttpClient":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _classify(self, resp: httpx.Response) -> Optional[Exception]:
        """Map a non-success status to the error it represents; None means the body is usable."""
        if resp.status_code == 429:
            return UpstreamRateLimited(f"{self.label} rate limited", status_code=resp.status_code)
        if resp.status_code >= 500:
            return TransientNetworkError(f"{self.label} upstream error", status_code=resp.status_code)
        if resp.status_code >= 400:
            return UpstreamBadResponse(f"{self.label} request rejected", status_code=resp.status_code)
        return None

    async def _send(self, spec: RequestSpec) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        await self._rate_limiter.acquire()
        return await self._client.request(
            spec.method,
            spec.build_url(include_query=False),
            params=spec.query,
            headers=spec.headers,
            json=spec.json,
        )

    async def request(self, spec: RequestSpec | JsonRpcSpec) -> Any:
        if not self._circuit_breaker.allow():
            raise CircuitBreakerOpen(f"{self.label} circuit breaker is open")

        request_spec = spec.to_request_spec() if isinstance(spec, JsonRpcSpec) else spec
        error: Exception = TransientNetworkError(f"{self.label} request failed without a response")
        for attempt in range(self.max_retries + 1):
            retry_after: Optional[str] = None
            try:
                resp = await self._send(request_spec)
            except httpx.HTTPError as exc:
                error = TransientNetworkError(f"{self.label} transport error: {exc}")
                error.__cause__ = exc
            else:
                classified = self._classify(resp)
                if classified is None:
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise UpstreamBadResponse(f"{self.label} returned invalid JSON") from exc
                    self._circuit_breaker.record_success()
                    return payload
                if isinstance(classified, UpstreamBadResponse):
                    raise classified
                error = classified
                retry_after = resp.headers.get("Retry-After")

            self._circuit_breaker.record_failure()
            logger.debug("%s %s failed on attempt %d: %s", self.label, request_spec.path, attempt + 1, error)
            if attempt < self.max_retries:
                await asyncio.sleep(self._retry_delay(attempt, retry_after))
        raise error

    def _retry_delay(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                logger.debug("%s ignoring non-numeric Retry-After %r", self.label, retry_after)
        return backoff_delay(attempt, self.backoff_base, self.backoff_max)


__all__ = ["CircuitBreaker", "HttpClient", "TokenBucket", "backoff_delay"]
