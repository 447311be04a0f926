import asyncio

import httpx
import pytest

from orbminer.chain.rpc import RpcHttpClient
from orbminer.core.exceptions import (
    CircuitBreakerOpen,
    TransientNetworkError,
    UpstreamBadResponse,
    UpstreamRateLimited,
)
from orbminer.core.http import backoff_delay
from orbminer.core.request_spec import RequestSpec
from orbminer.jupiter.provider import JupiterHttpClient


def _make_spec() -> RequestSpec:
    return RequestSpec(
        method="GET",
        base_url="https://example.com",
        path="/test",
        query={},
        headers={},
    )


async def _run_error_case(client_cls, status_code, exc_type):
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code))
    async with httpx.AsyncClient(transport=transport) as async_client:
        client = client_cls(async_client=async_client, max_retries=0)
        with pytest.raises(exc_type):
            await client.request(_make_spec())


def test_rpc_http_client_rate_limited():
    asyncio.run(_run_error_case(RpcHttpClient, 429, UpstreamRateLimited))


def test_rpc_http_client_upstream_error():
    asyncio.run(_run_error_case(RpcHttpClient, 500, TransientNetworkError))


def test_rpc_http_client_rejected_request():
    asyncio.run(_run_error_case(RpcHttpClient, 400, UpstreamBadResponse))


def test_jupiter_http_client_rate_limited():
    asyncio.run(_run_error_case(JupiterHttpClient, 429, UpstreamRateLimited))


def test_jupiter_http_client_upstream_error():
    asyncio.run(_run_error_case(JupiterHttpClient, 503, TransientNetworkError))


def test_transport_error_becomes_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as async_client:
            client = RpcHttpClient(async_client=async_client, max_retries=0)
            with pytest.raises(TransientNetworkError):
                await client.request(_make_spec())

    asyncio.run(_run())


def test_retry_then_success():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"ok": True})

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as async_client:
            client = RpcHttpClient(async_client=async_client, max_retries=1, backoff_base=0.0)
            return await client.request(_make_spec())

    assert asyncio.run(_run()) == {"ok": True}
    assert len(calls) == 2


def test_circuit_breaker_opens_after_repeated_failures():
    async def _run():
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as async_client:
            client = RpcHttpClient(async_client=async_client, max_retries=0, rps=100)
            for _ in range(5):
                with pytest.raises(TransientNetworkError):
                    await client.request(_make_spec())
            with pytest.raises(CircuitBreakerOpen):
                await client.request(_make_spec())

    asyncio.run(_run())


def test_backoff_is_capped():
    assert backoff_delay(0, 1.0, 30.0) == 1.0
    assert backoff_delay(3, 1.0, 30.0) == 8.0
    assert backoff_delay(10, 1.0, 30.0) == 30.0
