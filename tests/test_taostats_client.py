"""Tests for the retrying Taostats/CoinGecko HTTP clients."""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from tao_dashboard.services.taostats_client import (
    CoinGeckoClient,
    JsonHttpClient,
    ResponseCache,
    RetryConfig,
    TaostatsClient,
    TaostatsError,
    calculate_delay,
    parse_retry_after,
)

BASE = "https://api.test"
NO_WAIT = RetryConfig(base_delay=0, jitter=0)


def _scripted(responses):
    """MockTransport that replays `responses` in order and records requests."""
    calls = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.MockTransport(handler), calls


# ---------------------------------------------------------------------------
# 1. Backoff helpers
# ---------------------------------------------------------------------------

class TestBackoff:
    def test_exponential_and_capped(self):
        config = RetryConfig(jitter=0)
        assert calculate_delay(0, config) == pytest.approx(0.75)
        assert calculate_delay(2, config) == pytest.approx(3.0)
        assert calculate_delay(10, config) == pytest.approx(20.0)

    def test_jitter_bounded(self):
        config = RetryConfig(base_delay=1.0, jitter=0.25)
        for _ in range(20):
            assert 1.0 <= calculate_delay(0, config) <= 1.25

    def test_retry_after_seconds(self):
        assert parse_retry_after("3") == 3.0
        assert parse_retry_after("0") == 0.0

    def test_retry_after_http_date(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert parse_retry_after("Thu, 01 Jan 2026 00:00:30 GMT", now=now) == pytest.approx(30.0)

    def test_retry_after_past_date_is_zero(self):
        now = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert parse_retry_after("Thu, 01 Jan 2026 00:00:30 GMT", now=now) == 0.0

    def test_retry_after_invalid(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("-5") is None
        assert parse_retry_after("soon") is None


# ---------------------------------------------------------------------------
# 2. Retry loop
# ---------------------------------------------------------------------------

class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self):
        transport, calls = _scripted([httpx.Response(503), httpx.Response(200, json={"ok": 1})])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            assert await client.get_json("/x") == {"ok": 1}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_honours_retry_after_on_429(self):
        transport, calls = _scripted([
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json=[1]),
        ])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            assert await client.get_json("/x") == [1]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        transport, calls = _scripted([httpx.Response(404, text="nope")])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            with pytest.raises(TaostatsError, match="HTTP 404"):
                await client.get_json("/x")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhausts_retries(self):
        transport, calls = _scripted([httpx.Response(502)])
        retry = RetryConfig(max_retries=2, base_delay=0, jitter=0)
        async with JsonHttpClient(BASE, retry=retry, transport=transport) as client:
            with pytest.raises(TaostatsError, match="HTTP 502"):
                await client.get_json("/x")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        transport, calls = _scripted([httpx.ConnectError("boom"), httpx.Response(200, json={})])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            assert await client.get_json("/x") == {}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error_exhausted(self):
        transport, _ = _scripted([httpx.ConnectError("boom")])
        retry = RetryConfig(max_retries=1, base_delay=0, jitter=0)
        async with JsonHttpClient(BASE, retry=retry, transport=transport) as client:
            with pytest.raises(TaostatsError, match="failed"):
                await client.get_json("/x")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        transport, _ = _scripted([httpx.Response(200, text="<html>")])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            with pytest.raises(TaostatsError, match="Non-JSON"):
                await client.get_json("/x")


# ---------------------------------------------------------------------------
# 3. Cache and params
# ---------------------------------------------------------------------------

class TestCache:
    @pytest.mark.asyncio
    async def test_same_url_fetched_once(self):
        transport, calls = _scripted([httpx.Response(200, json={"n": 1})])
        cache = ResponseCache()
        async with JsonHttpClient(BASE, retry=NO_WAIT, cache=cache, transport=transport) as client:
            await client.get_json("/x", {"netuid": 1})
            await client.get_json("/x", {"netuid": 1})
            await client.get_json("/x", {"netuid": 2})
        assert len(calls) == 2
        assert cache.hits == 1
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_empty_params_dropped(self):
        transport, calls = _scripted([httpx.Response(200, json={})])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            await client.get_json("/x", {"a": "1", "b": None, "c": ""})
        assert dict(calls[0].url.params) == {"a": "1"}

    @pytest.mark.asyncio
    async def test_errors_not_cached(self):
        transport, calls = _scripted([httpx.Response(404), httpx.Response(200, json={})])
        async with JsonHttpClient(BASE, retry=NO_WAIT, transport=transport) as client:
            with pytest.raises(TaostatsError):
                await client.get_json("/x")
            assert await client.get_json("/x") == {}
        assert len(calls) == 2


# ---------------------------------------------------------------------------
# 4. Taostats and CoinGecko specifics
# ---------------------------------------------------------------------------

class TestTaostatsClient:
    @pytest.mark.asyncio
    async def test_auth_headers(self):
        transport, calls = _scripted([httpx.Response(200, json={})])
        async with TaostatsClient(api_key="k", base_url=BASE, retry=NO_WAIT, transport=transport) as client:
            assert client.has_key is True
            await client.get_json("/api/x")
        assert calls[0].headers["Authorization"] == "k"
        assert calls[0].headers["x-api-key"] == "k"
        assert str(calls[0].url) == f"{BASE}/api/x"

    @pytest.mark.asyncio
    async def test_without_key(self):
        transport, calls = _scripted([httpx.Response(200, json={})])
        async with TaostatsClient(api_key="", base_url=BASE, retry=NO_WAIT, transport=transport) as client:
            assert client.has_key is False
            await client.get_json("/api/x")
        assert "x-api-key" not in calls[0].headers

    @pytest.mark.asyncio
    async def test_get_first_ok_falls_through(self):
        transport, calls = _scripted([httpx.Response(400), httpx.Response(200, json={"data": []})])
        async with TaostatsClient(api_key="k", base_url=BASE, retry=NO_WAIT, transport=transport) as client:
            out = await client.get_first_ok("/api/a", [{"address": "x"}, {"coldkey": "x"}])
        assert out == {"data": []}
        assert calls[1].url.params["coldkey"] == "x"

    @pytest.mark.asyncio
    async def test_get_first_ok_all_fail(self):
        transport, _ = _scripted([httpx.Response(400)])
        async with TaostatsClient(api_key="k", base_url=BASE, retry=NO_WAIT, transport=transport) as client:
            with pytest.raises(TaostatsError):
                await client.get_first_ok("/api/a", [{"address": "x"}, {"coldkey": "x"}])


class TestCoinGecko:
    PRICE_URL = "https://cg.test/simple/price?ids=bittensor&vs_currencies=usd"

    @pytest.mark.asyncio
    async def test_price(self):
        transport, calls = _scripted([httpx.Response(200, json={"bittensor": {"usd": 412.5}})])
        async with CoinGeckoClient(price_url=self.PRICE_URL, retry=NO_WAIT, transport=transport) as client:
            assert await client.tao_usd() == Decimal("412.5")
        assert calls[0].url.params["ids"] == "bittensor"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"bittensor": "x"}, {"bittensor": {"usd": 0}}, []])
    async def test_missing_price(self, payload):
        transport, _ = _scripted([httpx.Response(200, json=payload)])
        async with CoinGeckoClient(price_url=self.PRICE_URL, retry=NO_WAIT, transport=transport) as client:
            assert await client.tao_usd() is None

    @pytest.mark.asyncio
    async def test_http_failure_returns_none(self):
        transport, _ = _scripted([httpx.Response(403)])
        async with CoinGeckoClient(price_url=self.PRICE_URL, retry=NO_WAIT, transport=transport) as client:
            assert await client.tao_usd() is None
