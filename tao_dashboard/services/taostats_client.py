"""HTTP clients for Taostats and CoinGecko.

Both share one retrying JSON client: exponential backoff with jitter on
transport errors and 429/5xx, Retry-After honoured when the server sends it.
Responses are memoized in a ResponseCache owned by the caller, so one snapshot
cycle never fetches the same URL twice and nothing leaks between cycles.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from decimal import Decimal
from email.utils import parsedate_to_datetime
from typing import Any, Iterable

import httpx

from tao_dashboard.config import settings
from tao_dashboard.services.numeric import to_decimal

logger = logging.getLogger(__name__)


class TaostatsError(Exception):
    """Raised when an upstream request fails after retries or returns a non-JSON body."""


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_retries: int = 6,
        base_delay: float = 0.75,
        max_delay: float = 20.0,
        jitter: float = 0.25,
        retryable_status_codes: tuple[int, ...] = (429, 500, 502, 503, 504),
    ):
        self.max_retries = max_retries  # retries after the first attempt
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_status_codes = retryable_status_codes


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff capped at max_delay, plus up to `jitter` seconds."""
    delay = min(config.max_delay, config.base_delay * (2 ** attempt))
    if config.jitter > 0:
        delay += random.uniform(0, config.jitter)
    return delay


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if value is None or not value.strip():
        return None
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class ResponseCache:
    """URL -> decoded JSON memo for a single ingestion run."""

    def __init__(self):
        self._entries: dict[str, Any] = {}
        self.hits = 0

    def get(self, key: str) -> Any:
        if key in self._entries:
            self.hits += 1
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class JsonHttpClient:
    """Async JSON GET client with retry and a shared response cache."""

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        retry: RetryConfig | None = None,
        cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.retry = retry or RetryConfig()
        self.cache = cache if cache is not None else ResponseCache()
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        await self._client.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(self, url: str, params: dict | None) -> httpx.Response:
        attempts = self.retry.max_retries + 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = await self._client.get(url, params=params, headers=self.headers)
            except httpx.TransportError as e:
                if last_attempt:
                    raise TaostatsError(f"Request to {url} failed: {e}") from e
                delay = calculate_delay(attempt, self.retry)
                logger.warning(
                    f"[HTTP] {type(e).__name__} on {url}, retry {attempt + 1}/{self.retry.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code not in self.retry.retryable_status_codes or last_attempt:
                return response

            delay = parse_retry_after(response.headers.get("Retry-After"))
            if delay is None:
                delay = calculate_delay(attempt, self.retry)
            logger.warning(
                f"[HTTP] {response.status_code} from {url}, retry {attempt + 1}/{self.retry.max_retries} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

        raise TaostatsError(f"Request to {url} exhausted retries")

    async def get_json(self, path: str, params: dict | None = None) -> Any:
        url = self._url(path)
        clean = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        key = str(httpx.URL(url).copy_merge_params(clean))

        if key in self.cache:
            return self.cache.get(key)

        response = await self._send(url, clean)
        if response.is_error:
            body = response.text[:200]
            raise TaostatsError(f"HTTP {response.status_code} from {key}" + (f" :: {body}" if body else ""))

        try:
            data = response.json()
        except ValueError as e:
            raise TaostatsError(f"Non-JSON body from {key}") from e

        self.cache.set(key, data)
        return data


class TaostatsClient(JsonHttpClient):
    """Taostats REST API. The raw key goes in Authorization (no Bearer prefix)."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        **kwargs,
    ):
        api_key = api_key if api_key is not None else settings.taostats_api_key
        headers = {"Authorization": api_key, "x-api-key": api_key} if api_key else {}
        super().__init__(
            base_url=base_url or settings.taostats_base_url,
            headers=headers,
            **kwargs,
        )
        self.has_key = bool(api_key)

    async def get_first_ok(self, path: str, param_variants: Iterable[dict]) -> Any:
        """Try each query-parameter variant in turn; return the first success."""
        last_error: Exception | None = None
        for params in param_variants:
            try:
                return await self.get_json(path, params)
            except TaostatsError as e:
                last_error = e
                logger.debug(f"[Taostats] {path} failed with params {list(params)}: {e}")
        raise last_error or TaostatsError(f"No parameter variants given for {path}")


class CoinGeckoClient(JsonHttpClient):

    def __init__(self, price_url: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.price_url = price_url or settings.coingecko_price_url

    async def tao_usd(self) -> Decimal | None:
        """TAO/USD spot price, or None when unavailable. Never raises."""
        try:
            data = await self.get_json(self.price_url)
        except TaostatsError as e:
            logger.warning(f"[CoinGecko] TAO/USD price unavailable: {e}")
            return None

        entry = data.get("bittensor") if isinstance(data, dict) else None
        price = to_decimal(entry.get("usd")) if isinstance(entry, dict) else None
        if price is None or price <= 0:
            logger.warning("[CoinGecko] TAO/USD price missing from response")
            return None
        return price
