"""
Bybit REST client for the two one-shot lookups the pipeline needs:
historical klines for backfill and the session open price.

Both public helpers swallow failures (logged) and return empty results, so a
REST outage never stops the live stream.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .market import Candle
from .utils.retry import RetryError, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================


class BybitAPIError(Exception):
    """Base exception for Bybit API errors."""

    def __init__(self, status_code: int, message: str, ret_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message
        self.ret_code = ret_code
        super().__init__(f"Bybit API error {status_code}: {message}")


class BybitRateLimitError(BybitAPIError):
    """HTTP 429, or retCode 10006."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(429, "Rate limit exceeded")


class BybitTimeoutError(BybitAPIError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(0, f"Request timed out after {timeout}s")


class BybitConnectionError(BybitAPIError):
    def __init__(self, original_error: Exception):
        self.original_error = original_error
        super().__init__(0, f"Connection error: {original_error}")


RETRYABLE_ERRORS = (BybitRateLimitError, BybitTimeoutError, BybitConnectionError)

RATE_LIMIT_RET_CODE = 10006


@dataclass
class RequestConfig:
    """Configuration for HTTP requests."""

    base_url: str = "https://api.bybit.com"
    category: str = "linear"
    timeout_total: float = 15.0
    timeout_connect: float = 5.0
    retry: RetryPolicy = RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=5.0)
    retry_on_status: tuple = (500, 502, 503, 504)


def parse_kline_rows(rows: Any) -> List[Candle]:
    """
    Parse ``[start, open, high, low, close, volume, turnover]`` rows.

    Rows with a missing or non-numeric close are dropped. Result is sorted
    oldest first (the API returns newest first).
    """
    candles = []
    for row in rows if isinstance(rows, list) else []:
        try:
            candle = Candle(
                time=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]) if len(row) > 5 else 0.0,
            )
        except (IndexError, TypeError, ValueError):
            continue
        if math.isnan(candle.close):
            continue
        candles.append(candle)
    candles.sort(key=lambda c: c.time)
    return candles


class BybitRestClient:
    """
    Async client for Bybit v5 market endpoints.

    Usage:
        async with BybitRestClient() as client:
            candles = await client.fetch_historical("BTCUSDT", "1", start_ms, end_ms)
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        request_config: Optional[RequestConfig] = None,
    ):
        self._session = session
        self._owns_session = session is None
        self._config = request_config or RequestConfig()

    async def __aenter__(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                total=self._config.timeout_total, connect=self._config.timeout_connect
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _request_once(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._config.base_url}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            async with self._session.get(url, params=params) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise BybitRateLimitError(float(retry_after) if retry_after else None)
                if response.status in self._config.retry_on_status:
                    raise BybitConnectionError(
                        RuntimeError(f"HTTP {response.status}: {await response.text()}")
                    )
                if response.status != 200:
                    raise BybitAPIError(response.status, await response.text())
                payload = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise BybitTimeoutError(self._config.timeout_total)
        except aiohttp.ClientError as e:
            raise BybitConnectionError(e)

        if not isinstance(payload, dict):
            raise BybitAPIError(200, "unexpected response body")
        ret_code = payload.get("retCode")
        if ret_code == RATE_LIMIT_RET_CODE:
            raise BybitRateLimitError()
        if ret_code != 0:
            raise BybitAPIError(200, str(payload.get("retMsg") or "API error"), ret_code)
        return payload.get("result") or {}

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET with retries on rate limits, timeouts and connection errors.

        Raises:
            BybitAPIError: for non-retryable errors
            RetryError: when retries are exhausted
        """
        if self._session is None:
            raise RuntimeError("Session not initialized. Use 'async with BybitRestClient()'.")
        return await call_with_retry(
            lambda: self._request_once(path, params),
            policy=self._config.retry,
            exceptions=RETRYABLE_ERRORS,
            description=f"GET {path}",
        )

    async def get_klines(
        self,
        symbol: str,
        interval: str,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        limit: int = 1000,
    ) -> List[Candle]:
        """Kline rows for ``symbol``. Raises on failure."""
        params: Dict[str, Any] = {
            "category": self._config.category,
            "symbol": symbol,
            "interval": interval,
            "limit": min(limit, 1000),
        }
        if start_ms is not None:
            params["start"] = start_ms
        if end_ms is not None:
            params["end"] = end_ms
        result = await self._get("/v5/market/kline", params)
        return parse_kline_rows(result.get("list"))

    async def fetch_historical(
        self, symbol: str, interval: str, start_ms: int, end_ms: int
    ) -> List[Candle]:
        """Historical candles, oldest first. Any failure yields an empty list."""
        try:
            return await self.get_klines(symbol, interval, start_ms, end_ms)
        except (BybitAPIError, RetryError, RuntimeError) as e:
            logger.warning(f"Historical fetch failed for {symbol}: {e}")
            return []

    async def fetch_open_price(self, symbol: str, start_ms: int) -> Optional[float]:
        """Open of the first 1m candle at or after ``start_ms``, or None."""
        try:
            candles = await self.get_klines(symbol, "1", start_ms=start_ms, limit=1)
        except (BybitAPIError, RetryError, RuntimeError) as e:
            logger.warning(f"Market open fetch failed for {symbol}: {e}")
            return None
        if not candles or not candles[0].open > 0:
            return None
        return candles[0].open
