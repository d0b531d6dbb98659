"""Polygon.io forex aggregates async client.

Fetches OHLCV bars for a currency pair.  Rate limiting and transport
failures are reported in the returned ``FetchResult`` rather than raised,
so callers can fall back to local data.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx

from weaver.config import Config
from weaver.market.models import Candle

logger = logging.getLogger("weaver.market")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504}
_RATE_LIMIT_MARKER = "exceeded the maximum requests"
_DEFAULT_LOOKBACK_DAYS = 30


@dataclass(frozen=True)
class FetchRequest:
    """Parameters of one aggregates query."""

    base_asset: str
    quote_asset: str
    multiplier: int = 1
    timespan: str = "hour"
    start_date: Optional[str] = None  # YYYY-MM-DD
    end_date: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a remote fetch: candles, or a non-fatal error flag."""

    candles: list[Candle] = field(default_factory=list)
    rate_limited: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.rate_limited


class PolygonClient:
    """Async client for the Polygon v2 aggregates endpoint."""

    def __init__(self, config: Config) -> None:
        self._api_key = config.polygon_api_key
        self._base_url = config.polygon_base_url.rstrip("/")

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET *url* with exponential-backoff retry on 5xx and transport errors.

        429 is not retried; the caller reports it as rate limiting.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, params=params, timeout=30.0)

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Polygon GET %s returned %d, retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Polygon GET %s transport error (%s), retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Candle data ──────────────────────────────────────────────────────

    def build_url(self, request: FetchRequest, today: Optional[date] = None) -> str:
        """Return the aggregates URL for *request*.

        The range defaults to the 30 days ending *today* (UTC).
        """
        if today is None:
            today = datetime.now(timezone.utc).date()
        end = request.end_date or today.isoformat()
        start = request.start_date or (
            today - timedelta(days=_DEFAULT_LOOKBACK_DAYS)
        ).isoformat()
        ticker = f"C:{request.base_asset}{request.quote_asset}".upper()
        return (
            f"{self._base_url}/v2/aggs/ticker/{ticker}/range/"
            f"{request.multiplier}/{request.timespan}/{start}/{end}"
        )

    async def fetch_candles(self, request: FetchRequest) -> FetchResult:
        """Fetch bars for *request*, oldest first.

        Never raises for remote-side problems: HTTP errors, transport
        errors and error payloads come back as ``FetchResult.error``.
        """
        if not self._api_key:
            return FetchResult(error="POLYGON_API_KEY not configured")

        url = self.build_url(request)
        params = {
            "adjusted": "true",
            "sort": "asc",
            "limit": 5000,
            "apiKey": self._api_key,
        }

        try:
            resp = await self._get_with_retry(url, params)
        except httpx.HTTPError as exc:
            logger.warning("Polygon fetch failed: %s", exc)
            return FetchResult(error=f"Remote fetch failed: {exc}")

        try:
            data = resp.json()
        except ValueError:
            return FetchResult(
                error=f"Remote returned non-JSON response ({resp.status_code})"
            )

        if not isinstance(data, dict):
            return FetchResult(
                error=f"Remote returned unexpected payload ({resp.status_code})"
            )

        message = str(data.get("error") or data.get("message") or "")
        if resp.status_code == 429 or _RATE_LIMIT_MARKER in message:
            logger.warning("Polygon rate limit hit: %s", message or resp.status_code)
            return FetchResult(
                rate_limited=True,
                error=message or "Remote rate limit exceeded",
            )
        if resp.status_code >= 400 or data.get("status") == "ERROR":
            return FetchResult(
                error=message or f"Remote error ({resp.status_code})"
            )

        candles = parse_aggregates(data)
        logger.info(
            "Fetched %d candles for %s/%s",
            len(candles), request.base_asset, request.quote_asset,
        )
        return FetchResult(candles=candles)


def parse_aggregates(data: dict) -> list[Candle]:
    """Map an aggregates payload to ascending candles.

    Bars carry ``t`` in milliseconds.  Bars with a missing or zero time,
    a missing price or a non-numeric value are skipped; a missing ``v``
    becomes 0.
    """
    candles: list[Candle] = []
    skipped = 0
    results = data.get("results")
    for bar in results if isinstance(results, list) else []:
        try:
            t = int(bar.get("t") or 0) // 1000
            prices = [float(bar[k]) for k in ("o", "h", "l", "c")]
            volume = float(bar.get("v") or 0)
        except (AttributeError, KeyError, OverflowError, TypeError, ValueError):
            skipped += 1
            continue
        if t <= 0 or not all(math.isfinite(p) for p in prices):
            skipped += 1
            continue
        open_, high, low, close = prices
        candles.append(
            Candle(time=t, open=open_, high=high, low=low, close=close, volume=volume)
        )
    if skipped:
        logger.warning("Skipped %d malformed aggregate bars", skipped)
    candles.sort(key=lambda c: c.time)
    return candles
