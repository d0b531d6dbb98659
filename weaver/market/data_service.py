"""Market data service — picks between the remote feed and the local file.

The local CSV is the guaranteed source and is parsed once.  The remote
feed is optional and guarded against rate limits: at most one call every
30 seconds unless forced, and a 60 second cool-down after the provider
reports rate limiting.  Every remote failure degrades to local data with
a status message; nothing here is fatal.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from weaver.market.csv_source import load_csv_candles
from weaver.market.models import REMOTE_TIMESPANS, Candle, Timeframe
from weaver.market.polygon_client import FetchRequest, PolygonClient

logger = logging.getLogger("weaver.market")

MIN_CALL_INTERVAL_SECONDS = 30.0
RATE_LIMIT_COOLDOWN_SECONDS = 60.0
STALE_AFTER_SECONDS = 6 * 60 * 60


@dataclass(frozen=True)
class DataStatus:
    """What the presentation layer needs to know about the current feed."""

    source: str = "csv"  # "polygon" or "csv"
    error: Optional[str] = None
    rate_limited: bool = False
    updated_at: Optional[float] = None
    last_candle_time: Optional[int] = None

    def age_seconds(self, now: float) -> Optional[int]:
        """Seconds since the newest live candle, or ``None``."""
        if self.last_candle_time is None:
            return None
        return max(0, int(now - self.last_candle_time))

    def is_stale(self, now: float) -> bool:
        """``True`` when the newest candle is more than 6 hours old."""
        age = self.age_seconds(now)
        return age is not None and age > STALE_AFTER_SECONDS

    def to_dict(self, now: float) -> dict:
        return {
            "source": self.source,
            "error": self.error,
            "rate_limited": self.rate_limited,
            "updated_at": self.updated_at,
            "last_candle_time": self.last_candle_time,
            "age_seconds": self.age_seconds(now),
            "is_stale": self.is_stale(now),
        }


def split_pair(pair: str) -> tuple[str, str]:
    """``"EUR/USD"`` → ``("EUR", "USD")``.

    Surrounding whitespace is dropped.  Raises ``ValueError`` when *pair*
    has no ``/`` separator or an empty side.
    """
    base, sep, quote = pair.partition("/")
    base, quote = base.strip(), quote.strip()
    if not sep or not base or not quote:
        raise ValueError(f"Invalid pair: {pair!r}")
    return base.upper(), quote.upper()


class MarketDataService:
    """Supplies historical candles for replay and live candles for idle view.

    Args:
        csv_path: Local candle file.
        client: Remote client, or ``None`` to run from the file only.
        clock: Wall-clock source in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        csv_path: str,
        client: Optional[PolygonClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._csv_path = csv_path
        self._client = client
        self._clock = clock
        self._local: Optional[list[Candle]] = None
        self._last_call_at: Optional[float] = None
        self._status = DataStatus()

    @property
    def status(self) -> DataStatus:
        return self._status

    def now(self) -> float:
        return self._clock()

    # ── Local file ───────────────────────────────────────────────────────

    def load_local(self) -> list[Candle]:
        """Return the local base-resolution candles, parsing on first use.

        A missing or unreadable file yields an empty list and an error
        status.
        """
        if self._local is None:
            try:
                self._local = load_csv_candles(self._csv_path)
            except (OSError, ValueError) as exc:
                logger.error("Failed to load local candles: %s", exc)
                self._status = replace(self._status, error=str(exc))
                return []
            if not self._local:
                self._status = replace(
                    self._status, error="CSV parse produced 0 candles"
                )
        return self._local

    # ── Remote feed ──────────────────────────────────────────────────────

    def _should_skip(self, force: bool) -> Optional[str]:
        if self._client is None:
            return "remote source disabled"
        if self._last_call_at is None:
            return None
        elapsed = self._clock() - self._last_call_at
        if self._status.rate_limited and elapsed < RATE_LIMIT_COOLDOWN_SECONDS:
            return "previously rate limited"
        if not force and elapsed < MIN_CALL_INTERVAL_SECONDS:
            return "rate limit protection"
        return None

    async def fetch_live(
        self,
        pair: str,
        timeframe: "Timeframe | str",
        force: bool = False,
    ) -> Optional[list[Candle]]:
        """Fetch live candles for *pair* at *timeframe*.

        Returns the candles on success, or ``None`` when the call was
        skipped by the guard, *pair* is malformed or the fetch failed
        (see :attr:`status`).
        """
        skip_reason = self._should_skip(force)
        if skip_reason is not None:
            logger.debug("Skipping remote fetch: %s", skip_reason)
            return None

        tf = Timeframe.parse(timeframe)
        try:
            base, quote = split_pair(pair)
        except ValueError as exc:
            self._status = replace(self._status, error=str(exc))
            return None
        multiplier, timespan = REMOTE_TIMESPANS[tf]
        self._last_call_at = self._clock()

        result = await self._client.fetch_candles(  # type: ignore[union-attr]
            FetchRequest(
                base_asset=base,
                quote_asset=quote,
                multiplier=multiplier,
                timespan=timespan,
            )
        )

        if result.rate_limited:
            self._status = replace(
                self._status,
                rate_limited=True,
                error="API rate limited - using CSV data",
            )
            return None
        if not result.ok:
            self._status = replace(self._status, rate_limited=False, error=result.error)
            return None
        if not result.candles:
            self._status = replace(
                self._status,
                rate_limited=False,
                error="No data returned from remote API",
            )
            return None

        self._status = DataStatus(
            source="polygon",
            error=None,
            rate_limited=False,
            updated_at=self._clock(),
            last_candle_time=result.candles[-1].time,
        )
        return result.candles

    def mark_local_fallback(self, candles: list[Candle]) -> None:
        """Record that the idle view is showing local data."""
        self._status = replace(
            self._status,
            source="csv",
            updated_at=self._clock(),
            last_candle_time=candles[-1].time if candles else None,
        )
