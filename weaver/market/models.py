"""Market data models — candles and timeframe metadata."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  ``time`` is the bar open in UTC epoch seconds."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


class Timeframe(str, Enum):
    """Chart resolutions offered to the user."""

    M1 = "1M"
    M5 = "5M"
    M15 = "15M"
    H1 = "1H"
    H4 = "4H"
    D1 = "1D"
    W1 = "1W"
    MO1 = "1MO"

    @classmethod
    def parse(cls, value: "str | Timeframe") -> "Timeframe":
        """Return the ``Timeframe`` for *value*.

        Raises ``ValueError`` for an unknown label.
        """
        if isinstance(value, Timeframe):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown timeframe: {value!r}") from None

    @property
    def seconds(self) -> int:
        """Nominal bar duration in seconds."""
        return TIMEFRAME_SECONDS[self]


# ── Timeframe tables ─────────────────────────────────────────────────────

# Local file data is hourly; coarser frames are rolled up from it.
BASE_TIMEFRAME = Timeframe.H1

TIMEFRAME_SECONDS: dict[Timeframe, int] = {
    Timeframe.M1: 60,
    Timeframe.M5: 5 * 60,
    Timeframe.M15: 15 * 60,
    Timeframe.H1: 3600,
    Timeframe.H4: 4 * 3600,
    Timeframe.D1: 24 * 3600,
    Timeframe.W1: 7 * 24 * 3600,
    Timeframe.MO1: 30 * 24 * 3600,
}

# Sub-hour frames cannot be built from hourly data, so they pass through.
AGGREGATION_MULTIPLIERS: dict[Timeframe, int] = {
    Timeframe.M1: 1,
    Timeframe.M5: 1,
    Timeframe.M15: 1,
    Timeframe.H1: 1,
    Timeframe.H4: 4,
    Timeframe.D1: 24,
    Timeframe.W1: 168,
    Timeframe.MO1: 720,
}

# (multiplier, timespan) pairs understood by the remote aggregates API.
REMOTE_TIMESPANS: dict[Timeframe, tuple[int, str]] = {
    Timeframe.M1: (1, "minute"),
    Timeframe.M5: (5, "minute"),
    Timeframe.M15: (15, "minute"),
    Timeframe.H1: (1, "hour"),
    Timeframe.H4: (4, "hour"),
    Timeframe.D1: (1, "day"),
    Timeframe.W1: (1, "week"),
    Timeframe.MO1: (1, "month"),
}

SUPPORTED_PAIRS: tuple[str, ...] = (
    "EUR/USD",
    "GBP/USD",
    "USD/JPY",
    "AUD/USD",
    "USD/CAD",
    "BTC/USD",
    "ETH/USD",
)
