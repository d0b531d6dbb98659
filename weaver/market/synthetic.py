"""Synthetic candle generation — extends a finite history with plausible bars.

Used by the replay controller once the loaded history is exhausted.  The
walk is momentum-aware: a bounded random direction is blended with the
trend of the trailing window so generated bars look like a continuation
of the market rather than white noise.  Not a statistical model.
"""

from typing import Optional

import numpy as np

from weaver.market.models import Candle

WINDOW_SIZE = 20
TREND_WEIGHT = 0.3
MAX_GAP_FRACTION = 0.1
MAX_WICK_FRACTION = 0.5


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Return a random generator; seeded when *seed* is given."""
    return np.random.default_rng(seed)


def window_stats(history: list[Candle]) -> tuple[float, float, float]:
    """Return ``(avg_range, avg_volume, trend_bias)`` of the trailing window.

    ``trend_bias`` is the close-to-close change over the window divided by
    ``avg_range × len(window)``, clipped to ``[-1, 1]``.
    """
    window = history[-WINDOW_SIZE:]
    avg_range = sum(c.high - c.low for c in window) / len(window)
    avg_volume = sum(c.volume for c in window) / len(window)

    if avg_range > 0:
        change = window[-1].close - window[0].close
        trend_bias = change / (avg_range * len(window))
        trend_bias = max(-1.0, min(1.0, trend_bias))
    else:
        trend_bias = 0.0
    return avg_range, avg_volume, trend_bias


def generate_next_candle(
    history: list[Candle],
    timeframe_seconds: int,
    rng: Optional[np.random.Generator] = None,
) -> Candle:
    """Generate the bar that follows ``history[-1]``.

    Only past bars are read, so feeding generated bars back into
    *history* yields an indefinite series.  Pass a seeded *rng* for
    reproducible output.

    Raises ``ValueError`` when *history* is empty.
    """
    if not history:
        raise ValueError("Cannot generate a candle without history")
    if rng is None:
        rng = make_rng()

    prev = history[-1]
    avg_range, avg_volume, trend_bias = window_stats(history)

    direction = rng.uniform(-1.0, 1.0) + trend_bias * TREND_WEIGHT
    gap = rng.uniform(-1.0, 1.0) * MAX_GAP_FRACTION * avg_range
    magnitude = rng.uniform(0.3, 1.0)

    open_ = prev.close + gap
    close = open_ + direction * avg_range * magnitude

    upper_wick = rng.uniform(0.0, MAX_WICK_FRACTION) * avg_range
    lower_wick = rng.uniform(0.0, MAX_WICK_FRACTION) * avg_range
    high = max(open_, close) + upper_wick
    low = min(open_, close) - lower_wick

    volume = avg_volume * rng.uniform(0.5, 1.5)

    return Candle(
        time=prev.time + timeframe_seconds,
        open=float(open_),
        high=float(high),
        low=float(low),
        close=float(close),
        volume=float(volume),
    )


def extend_history(
    history: list[Candle],
    count: int,
    timeframe_seconds: int,
    rng: Optional[np.random.Generator] = None,
) -> list[Candle]:
    """Generate *count* consecutive synthetic bars after *history*.

    Returns only the new bars; *history* is not modified.
    """
    if rng is None:
        rng = make_rng()
    series = list(history)
    generated: list[Candle] = []
    for _ in range(count):
        candle = generate_next_candle(series, timeframe_seconds, rng)
        series.append(candle)
        generated.append(candle)
    return generated
