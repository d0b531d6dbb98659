"""Candle aggregation — rolls base-resolution bars up to coarser timeframes.

Pure functions, no I/O.
"""

from weaver.market.models import AGGREGATION_MULTIPLIERS, Candle, Timeframe


def aggregation_multiplier(timeframe: "Timeframe | str") -> int:
    """Number of base candles that make up one *timeframe* candle."""
    return AGGREGATION_MULTIPLIERS[Timeframe.parse(timeframe)]


def aggregate_candles(
    candles: list[Candle],
    timeframe: "Timeframe | str",
) -> list[Candle]:
    """Aggregate ascending base *candles* into *timeframe* candles.

    The series is cut into consecutive chunks of ``N`` bars in index order
    (``N`` from :func:`aggregation_multiplier`); the last chunk may be
    shorter.  Each chunk becomes one candle:

        time/open = first bar, close = last bar,
        high = max(high), low = min(low), volume = sum(volume)

    When ``N == 1`` the input list itself is returned.
    """
    multiplier = aggregation_multiplier(timeframe)
    return aggregate_by(candles, multiplier)


def aggregate_by(candles: list[Candle], multiplier: int) -> list[Candle]:
    """Chunk *candles* into groups of *multiplier* bars (see above)."""
    if multiplier < 1:
        raise ValueError(f"multiplier must be >= 1, got {multiplier}")
    if multiplier == 1 or not candles:
        return candles

    aggregated: list[Candle] = []
    for start in range(0, len(candles), multiplier):
        chunk = candles[start : start + multiplier]
        aggregated.append(
            Candle(
                time=chunk[0].time,
                open=chunk[0].open,
                high=max(c.high for c in chunk),
                low=min(c.low for c in chunk),
                close=chunk[-1].close,
                volume=sum(c.volume for c in chunk),
            )
        )
    return aggregated
