"""Technical indicators — RSI, EMA, SMA, MACD, Bollinger, Stochastic, ATR, Volume.

Pure functions over an ascending candle list, no I/O.  Each returns only
the samples from its first valid bar onward, with ``time`` copied from
the source candle.  Too few candles is not an error: the result is an
empty list.  Every call recomputes from scratch, so identical input gives
identical output.
"""

import math

from weaver.indicators.models import (
    BollingerPoint,
    MACDPoint,
    StochasticPoint,
    ValuePoint,
    VolumePoint,
)
from weaver.market.models import Candle

# Display scale for forex price differences (1 pip = 0.0001).
PIP_SCALE = 10_000

DEFAULT_EMA_PERIODS = (9, 12, 20, 26, 50)
DEFAULT_SMA_PERIODS = (20, 50, 100, 200)


def _check_period(name: str, period: int) -> None:
    if period < 1:
        raise ValueError(f"{name} period must be >= 1, got {period}")


# ── Moving averages ──────────────────────────────────────────────────────


def ema_values(values: list[float], period: int) -> list[float]:
    """EMA over raw *values*; entries before ``period - 1`` are NaN.

    Seed is the SMA of the first *period* values; afterwards
        ``ema[i] = (x[i] - ema[i-1]) × k + ema[i-1]``,  ``k = 2 / (period + 1)``
    """
    _check_period("EMA", period)
    out = [float("nan")] * len(values)
    if len(values) < period:
        return out

    k = 2.0 / (period + 1)
    out[period - 1] = sum(values[:period]) / period
    for i in range(period, len(values)):
        out[i] = (values[i] - out[i - 1]) * k + out[i - 1]
    return out


def sma_values(values: list[float], period: int) -> list[float]:
    """Rolling mean of *values*; entries before ``period - 1`` are NaN."""
    _check_period("SMA", period)
    out = [float("nan")] * len(values)
    for i in range(period - 1, len(values)):
        window = values[i - period + 1 : i + 1]
        out[i] = sum(window) / period
    return out


def _to_points(candles: list[Candle], values: list[float], start: int) -> list[ValuePoint]:
    return [
        ValuePoint(time=candles[i].time, value=values[i])
        for i in range(start, len(candles))
    ]


def calculate_ema(candles: list[Candle], period: int) -> list[ValuePoint]:
    """EMA of closes, first sample at index ``period - 1``."""
    values = ema_values([c.close for c in candles], period)
    if len(candles) < period:
        return []
    return _to_points(candles, values, period - 1)


def calculate_sma(candles: list[Candle], period: int) -> list[ValuePoint]:
    """SMA of closes, first sample at index ``period - 1``."""
    values = sma_values([c.close for c in candles], period)
    if len(candles) < period:
        return []
    return _to_points(candles, values, period - 1)


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(candles: list[Candle], period: int = 14) -> list[ValuePoint]:
    """Relative Strength Index over a rolling *period*-bar window.

    For each bar ``i >= period`` the gains and losses of the *period*
    closes ending at ``i`` are averaged, then
        ``RS = avg_gain / avg_loss``,  ``RSI = 100 - 100 / (1 + RS)``
    A window without losses uses ``RS = 100`` instead of dividing by zero.
    """
    _check_period("RSI", period)
    if len(candles) < period + 1:
        return []

    closes = [c.close for c in candles]
    points: list[ValuePoint] = []
    for i in range(period, len(closes)):
        gains = 0.0
        losses = 0.0
        for j in range(i - period + 1, i + 1):
            change = closes[j] - closes[j - 1]
            if change > 0:
                gains += change
            else:
                losses -= change
        avg_gain = gains / period
        avg_loss = losses / period
        rs = 100.0 if avg_loss == 0 else avg_gain / avg_loss
        points.append(ValuePoint(time=candles[i].time, value=100.0 - 100.0 / (1.0 + rs)))
    return points


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    candles: list[Candle],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> list[MACDPoint]:
    """MACD line, signal line and histogram, scaled to pips.

    ``macd = EMA(fast) - EMA(slow)`` is valid from index ``slow - 1``;
    ``signal = EMA(signal)`` of the valid MACD values, so the first full
    sample is at index ``slow + signal - 2``.  All three outputs are
    multiplied by 10000.
    """
    for name, p in (("MACD fast", fast), ("MACD slow", slow), ("MACD signal", signal)):
        _check_period(name, p)
    if len(candles) < slow + signal - 1:
        return []

    closes = [c.close for c in candles]
    ema_fast = ema_values(closes, fast)
    ema_slow = ema_values(closes, slow)

    start = slow - 1
    macd_line = [ema_fast[i] - ema_slow[i] for i in range(start, len(closes))]
    signal_line = ema_values(macd_line, signal)

    points: list[MACDPoint] = []
    for offset in range(signal - 1, len(macd_line)):
        m = macd_line[offset]
        s = signal_line[offset]
        points.append(
            MACDPoint(
                time=candles[start + offset].time,
                macd=m * PIP_SCALE,
                signal=s * PIP_SCALE,
                histogram=(m - s) * PIP_SCALE,
            )
        )
    return points


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    candles: list[Candle],
    period: int = 20,
    std_dev: float = 2.0,
) -> list[BollingerPoint]:
    """Bollinger Bands: SMA(*period*) ± *std_dev* × population σ."""
    _check_period("Bollinger", period)
    if len(candles) < period:
        return []

    closes = [c.close for c in candles]
    points: list[BollingerPoint] = []
    for i in range(period - 1, len(closes)):
        window = closes[i - period + 1 : i + 1]
        middle = sum(window) / period
        variance = sum((x - middle) ** 2 for x in window) / period
        sigma = math.sqrt(variance)
        points.append(
            BollingerPoint(
                time=candles[i].time,
                upper=middle + std_dev * sigma,
                middle=middle,
                lower=middle - std_dev * sigma,
            )
        )
    return points


# ── Stochastic ───────────────────────────────────────────────────────────


def calculate_stochastic(
    candles: list[Candle],
    k_period: int = 14,
    d_period: int = 3,
) -> list[StochasticPoint]:
    """Stochastic oscillator %K / %D.

    ``%K = 100 × (close - lowest low) / (highest high - lowest low)`` over
    *k_period* bars, 50 when the window has no range.  ``%D`` is the
    *d_period* SMA of %K.  First sample at ``k_period + d_period - 2``.
    """
    _check_period("Stochastic %K", k_period)
    _check_period("Stochastic %D", d_period)
    if len(candles) < k_period + d_period - 1:
        return []

    k_values: list[float] = []
    for i in range(k_period - 1, len(candles)):
        window = candles[i - k_period + 1 : i + 1]
        highest = max(c.high for c in window)
        lowest = min(c.low for c in window)
        if highest != lowest:
            k_values.append((candles[i].close - lowest) / (highest - lowest) * 100.0)
        else:
            k_values.append(50.0)

    points: list[StochasticPoint] = []
    for i in range(d_period - 1, len(k_values)):
        d = sum(k_values[i - d_period + 1 : i + 1]) / d_period
        points.append(
            StochasticPoint(time=candles[k_period - 1 + i].time, k=k_values[i], d=d)
        )
    return points


# ── ATR ──────────────────────────────────────────────────────────────────


def true_ranges(candles: list[Candle]) -> list[float]:
    """True range of every bar after the first.

        TR = max(high - low, |high - prev_close|, |low - prev_close|)
    """
    out: list[float] = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        out.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return out


def calculate_atr(candles: list[Candle], period: int = 14) -> list[ValuePoint]:
    """Wilder's Average True Range in pips.

    Seed = mean of the first *period* true ranges (bar ``period``); then
        ``atr = (atr × (period - 1) + TR) / period``
    """
    _check_period("ATR", period)
    if len(candles) < period + 1:
        return []

    ranges = true_ranges(candles)
    atr = sum(ranges[:period]) / period
    points = [ValuePoint(time=candles[period].time, value=atr * PIP_SCALE)]
    for i in range(period, len(ranges)):
        atr = (atr * (period - 1) + ranges[i]) / period
        points.append(ValuePoint(time=candles[i + 1].time, value=atr * PIP_SCALE))
    return points


# ── Volume ───────────────────────────────────────────────────────────────


def calculate_volume(candles: list[Candle], period: int = 20) -> list[VolumePoint]:
    """Per-bar volume with direction and a trailing *period* average.

    ``average`` is ``None`` until *period* bars are available.
    """
    _check_period("Volume", period)
    volumes = [c.volume for c in candles]
    averages = sma_values(volumes, period)
    return [
        VolumePoint(
            time=c.time,
            value=c.volume,
            is_up=c.close >= c.open,
            average=None if i < period - 1 else averages[i],
        )
        for i, c in enumerate(candles)
    ]
