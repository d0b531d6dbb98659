"""Tests for weaver.indicators.calculations — pure indicator transforms."""

import math

import pytest

from weaver.indicators.calculations import (
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
    calculate_stochastic,
    calculate_volume,
    ema_values,
    true_ranges,
)
from weaver.market.models import Candle


def _from_closes(closes: list[float], spread: float = 0.0005) -> list[Candle]:
    """Candles opening at the previous close with a fixed high/low spread."""
    candles = []
    prev = closes[0]
    for i, c in enumerate(closes):
        o = prev
        candles.append(
            Candle(1_704_067_200 + i * 3600, o, max(o, c) + spread, min(o, c) - spread, c, 100.0)
        )
        prev = c
    return candles


def _rising(n: int, start: float = 1.1000, step: float = 0.0001) -> list[Candle]:
    return _from_closes([start + i * step for i in range(n)])


def _flat(n: int, price: float = 1.1000) -> list[Candle]:
    return [Candle(1_704_067_200 + i * 3600, price, price, price, price, 50.0) for i in range(n)]


# ── Moving averages ──────────────────────────────────────────────────────


class TestMovingAverages:
    def test_sma_simple_values(self):
        candles = _from_closes([1.0, 2.0, 3.0, 4.0, 5.0])
        points = calculate_sma(candles, 3)
        assert [p.value for p in points] == pytest.approx([2.0, 3.0, 4.0])
        assert points[0].time == candles[2].time

    def test_ema_seeded_with_sma(self):
        values = ema_values([1.0, 2.0, 3.0, 4.0], 3)
        assert math.isnan(values[0]) and math.isnan(values[1])
        assert values[2] == pytest.approx(2.0)
        assert values[3] == pytest.approx((4.0 - 2.0) * 0.5 + 2.0)

    def test_ema_insufficient_data(self):
        assert calculate_ema(_rising(5), 9) == []

    def test_invalid_period_raises(self):
        with pytest.raises(ValueError):
            calculate_sma(_rising(5), 0)


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRSI:
    def test_requires_period_plus_one(self):
        assert calculate_rsi(_rising(14)) == []
        assert len(calculate_rsi(_rising(15))) == 1

    def test_first_sample_at_index_period(self):
        candles = _rising(30)
        points = calculate_rsi(candles)
        assert points[0].time == candles[14].time
        assert len(points) == 16

    def test_no_losses_uses_rs_sentinel(self):
        points = calculate_rsi(_rising(20))
        assert points[-1].value == pytest.approx(100.0 - 100.0 / 101.0)

    def test_balanced_moves_give_fifty(self):
        closes = [1.1 + (0.001 if i % 2 else 0.0) for i in range(30)]
        points = calculate_rsi(_from_closes(closes))
        assert points[-1].value == pytest.approx(50.0)

    def test_bounded(self):
        closes = [1.1, 1.12, 1.09, 1.15, 1.08, 1.2, 1.05] * 5
        for p in calculate_rsi(_from_closes(closes)):
            assert 0.0 <= p.value <= 100.0


# ── MACD ─────────────────────────────────────────────────────────────────


class TestMACD:
    def test_insufficient_data(self):
        assert calculate_macd(_rising(33)) == []

    def test_alignment(self):
        candles = _rising(50)
        points = calculate_macd(candles)
        assert len(points) == 17
        assert points[0].time == candles[33].time

    def test_flat_series_is_zero(self):
        points = calculate_macd(_flat(40))
        assert all(p.macd == pytest.approx(0.0) for p in points)
        assert all(p.histogram == pytest.approx(0.0) for p in points)

    def test_uptrend_positive_and_scaled(self):
        points = calculate_macd(_rising(60))
        assert points[-1].macd > 0
        assert points[-1].histogram == pytest.approx(points[-1].macd - points[-1].signal)
        # Scaled to pips: a 1-pip-per-bar trend gives a MACD of several pips.
        assert points[-1].macd > 1.0


# ── Bollinger ────────────────────────────────────────────────────────────


class TestBollinger:
    def test_flat_series_collapses_bands(self):
        points = calculate_bollinger(_flat(25))
        assert len(points) == 6
        p = points[-1]
        assert p.upper == p.middle == p.lower == pytest.approx(1.1)

    def test_population_sigma(self):
        candles = _from_closes([1.0, 3.0])
        p = calculate_bollinger(candles, period=2, std_dev=1.0)[0]
        assert p.middle == pytest.approx(2.0)
        assert p.upper == pytest.approx(3.0)
        assert p.lower == pytest.approx(1.0)


# ── Stochastic ───────────────────────────────────────────────────────────


class TestStochastic:
    def test_alignment(self):
        candles = _rising(20)
        points = calculate_stochastic(candles)
        assert len(points) == 5
        assert points[0].time == candles[15].time

    def test_flat_window_gives_fifty(self):
        points = calculate_stochastic(_flat(20))
        assert all(p.k == 50.0 and p.d == 50.0 for p in points)

    def test_bounded(self):
        closes = [1.1, 1.12, 1.09, 1.15, 1.08, 1.2, 1.05] * 4
        for p in calculate_stochastic(_from_closes(closes)):
            assert 0.0 <= p.k <= 100.0
            assert 0.0 <= p.d <= 100.0


# ── ATR ──────────────────────────────────────────────────────────────────


class TestATR:
    def test_true_range_uses_previous_close(self):
        candles = [
            Candle(0, 1.0, 1.1, 0.9, 1.0),
            Candle(3600, 1.3, 1.4, 1.25, 1.3),
        ]
        assert true_ranges(candles) == [pytest.approx(0.4)]

    def test_seed_and_length(self):
        candles = _flat(20)
        points = calculate_atr(candles)
        assert len(points) == 6
        assert points[0].time == candles[14].time
        assert points[0].value == 0.0

    def test_constant_range_in_pips(self):
        candles = [
            Candle(i * 3600, 1.1, 1.1005, 1.0995, 1.1, 10.0) for i in range(30)
        ]
        points = calculate_atr(candles)
        assert all(p.value == pytest.approx(10.0) for p in points)

    def test_insufficient_data(self):
        assert calculate_atr(_flat(14)) == []


# ── Volume ───────────────────────────────────────────────────────────────


class TestVolume:
    def test_direction_and_average(self):
        candles = _from_closes([1.1, 1.2, 1.15] + [1.15] * 20)
        points = calculate_volume(candles)
        assert len(points) == len(candles)
        assert points[1].is_up is True
        assert points[2].is_up is False
        assert points[18].average is None
        assert points[19].average == pytest.approx(100.0)


class TestDeterminism:
    def test_same_input_same_output(self):
        candles = _from_closes([1.1, 1.12, 1.09, 1.15, 1.08, 1.2, 1.05] * 6)
        assert calculate_macd(candles) == calculate_macd(candles)
        assert calculate_rsi(candles) == calculate_rsi(candles)
