"""Tests for the indicator library."""

import numpy as np
import pandas as pd
import pytest

from screener.features.indicators import (
    adx,
    analyze_volume,
    atr,
    bollinger_bands,
    compute_indicators,
    detect_trend,
    ema,
    ema_series,
    fibonacci_levels,
    macd,
    moving_averages,
    rsi,
    sma,
    support_resistance,
    trend_strength,
    vwap,
)


class TestRSI:
    def test_monotonic_rise_is_overbought(self):
        result = rsi(list(range(1, 21)))
        assert result.value == 100.0
        assert result.interpretation == "overbought"

    def test_short_history_is_neutral(self):
        result = rsi([1, 2, 3])
        assert result.value == 50.0
        assert result.interpretation == "neutral"

    def test_monotonic_fall_is_oversold(self):
        result = rsi(list(range(40, 20, -1)))
        assert result.value == 0.0
        assert result.interpretation == "oversold"

    def test_bounded(self, sample_ohlcv):
        value = rsi(sample_ohlcv["close"]).value
        assert 0 <= value <= 100


class TestMovingAverages:
    def test_sma_of_last_period(self):
        assert sma([10, 20, 30, 40, 50], 3) == 40

    def test_sma_short_history_returns_latest(self):
        assert sma([100, 200], 5) == 200

    def test_sma_empty(self):
        assert sma([], 5) == 0

    def test_ema_short_history_is_mean(self):
        assert ema([1, 2, 3], 5) == 2.0

    def test_ema_series_seeded_with_sma(self):
        series = ema_series(list(range(1, 11)), 3)
        # SMA seed of 1,2,3 is 2; a linear ramp keeps the EMA one step behind
        assert len(series) == 8
        assert series == pytest.approx([2, 3, 4, 5, 6, 7, 8, 9])

    def test_ema_series_too_short(self):
        assert ema_series([1, 2], 3) == []

    def test_rising_trend_is_bullish(self, rising_ohlcv):
        ma = moving_averages(rising_ohlcv["close"])
        assert ma.trend == "bullish"
        assert ma.sma20 > ma.sma50
        assert ma.ema9 > ma.ema21

    def test_falling_trend_is_bearish(self, falling_ohlcv):
        assert moving_averages(falling_ohlcv["close"]).trend == "bearish"


class TestMACD:
    def test_under_26_prices_is_zero(self):
        result = macd(list(range(25)))
        assert (result.macd, result.signal, result.histogram) == (0.0, 0.0, 0.0)
        assert result.trend == "neutral"

    def test_short_line_has_no_signal(self):
        # 30 prices -> 5 MACD values, fewer than the 9 needed for a signal line
        result = macd(list(100 * 1.01 ** np.arange(30)))
        assert result.signal == 0.0
        assert result.histogram == result.macd

    def test_rising_is_bullish(self, rising_ohlcv):
        result = macd(rising_ohlcv["close"])
        assert result.macd > 0
        assert result.histogram > 0
        assert result.trend == "bullish"

    def test_falling_is_bearish(self, falling_ohlcv):
        assert macd(falling_ohlcv["close"]).trend == "bearish"


class TestADX:
    @pytest.mark.parametrize("value,expected", [
        (25, "strong"),
        (24.99, "moderate"),
        (20, "moderate"),
        (19.99, "weak"),
        (15, "weak"),
        (14.99, "choppy"),
        (0, "choppy"),
    ])
    def test_strength_boundaries(self, value, expected):
        assert trend_strength(value) == expected

    def test_short_history(self, short_ohlcv):
        result = adx(short_ohlcv)
        assert result.adx == 0
        assert result.trend_strength == "choppy"
        assert result.trend_direction == "neutral"

    def test_rising_is_strong_bullish(self, rising_ohlcv):
        result = adx(rising_ohlcv)
        assert result.trend_strength == "strong"
        assert result.trend_direction == "bullish"
        assert result.plus_di > result.minus_di
        assert len(result.history) == 5

    def test_falling_is_strong_bearish(self, falling_ohlcv):
        result = adx(falling_ohlcv)
        assert result.trend_strength == "strong"
        assert result.trend_direction == "bearish"


class TestBands:
    def test_bollinger_insufficient_data(self):
        bb = bollinger_bands([10, 11, 12])
        assert bb.upper == bb.middle == bb.lower == 12
        assert bb.percent_b == 0.5
        assert bb.position == "middle"

    def test_bollinger_flat_series(self):
        bb = bollinger_bands([50.0] * 25)
        assert bb.bandwidth == 0
        assert bb.percent_b == 0.5

    def test_bollinger_rising_sits_high(self, rising_ohlcv):
        bb = bollinger_bands(rising_ohlcv["close"])
        assert bb.percent_b > 0.7
        assert bb.position in ("upper_half", "above_upper")

    def test_fibonacci_levels(self):
        fib = fibonacci_levels([10, 20, 15, 12, 18])
        assert fib.high == 20 and fib.low == 10
        assert [lvl["level"] for lvl in fib.levels] == [
            "0.0%", "23.6%", "38.2%", "50.0%", "61.8%", "78.6%", "100.0%",
        ]
        assert fib.levels[0]["price"] == 20
        assert fib.levels[3]["price"] == 15
        assert fib.levels[-1]["price"] == 10

    def test_fibonacci_short(self):
        fib = fibonacci_levels([1, 2, 3])
        assert fib.high == fib.low == 3
        assert fib.levels == []


class TestLevels:
    def test_support_resistance_fallback(self, short_ohlcv):
        sr = support_resistance(short_ohlcv.head(3))
        price = float(short_ohlcv["close"].iloc[2])
        assert sr.support == pytest.approx(price * 0.98)
        assert sr.resistance == pytest.approx(price * 1.02)
        assert sr.pivot == pytest.approx(price)

    def test_support_resistance_pivots(self, rising_ohlcv):
        sr = support_resistance(rising_ohlcv)
        recent = rising_ohlcv.tail(20)
        assert sr.support == round(recent["low"].min(), 2)
        assert sr.resistance == round(recent["high"].max(), 2)
        assert sr.s2 < sr.s1 < sr.pivot < sr.r1 < sr.r2

    def test_atr_short_history(self, short_ohlcv):
        assert atr(short_ohlcv.head(10)) == 0.0

    def test_atr_positive(self, sample_ohlcv):
        assert atr(sample_ohlcv) > 0

    def test_vwap_zero_volume(self, rising_ohlcv):
        df = rising_ohlcv.copy()
        df["volume"] = 0.0
        assert vwap(df) == 0.0

    def test_vwap_flat_volume_is_mean_typical_price(self, rising_ohlcv):
        recent = rising_ohlcv.tail(5)
        typical = (recent["high"] + recent["low"] + recent["close"]) / 3
        assert vwap(rising_ohlcv) == pytest.approx(round(typical.mean(), 2))


class TestVolume:
    def test_short_history(self, short_ohlcv):
        vol = analyze_volume(short_ohlcv.head(4))
        assert vol.ratio == 1.0
        assert vol.trend == "normal"

    def test_zero_average_volume(self, rising_ohlcv):
        df = rising_ohlcv.copy()
        df["volume"] = 0.0
        assert analyze_volume(df).ratio == 1.0

    def test_spike_is_high(self, rising_ohlcv):
        df = rising_ohlcv.copy()
        df.loc[df.index[-1], "volume"] = 5_000_000.0
        vol = analyze_volume(df)
        assert vol.ratio > 1.5
        assert vol.trend == "high"


class TestTrend:
    def test_rising(self, rising_ohlcv):
        result = detect_trend(rising_ohlcv)
        assert result.direction == "uptrend"
        assert result.strength > 0

    def test_falling(self, falling_ohlcv):
        assert detect_trend(falling_ohlcv).direction == "downtrend"

    def test_flat_is_consolidating(self, rising_ohlcv):
        df = rising_ohlcv.copy()
        df["close"] = 100.0
        result = detect_trend(df)
        assert result.direction == "sideways"
        assert result.consolidating is True

    def test_short(self, short_ohlcv):
        result = detect_trend(short_ohlcv.head(5))
        assert result.direction == "sideways"
        assert result.strength == 0


def test_compute_indicators_rising(rising_ohlcv):
    ind = compute_indicators(rising_ohlcv)
    assert ind.rsi.value == 100.0
    assert ind.ma.trend == "bullish"
    assert ind.adx.trend_direction == "bullish"
    assert ind.macd.trend == "bullish"
    assert ind.fibonacci.high == pytest.approx(rising_ohlcv["close"].max())
    assert ind.fibonacci.low == pytest.approx(rising_ohlcv["close"].min())
    assert isinstance(ind.to_dict(), dict)


def test_compute_indicators_falling(falling_ohlcv):
    ind = compute_indicators(falling_ohlcv)
    assert ind.rsi.value == 0.0
    assert ind.ma.trend == "bearish"
    assert ind.adx.trend_direction == "bearish"
    assert ind.macd.trend == "bearish"


def test_compute_indicators_tolerates_tiny_frames():
    df = pd.DataFrame({
        "date": ["2025-01-02"], "open": [10.0], "high": [11.0],
        "low": [9.0], "close": [10.5], "volume": [1000.0],
    })
    ind = compute_indicators(df)
    assert ind.rsi.value == 50.0
    assert ind.atr == 0.0
