"""Technical indicator library: pure functions over close prices and OHLCV bars.

Every indicator returns a neutral sentinel when the input is too short to be
meaningful rather than raising, so callers can feed whatever history they
have. Bar inputs are DataFrames with columns: date, open, high, low, close,
volume (chronological).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd
import pandas_ta as ta

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["date", "open", "high", "low", "close", "volume"]
FIB_RATIOS = [0, 0.236, 0.382, 0.5, 0.618, 0.786, 1]
MACD_DIVERGENCE_LOOKBACK = 20
SR_LOOKBACK = 20
TREND_LOOKBACK = 20


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RSIResult:
    value: float
    interpretation: str  # overbought | oversold | neutral


@dataclass
class MAResult:
    sma20: float
    sma50: float
    sma200: float
    ema9: float
    ema21: float
    trend: str  # bullish | bearish | neutral


@dataclass
class MACDResult:
    macd: float
    signal: float
    histogram: float
    trend: str
    divergence: str = "none"  # bullish | bearish | none


@dataclass
class ADXResult:
    adx: float
    plus_di: float
    minus_di: float
    trend_strength: str  # strong | moderate | weak | choppy
    trend_direction: str  # bullish | bearish | neutral
    history: list[float] = field(default_factory=list)


@dataclass
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float
    position: str  # above_upper | upper_half | middle | lower_half | below_lower
    percent_b: float


@dataclass
class FibonacciLevels:
    high: float
    low: float
    levels: list[dict] = field(default_factory=list)


@dataclass
class SRLevels:
    support: float
    resistance: float
    pivot: float
    r1: float
    r2: float
    s1: float
    s2: float


@dataclass
class VolumeAnalysis:
    current: float
    average: float
    ratio: float
    trend: str  # high | normal | low


@dataclass
class TrendResult:
    direction: str  # uptrend | downtrend | sideways
    strength: int
    consolidating: bool


@dataclass
class IndicatorSet:
    rsi: RSIResult
    ma: MAResult
    macd: MACDResult
    adx: ADXResult
    bollinger: BollingerBands
    sr: SRLevels
    atr: float
    vwap: float
    volume: VolumeAnalysis
    fibonacci: FibonacciLevels | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_array(prices: Sequence[float] | pd.Series | np.ndarray) -> np.ndarray:
    return np.asarray(prices, dtype=float)


def _true_range(df: pd.DataFrame) -> np.ndarray:
    """True range for bars 1..n-1 (the first bar has no previous close)."""
    tr = ta.true_range(df["high"], df["low"], df["close"])
    return tr.iloc[1:].to_numpy(dtype=float)


# ---------------------------------------------------------------------------
# Momentum / moving averages
# ---------------------------------------------------------------------------

def rsi(prices: Sequence[float], period: int = 14) -> RSIResult:
    """Simple-average RSI over the last `period` price changes."""
    values = _as_array(prices)
    if len(values) < period + 1:
        return RSIResult(value=50.0, interpretation="neutral")

    changes = np.diff(values)[-period:]
    avg_gain = changes[changes > 0].sum() / period
    avg_loss = -changes[changes < 0].sum() / period

    if avg_loss == 0:
        return RSIResult(value=100.0, interpretation="overbought")

    rs = avg_gain / avg_loss
    value = round(float(100 - 100 / (1 + rs)), 2)

    if value >= 70:
        interpretation = "overbought"
    elif value <= 30:
        interpretation = "oversold"
    else:
        interpretation = "neutral"
    return RSIResult(value=value, interpretation=interpretation)


def sma(prices: Sequence[float], period: int) -> float:
    """Average of the last `period` prices; the latest price when history is shorter."""
    values = _as_array(prices)
    if len(values) < period:
        return float(values[-1]) if len(values) else 0.0
    if period <= 0:
        return 0.0
    return round(float(values[-period:].mean()), 2)


def ema_series(prices: Sequence[float], period: int) -> list[float]:
    """Full EMA, one value per price from index period-1 onwards.

    Seeded with the SMA of the first `period` prices.
    """
    values = _as_array(prices)
    if period < 1 or len(values) < period:
        return []
    series = ta.ema(pd.Series(values), length=period)
    return [float(v) for v in series.iloc[period - 1:]]


def ema(prices: Sequence[float], period: int) -> float:
    values = _as_array(prices)
    if len(values) == 0:
        return 0.0
    if len(values) < period:
        return round(float(values.mean()), 2)
    return round(ema_series(values, period)[-1], 2)


def moving_averages(prices: Sequence[float]) -> MAResult:
    values = _as_array(prices)
    current = float(values[-1]) if len(values) else 0.0
    sma20 = sma(values, 20)
    sma50 = sma(values, 50)

    above20 = current > sma20
    above50 = current > sma50
    if above20 and above50 and sma20 > sma50:
        trend = "bullish"
    elif not above20 and not above50 and sma20 < sma50:
        trend = "bearish"
    else:
        trend = "neutral"

    return MAResult(
        sma20=sma20,
        sma50=sma50,
        sma200=sma(values, 200),
        ema9=ema(values, 9),
        ema21=ema(values, 21),
        trend=trend,
    )


def macd(prices: Sequence[float]) -> MACDResult:
    """MACD(12, 26, 9) with a true EMA9 signal line and 20-bar divergence check."""
    values = _as_array(prices)
    if len(values) < 26:
        return MACDResult(macd=0.0, signal=0.0, histogram=0.0, trend="neutral")

    ema12 = ema_series(values, 12)
    ema26 = ema_series(values, 26)
    # ema12[i + 14] and ema26[i] both correspond to price index i + 25
    offset = 26 - 12
    line = [ema12[i + offset] - ema26[i] for i in range(len(ema26))]

    if len(line) < 9:
        last = round(line[-1], 2)
        return MACDResult(macd=last, signal=0.0, histogram=last, trend="neutral")

    signal_line = ema_series(line, 9)
    signal_offset = len(line) - len(signal_line)
    histograms = [line[i + signal_offset] - s for i, s in enumerate(signal_line)]

    macd_value = round(line[-1], 2)
    signal_value = round(signal_line[-1], 2)
    histogram = round(histograms[-1], 2)

    if histogram > 0 and macd_value > 0:
        trend = "bullish"
    elif histogram < 0 and macd_value < 0:
        trend = "bearish"
    else:
        trend = "neutral"

    return MACDResult(
        macd=macd_value,
        signal=signal_value,
        histogram=histogram,
        trend=trend,
        divergence=_macd_divergence(values, histograms),
    )


def _macd_divergence(prices: np.ndarray, histograms: list[float]) -> str:
    lookback = MACD_DIVERGENCE_LOOKBACK
    if len(prices) < lookback or len(histograms) < lookback:
        return "none"

    recent_prices = prices[-lookback:]
    recent_hist = histograms[-lookback:]
    current_price = recent_prices[-1]
    current_hist = recent_hist[-1]
    prior_prices = recent_prices[:-1]
    prior_hist = recent_hist[:-1]

    # Price breaks out while the histogram fails to confirm
    if current_price > prior_prices.max():
        max_hist = max(prior_hist)
        if max_hist > 0 and current_hist < max_hist * 0.8:
            return "bearish"
    elif current_price < prior_prices.min():
        min_hist = min(prior_hist)
        if min_hist < 0 and current_hist > min_hist * 0.8:
            return "bullish"
    return "none"


# ---------------------------------------------------------------------------
# Volatility / trend strength
# ---------------------------------------------------------------------------

def atr(df: pd.DataFrame, period: int = 14) -> float:
    """Mean true range over the trailing `period` bars."""
    if len(df) < period + 1:
        return 0.0
    trs = _true_range(df)
    return round(float(trs[-period:].mean()), 2)


def _wilder_smooth(values: np.ndarray, period: int) -> np.ndarray:
    smoothed = [float(values[:period].sum())]
    for v in values[period:]:
        prev = smoothed[-1]
        smoothed.append(prev - prev / period + float(v))
    return np.asarray(smoothed)


def trend_strength(adx_value: float) -> str:
    if adx_value >= 25:
        return "strong"
    if adx_value >= 20:
        return "moderate"
    if adx_value >= 15:
        return "weak"
    return "choppy"


def adx(df: pd.DataFrame, period: int = 14) -> ADXResult:
    """Wilder ADX with +DI/-DI and the last five ADX readings."""
    empty = ADXResult(
        adx=0.0, plus_di=0.0, minus_di=0.0,
        trend_strength="choppy", trend_direction="neutral", history=[],
    )
    if len(df) < period * 2 + 1:
        return empty

    high = df["high"].to_numpy(dtype=float)
    low = df["low"].to_numpy(dtype=float)
    trs = _true_range(df)

    up_move = high[1:] - high[:-1]
    down_move = low[:-1] - low[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    smooth_tr = _wilder_smooth(trs, period)
    smooth_plus = _wilder_smooth(plus_dm, period)
    smooth_minus = _wilder_smooth(minus_dm, period)

    plus_di = np.zeros(len(smooth_tr))
    minus_di = np.zeros(len(smooth_tr))
    dx = np.zeros(len(smooth_tr))
    nonzero = smooth_tr != 0
    plus_di[nonzero] = smooth_plus[nonzero] / smooth_tr[nonzero] * 100
    minus_di[nonzero] = smooth_minus[nonzero] / smooth_tr[nonzero] * 100
    di_sum = plus_di + minus_di
    has_sum = di_sum != 0
    dx[has_sum] = np.abs(plus_di[has_sum] - minus_di[has_sum]) / di_sum[has_sum] * 100

    if len(dx) < period:
        return empty

    adx_value = float(dx[:period].mean())
    adx_values = [adx_value]
    for v in dx[period:]:
        adx_value = (adx_value * (period - 1) + float(v)) / period
        adx_values.append(adx_value)

    latest_plus = float(plus_di[-1])
    latest_minus = float(minus_di[-1])

    strength = trend_strength(adx_value)

    if latest_plus > latest_minus and adx_value >= 20:
        direction = "bullish"
    elif latest_minus > latest_plus and adx_value >= 20:
        direction = "bearish"
    else:
        direction = "neutral"

    return ADXResult(
        adx=round(adx_value, 2),
        plus_di=round(latest_plus, 2),
        minus_di=round(latest_minus, 2),
        trend_strength=strength,
        trend_direction=direction,
        history=[round(v, 2) for v in adx_values[-5:]],
    )


def bollinger_bands(
    prices: Sequence[float], period: int = 20, std_dev: float = 2
) -> BollingerBands:
    values = _as_array(prices)
    if len(values) < period:
        current = float(values[-1]) if len(values) else 0.0
        return BollingerBands(
            upper=current, middle=current, lower=current,
            bandwidth=0.0, position="middle", percent_b=0.5,
        )

    window = values[-period:]
    middle = sma(values, period)
    sd = float(np.sqrt(((window - middle) ** 2).sum() / period))

    upper = round(middle + std_dev * sd, 2)
    lower = round(middle - std_dev * sd, 2)
    bandwidth = round((upper - lower) / middle * 100, 2) if middle else 0.0

    current = float(values[-1])
    percent_b = (current - lower) / (upper - lower) if upper != lower else 0.5

    if current > upper:
        position = "above_upper"
    elif current > middle + (upper - middle) / 2:
        position = "upper_half"
    elif current < lower:
        position = "below_lower"
    elif current < middle - (middle - lower) / 2:
        position = "lower_half"
    else:
        position = "middle"

    return BollingerBands(
        upper=upper,
        middle=round(middle, 2),
        lower=lower,
        bandwidth=bandwidth,
        position=position,
        percent_b=round(percent_b, 3),
    )


def fibonacci_levels(prices: Sequence[float]) -> FibonacciLevels:
    """Retracement levels between the high and low of the given closes."""
    values = _as_array(prices)
    if len(values) < 5:
        p = float(values[-1]) if len(values) else 0.0
        return FibonacciLevels(high=p, low=p, levels=[])

    high = float(values.max())
    low = float(values.min())
    diff = high - low
    levels = [
        {"level": f"{fib * 100:.1f}%", "price": round(high - diff * fib, 2)}
        for fib in FIB_RATIOS
    ]
    return FibonacciLevels(high=high, low=low, levels=levels)


# ---------------------------------------------------------------------------
# Price levels / volume
# ---------------------------------------------------------------------------

def support_resistance(df: pd.DataFrame) -> SRLevels:
    """Classic pivots from the last bar plus trailing 20-bar extremes."""
    if len(df) < 5:
        price = float(df["close"].iloc[-1]) if len(df) else 0.0
        return SRLevels(
            support=price * 0.98,
            resistance=price * 1.02,
            pivot=price,
            r1=price * 1.01,
            r2=price * 1.02,
            s1=price * 0.99,
            s2=price * 0.98,
        )

    last = df.iloc[-1]
    high, low, close = float(last["high"]), float(last["low"]), float(last["close"])
    pivot = (high + low + close) / 3
    recent = df.tail(SR_LOOKBACK)

    return SRLevels(
        support=round(float(recent["low"].min()), 2),
        resistance=round(float(recent["high"].max()), 2),
        pivot=round(pivot, 2),
        r1=round(2 * pivot - low, 2),
        r2=round(pivot + (high - low), 2),
        s1=round(2 * pivot - high, 2),
        s2=round(pivot - (high - low), 2),
    )


def vwap(df: pd.DataFrame, period: int = 5) -> float:
    """Volume-weighted typical price over the trailing `period` bars."""
    if len(df) < period:
        return 0.0
    recent = df.tail(period)
    typical = (recent["high"] + recent["low"] + recent["close"]) / 3
    total_volume = float(recent["volume"].sum())
    if total_volume == 0:
        return 0.0
    return round(float((typical * recent["volume"]).sum()) / total_volume, 2)


def analyze_volume(df: pd.DataFrame) -> VolumeAnalysis:
    """Latest volume relative to the mean of the whole series."""
    if len(df) < 5:
        return VolumeAnalysis(current=0.0, average=0.0, ratio=1.0, trend="normal")

    volumes = df["volume"].to_numpy(dtype=float)
    current = float(volumes[-1])
    average = float(volumes.mean())
    ratio = round(current / average, 2) if average > 0 else 1.0

    if ratio > 1.5:
        trend = "high"
    elif ratio < 0.5:
        trend = "low"
    else:
        trend = "normal"
    return VolumeAnalysis(current=current, average=float(round(average)), ratio=ratio, trend=trend)


def detect_trend(df: pd.DataFrame) -> TrendResult:
    """Least-squares slope of the last 20 closes, expressed as % of their mean."""
    if len(df) < 10:
        return TrendResult(direction="sideways", strength=0, consolidating=False)

    closes = df["close"].to_numpy(dtype=float)[-TREND_LOOKBACK:]
    x = np.arange(len(closes), dtype=float)
    slope = float(np.polyfit(x, closes, 1)[0])
    avg_price = float(closes.mean())
    slope_pct = slope / avg_price * 100 if avg_price else 0.0

    if slope_pct > 0.1:
        direction = "uptrend"
    elif slope_pct < -0.1:
        direction = "downtrend"
    else:
        direction = "sideways"

    strength = min(abs(slope_pct) * 10, 100)
    max_dev = float(np.abs(closes - avg_price).max())
    consolidating = bool(avg_price and max_dev / avg_price * 100 < 2)

    return TrendResult(
        direction=direction,
        strength=int(round(strength)),
        consolidating=consolidating,
    )


def compute_indicators(df: pd.DataFrame) -> IndicatorSet:
    """Bundle every indicator for the given bars."""
    closes = df["close"].to_numpy(dtype=float)
    return IndicatorSet(
        rsi=rsi(closes),
        ma=moving_averages(closes),
        macd=macd(closes),
        adx=adx(df),
        bollinger=bollinger_bands(closes),
        sr=support_resistance(df),
        atr=atr(df),
        vwap=vwap(df),
        volume=analyze_volume(df),
        fibonacci=fibonacci_levels(closes),
    )
