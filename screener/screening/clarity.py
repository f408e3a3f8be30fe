"""Signal clarity scoring: how clearly six indicators agree on one direction.

High clarity means the indicators vote together and the stock is more
predictable; low clarity means conflicting signals and the symbol is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import numpy as np
import pandas as pd

from screener.features.indicators import (
    analyze_volume,
    bollinger_bands,
    detect_trend,
    macd,
    moving_averages,
    rsi,
)

logger = logging.getLogger(__name__)

# At least 4 of 6 indicators must agree
MIN_CLARITY_THRESHOLD = 67
MIN_BARS = 26

SIGNAL_WEIGHTS = {
    "RSI": 0.20,
    "MACD": 0.20,
    "MA Trend": 0.20,
    "Bollinger": 0.15,
    "Volume": 0.10,
    "Trend": 0.15,
}
NEUTRAL_CREDIT = 10


@dataclass
class IndicatorSignal:
    name: str
    direction: str  # bullish | bearish | neutral
    strength: int  # 0-100
    detail: str


@dataclass
class ClarityResult:
    symbol: str
    direction: str  # bullish | bearish
    clarity_score: int
    weighted_score: int
    signals: list[IndicatorSignal]
    agreement_ratio: str
    summary: str
    signal_age: int
    signal_strength: str  # weak | moderate | strong
    volume_confirmed: bool
    indicator_votes: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _SliceScore:
    direction: str
    clarity_score: int
    weighted_score: int
    signals: list[IndicatorSignal]
    bullish: int
    bearish: int
    neutral: int


# ---------------------------------------------------------------------------
# Individual voters
# ---------------------------------------------------------------------------

def _rsi_signal(closes: np.ndarray) -> IndicatorSignal:
    result = rsi(closes)
    value = result.value
    if value >= 55:
        direction, strength = "bullish", min(100, (value - 55) * 4 + 50)
    elif value <= 45:
        direction, strength = "bearish", min(100, (45 - value) * 4 + 50)
    else:
        direction, strength = "neutral", 30
    return IndicatorSignal(
        name="RSI",
        direction=direction,
        strength=round(strength),
        detail=f"RSI {value:.1f} - {result.interpretation}",
    )


def _macd_signal(closes: np.ndarray) -> IndicatorSignal:
    m = macd(closes)
    if m.histogram > 0 and m.macd > 0:
        direction, strength = "bullish", min(100, abs(m.histogram) * 20 + 60)
    elif m.histogram < 0 and m.macd < 0:
        direction, strength = "bearish", min(100, abs(m.histogram) * 20 + 60)
    elif m.histogram > 0:
        # Histogram turned up while the line is still negative
        direction, strength = "bullish", 40
    elif m.histogram < 0:
        direction, strength = "bearish", 40
    else:
        direction, strength = "neutral", 20
    return IndicatorSignal(
        name="MACD",
        direction=direction,
        strength=round(strength),
        detail=f"MACD {m.macd:.2f}, Hist {m.histogram:.2f} - {m.trend}",
    )


def _ma_trend_signal(closes: np.ndarray) -> IndicatorSignal:
    ma = moving_averages(closes)
    current = float(closes[-1])
    above20 = current > ma.sma20
    above50 = current > ma.sma50
    checks = [above20, above50, ma.sma20 > ma.sma50, ma.ema9 > ma.ema21]
    bullish_count = sum(checks)

    if bullish_count >= 3:
        direction, strength = "bullish", 90 if bullish_count == 4 else 65
    elif bullish_count <= 1:
        direction, strength = "bearish", 90 if bullish_count == 0 else 65
    else:
        direction, strength = "neutral", 30
    return IndicatorSignal(
        name="MA Trend",
        direction=direction,
        strength=strength,
        detail=(
            f"Price {'>' if above20 else '<'} SMA20 "
            f"{'>' if above50 else '<'} SMA50 - {ma.trend}"
        ),
    )


def _bollinger_signal(closes: np.ndarray) -> IndicatorSignal:
    bb = bollinger_bands(closes)
    if bb.percent_b > 0.7:
        direction, strength = "bullish", min(100, (bb.percent_b - 0.5) * 200)
    elif bb.percent_b < 0.3:
        direction, strength = "bearish", min(100, (0.5 - bb.percent_b) * 200)
    else:
        direction, strength = "neutral", 25
    return IndicatorSignal(
        name="Bollinger",
        direction=direction,
        strength=round(strength),
        detail=f"%B {bb.percent_b:.3f}, Position: {bb.position}",
    )


def _volume_signal(df: pd.DataFrame) -> IndicatorSignal:
    vol = analyze_volume(df)
    price_up = float(df["close"].iloc[-1]) > float(df["close"].iloc[-2])
    move = "bullish" if price_up else "bearish"

    if vol.ratio >= 1.2:
        direction, strength = move, min(100, (vol.ratio - 1) * 100)
    elif vol.ratio >= 0.8:
        direction, strength = move, 30
    else:
        # Below-average volume carries no conviction
        direction, strength = "neutral", 15
    return IndicatorSignal(
        name="Volume",
        direction=direction,
        strength=round(strength),
        detail=f"{vol.ratio:.2f}x avg volume - {vol.trend}",
    )


def _trend_signal(df: pd.DataFrame) -> IndicatorSignal:
    trend = detect_trend(df)
    if trend.direction == "uptrend":
        direction, strength = "bullish", min(100, trend.strength)
    elif trend.direction == "downtrend":
        direction, strength = "bearish", min(100, trend.strength)
    else:
        direction, strength = "neutral", 10 if trend.consolidating else 20
    suffix = " (consolidating)" if trend.consolidating else ""
    return IndicatorSignal(
        name="Trend",
        direction=direction,
        strength=strength,
        detail=f"{trend.direction}, strength {trend.strength}{suffix}",
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _score_slice(df: pd.DataFrame) -> _SliceScore | None:
    if len(df) < MIN_BARS:
        return None

    closes = df["close"].to_numpy(dtype=float)
    signals = [
        _rsi_signal(closes),
        _macd_signal(closes),
        _ma_trend_signal(closes),
        _bollinger_signal(closes),
        _volume_signal(df),
        _trend_signal(df),
    ]

    bullish = sum(1 for s in signals if s.direction == "bullish")
    bearish = sum(1 for s in signals if s.direction == "bearish")
    neutral = len(signals) - bullish - bearish

    direction = "bullish" if bullish >= bearish else "bearish"
    majority = max(bullish, bearish)

    weighted = 0.0
    for s in signals:
        weight = SIGNAL_WEIGHTS[s.name]
        if s.direction == direction:
            weighted += weight * s.strength
        elif s.direction == "neutral":
            weighted += weight * NEUTRAL_CREDIT

    return _SliceScore(
        direction=direction,
        clarity_score=round(majority / len(signals) * 100),
        weighted_score=round(weighted),
        signals=signals,
        bullish=bullish,
        bearish=bearish,
        neutral=neutral,
    )


def _signal_age(df: pd.DataFrame, direction: str, min_clarity: float) -> int:
    """Count today plus up to two prior sessions that made the same clear call."""
    age = 1
    for lag, min_len in ((1, 28), (2, 29)):
        if len(df) < min_len:
            break
        prior = _score_slice(df.iloc[:-lag])
        if prior is None or prior.direction != direction or prior.clarity_score < min_clarity:
            break
        age = lag + 1
    return age


def score_clarity(
    symbol: str,
    df: pd.DataFrame,
    min_clarity: float = MIN_CLARITY_THRESHOLD,
) -> ClarityResult | None:
    """Score indicator agreement for one symbol. Returns None under 26 bars."""
    scored = _score_slice(df)
    if scored is None:
        return None

    majority = max(scored.bullish, scored.bearish)
    age = _signal_age(df, scored.direction, min_clarity)
    strength = {3: "strong", 2: "moderate"}.get(age, "weak")

    volume = next(s for s in scored.signals if s.name == "Volume")
    volume_confirmed = volume.direction != "neutral" and volume.strength >= 30

    agreement = f"{majority}/{len(scored.signals)}"
    if majority >= 5:
        label = "Strong"
    elif majority == 4:
        label = "Moderate"
    else:
        label = "Weak"
    arrow = "↑ Bullish" if scored.direction == "bullish" else "↓ Bearish"
    persist = f" [{age}-day signal]" if age >= 2 else ""

    return ClarityResult(
        symbol=symbol,
        direction=scored.direction,
        clarity_score=scored.clarity_score,
        weighted_score=scored.weighted_score,
        signals=scored.signals,
        agreement_ratio=agreement,
        summary=f"{label} {arrow} ({agreement} indicators agree){persist}",
        signal_age=age,
        signal_strength=strength,
        volume_confirmed=volume_confirmed,
        indicator_votes={
            "bullish": scored.bullish,
            "bearish": scored.bearish,
            "neutral": scored.neutral,
        },
    )
