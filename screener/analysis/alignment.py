"""Multi-timeframe alignment: do the daily, weekly and monthly reads agree?

Daily gives entry timing, weekly confirms the swing direction and monthly
confirms the primary trend, so monthly carries the most weight. Trades whose
timeframes conflict lose most of their score.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import pandas as pd

from screener.features.indicators import IndicatorSet

logger = logging.getLogger(__name__)

MIN_ALIGNMENT_SCORE = 60

TIMEFRAME_WEIGHTS = {
    "daily": 0.20,
    "weekly": 0.35,
    "monthly": 0.45,
}

RSI_BULLISH = 55
RSI_BEARISH = 45
MOMENTUM_BULLISH = 60
MOMENTUM_BEARISH = 40


class TrendDirection(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


@dataclass
class TimeframeTrend:
    timeframe: str
    trend: TrendDirection
    confidence: int
    signals: dict[str, TrendDirection]
    rsi: float
    ma_trend: str


@dataclass
class AlignmentResult:
    aligned: bool
    score: int
    overall_trend: TrendDirection
    timeframes: dict[str, TimeframeTrend]
    conflicts: list[str] = field(default_factory=list)
    recommendation: str = ""
    tradeable: bool = False


def analyze_timeframe(indicators: IndicatorSet | None, timeframe: str) -> TimeframeTrend | None:
    """Three-way vote (RSI, MA trend text, RSI momentum) for one timeframe."""
    if indicators is None:
        return None

    rsi_value = indicators.rsi.value or 50
    ma_trend = indicators.ma.trend or "NEUTRAL"

    rsi_vote = TrendDirection.NEUTRAL
    if rsi_value > RSI_BULLISH:
        rsi_vote = TrendDirection.BULLISH
    elif rsi_value < RSI_BEARISH:
        rsi_vote = TrendDirection.BEARISH

    ma_lower = ma_trend.lower()
    ma_vote = TrendDirection.NEUTRAL
    if "bullish" in ma_lower or "uptrend" in ma_lower or "up" in ma_lower:
        ma_vote = TrendDirection.BULLISH
    elif "bearish" in ma_lower or "downtrend" in ma_lower or "down" in ma_lower:
        ma_vote = TrendDirection.BEARISH

    momentum_vote = TrendDirection.NEUTRAL
    if rsi_value > MOMENTUM_BULLISH:
        momentum_vote = TrendDirection.BULLISH
    elif rsi_value < MOMENTUM_BEARISH:
        momentum_vote = TrendDirection.BEARISH

    signals = {"rsi": rsi_vote, "ma": ma_vote, "momentum": momentum_vote}
    bullish = sum(1 for s in signals.values() if s == TrendDirection.BULLISH)
    bearish = sum(1 for s in signals.values() if s == TrendDirection.BEARISH)

    if bullish >= 2:
        trend, confidence = TrendDirection.BULLISH, 90 if bullish == 3 else 70
    elif bearish >= 2:
        trend, confidence = TrendDirection.BEARISH, 90 if bearish == 3 else 70
    else:
        trend, confidence = TrendDirection.NEUTRAL, 50

    return TimeframeTrend(
        timeframe=timeframe,
        trend=trend,
        confidence=confidence,
        signals=signals,
        rsi=rsi_value,
        ma_trend=ma_trend,
    )


def _contribution(tf: TimeframeTrend) -> float:
    return tf.confidence if tf.trend != TrendDirection.NEUTRAL else 50


def _opposed(a: TimeframeTrend, b: TimeframeTrend) -> bool:
    return (
        a.trend != TrendDirection.NEUTRAL
        and b.trend != TrendDirection.NEUTRAL
        and a.trend != b.trend
    )


def _agree(a: TimeframeTrend, b: TimeframeTrend) -> bool:
    return a.trend == b.trend and a.trend != TrendDirection.NEUTRAL


def check_timeframe_alignment(
    daily: IndicatorSet | None,
    weekly: IndicatorSet | None = None,
    monthly: IndicatorSet | None = None,
) -> AlignmentResult:
    d = analyze_timeframe(daily, "daily")
    w = analyze_timeframe(weekly, "weekly")
    m = analyze_timeframe(monthly, "monthly")

    if d is None:
        return AlignmentResult(
            aligned=False,
            score=0,
            overall_trend=TrendDirection.NEUTRAL,
            timeframes={},
            conflicts=["Daily indicators unavailable"],
            recommendation="Cannot analyze - insufficient data",
            tradeable=False,
        )

    conflicts: list[str] = []
    score = _contribution(d) * TIMEFRAME_WEIGHTS["daily"]
    total_weight = TIMEFRAME_WEIGHTS["daily"]

    if w is not None:
        weight = TIMEFRAME_WEIGHTS["weekly"]
        if _opposed(d, w):
            conflicts.append(f"Daily ({d.trend.value}) conflicts with Weekly ({w.trend.value})")
            score += _contribution(w) * weight * 0.5
        elif _agree(d, w):
            score += _contribution(w) * weight * 1.2
        else:
            score += _contribution(w) * weight
        total_weight += weight

    if m is not None:
        weight = TIMEFRAME_WEIGHTS["monthly"]
        if _opposed(d, m):
            conflicts.append(f"Daily ({d.trend.value}) conflicts with Monthly ({m.trend.value})")
            score += _contribution(m) * weight * 0.3
        elif w is not None and _opposed(w, m):
            conflicts.append(f"Weekly ({w.trend.value}) conflicts with Monthly ({m.trend.value})")
            score += _contribution(m) * weight * 0.5
        elif _agree(d, m):
            score += _contribution(m) * weight * 1.3
        else:
            score += _contribution(m) * weight
        total_weight += weight

    final_score = round(min(100.0, max(0.0, round(score / total_weight, 2))))

    if m is not None and m.trend != TrendDirection.NEUTRAL:
        overall = m.trend
    elif w is not None and w.trend != TrendDirection.NEUTRAL:
        overall = w.trend
    else:
        overall = d.trend

    trends = [tf.trend for tf in (d, w, m) if tf is not None and tf.trend != TrendDirection.NEUTRAL]
    all_agree = bool(trends) and all(t == trends[0] for t in trends)

    tradeable = True
    if all_agree and len(trends) >= 2:
        recommendation = f"Strong {trends[0].value} alignment across {len(trends)} timeframes"
    elif not conflicts and final_score >= MIN_ALIGNMENT_SCORE:
        recommendation = f"Acceptable alignment ({final_score}%) - proceed with caution"
    elif conflicts:
        tradeable = final_score >= MIN_ALIGNMENT_SCORE
        tail = "Reduced confidence." if tradeable else "Avoid trade."
        recommendation = f"Conflicting signals: {'; '.join(conflicts)}. {tail}"
    else:
        recommendation = "Neutral signals - wait for clearer direction"
        tradeable = False

    timeframes = {tf.timeframe: tf for tf in (d, w, m) if tf is not None}
    return AlignmentResult(
        aligned=not conflicts and all_agree,
        score=final_score,
        overall_trend=overall,
        timeframes=timeframes,
        conflicts=conflicts,
        recommendation=recommendation,
        tradeable=tradeable and final_score >= MIN_ALIGNMENT_SCORE,
    )


def is_timeframe_aligned(
    daily: IndicatorSet | None,
    weekly: IndicatorSet | None = None,
    monthly: IndicatorSet | None = None,
) -> bool:
    return check_timeframe_alignment(daily, weekly, monthly).tradeable


def alignment_summary(result: AlignmentResult) -> str:
    """One-line log form, e.g. 'D:B/W:B/M:B (100%) - Aligned'."""
    parts = []
    for key, label in (("daily", "D"), ("weekly", "W"), ("monthly", "M")):
        tf = result.timeframes.get(key)
        if tf is not None:
            parts.append(f"{label}:{tf.trend.value[0]}")
        elif key == "daily":
            parts.append("D:?")

    if result.aligned:
        status = "Aligned"
    elif result.tradeable:
        status = "Proceed w/ caution"
    else:
        status = "Conflicts"
    return f"{'/'.join(parts)} ({result.score}%) - {status}"


def resample_bars(df: pd.DataFrame, rule: str) -> pd.DataFrame:
    """Aggregate daily bars into weekly ("W") or monthly ("M") bars."""
    if df.empty:
        return df.copy()
    freq = {"W": "W-FRI", "M": "ME"}.get(rule, rule)
    indexed = df.set_index(pd.to_datetime(df["date"]))
    out = indexed.resample(freq).agg({
        "open": "first",
        "high": "max",
        "low": "min",
        "close": "last",
        "volume": "sum",
    }).dropna(subset=["close"])
    out["date"] = out.index.date
    return out.reset_index(drop=True)[["date", "open", "high", "low", "close", "volume"]]
