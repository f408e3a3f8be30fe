"""Per-symbol market regime classifier.

Regime types:
  - TRENDING_STRONG: ADX >= 25
  - TRENDING_WEAK: ADX 15-25
  - RANGE: ADX < 15
  - VOLATILE: ATR > 2x its recent mean on > 1.8x volume
  - EVENT_DRIVEN: high-impact breaking news

Checks run in that priority order: news first, then volatility, then ADX.
Each regime carries a default factor-weight distribution.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pandas as pd

from screener.features.indicators import adx, analyze_volume, atr


class MarketRegime(str, Enum):
    TRENDING_STRONG = "TRENDING_STRONG"
    TRENDING_WEAK = "TRENDING_WEAK"
    RANGE = "RANGE"
    VOLATILE = "VOLATILE"
    EVENT_DRIVEN = "EVENT_DRIVEN"


@dataclass(frozen=True)
class RegimeWeights:
    technical: float
    pattern: float
    volume: float
    news: float
    fundamental: float


# Each row sums to 1.0
DEFAULT_REGIME_WEIGHTS: dict[MarketRegime, RegimeWeights] = {
    MarketRegime.TRENDING_STRONG: RegimeWeights(0.45, 0.15, 0.15, 0.10, 0.15),
    MarketRegime.TRENDING_WEAK: RegimeWeights(0.35, 0.20, 0.15, 0.15, 0.15),
    MarketRegime.RANGE: RegimeWeights(0.25, 0.10, 0.20, 0.20, 0.25),
    MarketRegime.VOLATILE: RegimeWeights(0.30, 0.10, 0.25, 0.20, 0.15),
    MarketRegime.EVENT_DRIVEN: RegimeWeights(0.15, 0.05, 0.15, 0.45, 0.20),
}


@dataclass
class RegimeInput:
    adx_value: float
    atr_current: float
    atr_mean: float  # mean ATR over the last 20 bars
    volume_ratio: float
    news_impact: str = "low"  # high | medium | low
    has_breaking_news: bool = False
    alignment_score: float = 0.0


@dataclass
class RegimeAssessment:
    regime: MarketRegime
    confidence: int  # 0-100
    description: str
    weights: RegimeWeights


def classify_market_regime(inp: RegimeInput) -> RegimeAssessment:
    if inp.has_breaking_news and inp.news_impact == "high":
        return RegimeAssessment(
            regime=MarketRegime.EVENT_DRIVEN,
            confidence=85,
            description="High-impact breaking news detected - event-driven regime",
            weights=DEFAULT_REGIME_WEIGHTS[MarketRegime.EVENT_DRIVEN],
        )

    atr_multiple = inp.atr_current / inp.atr_mean if inp.atr_mean > 0 else 1.0
    if atr_multiple > 2.0 and inp.volume_ratio > 1.8:
        return RegimeAssessment(
            regime=MarketRegime.VOLATILE,
            confidence=min(95, round(atr_multiple * 30)),
            description=(
                f"ATR {atr_multiple:.1f}x average with {inp.volume_ratio:.1f}x volume "
                "- volatile regime"
            ),
            weights=DEFAULT_REGIME_WEIGHTS[MarketRegime.VOLATILE],
        )

    if inp.adx_value >= 25:
        return RegimeAssessment(
            regime=MarketRegime.TRENDING_STRONG,
            confidence=90 if inp.alignment_score >= 65 else 70,
            description=(
                f"ADX {inp.adx_value:.0f} with {inp.alignment_score:g}% alignment "
                "- strong trend"
            ),
            weights=DEFAULT_REGIME_WEIGHTS[MarketRegime.TRENDING_STRONG],
        )

    if inp.adx_value >= 15:
        return RegimeAssessment(
            regime=MarketRegime.TRENDING_WEAK,
            confidence=65,
            description=f"ADX {inp.adx_value:.0f} - weak/developing trend",
            weights=DEFAULT_REGIME_WEIGHTS[MarketRegime.TRENDING_WEAK],
        )

    return RegimeAssessment(
        regime=MarketRegime.RANGE,
        confidence=75,
        description=f"ADX {inp.adx_value:.0f} - range-bound/choppy market",
        weights=DEFAULT_REGIME_WEIGHTS[MarketRegime.RANGE],
    )


def mean_atr(df: pd.DataFrame, period: int = 14, lookback: int = 20) -> float:
    """Average of the trailing ATR readings over the last `lookback` bars."""
    if len(df) < period + 1:
        return 0.0
    readings = [
        atr(df.iloc[:end], period)
        for end in range(max(period + 1, len(df) - lookback + 1), len(df) + 1)
    ]
    return sum(readings) / len(readings)


def regime_input_from_bars(
    df: pd.DataFrame,
    alignment_score: float = 0.0,
    news_impact: str = "low",
    has_breaking_news: bool = False,
) -> RegimeInput:
    """Build a RegimeInput from raw bars (ADX, ATR vs its mean, volume ratio)."""
    return RegimeInput(
        adx_value=adx(df).adx,
        atr_current=atr(df),
        atr_mean=mean_atr(df),
        volume_ratio=analyze_volume(df).ratio,
        news_impact=news_impact,
        has_breaking_news=has_breaking_news,
        alignment_score=alignment_score,
    )
