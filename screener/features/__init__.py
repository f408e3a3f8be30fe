"""Indicator and regime feature layer."""

from screener.features.indicators import IndicatorSet, compute_indicators, detect_trend
from screener.features.regime import MarketRegime, RegimeAssessment, classify_market_regime

__all__ = [
    "IndicatorSet",
    "MarketRegime",
    "RegimeAssessment",
    "classify_market_regime",
    "compute_indicators",
    "detect_trend",
]
