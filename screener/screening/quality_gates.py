"""Quality gates applied after clarity scoring.

Gate 1: Volatility - reject if ATR-based daily volatility > 5%
Gate 2: Volume validation - adjust confidence, never rejects
Gate 3: Liquidity - reject if volume < 50% of the prior 20-bar average
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import pandas as pd

from screener.features.indicators import atr
from screener.screening.clarity import ClarityResult, IndicatorSignal

logger = logging.getLogger(__name__)

MAX_VOLATILITY_PCT = 5.0
MIN_LIQUIDITY_RATIO = 0.5
LIQUIDITY_LOOKBACK = 20
VOLUME_CONFIRMED_BONUS = 5
UNCONFIRMED_HIGH_CLARITY_PENALTY = -10


@dataclass
class QualityGateResult:
    passed: bool
    confidence_adjustment: int
    reason: str | None = None
    gates_passed: list[str] = field(default_factory=list)
    gates_failed: list[str] = field(default_factory=list)


def is_volume_confirmed(signals: list[IndicatorSignal]) -> bool:
    volume = next((s for s in signals if s.name == "Volume"), None)
    return volume is not None and volume.direction != "neutral" and volume.strength >= 30


def check_volatility(df: pd.DataFrame) -> tuple[bool, str | None, float]:
    """Returns (passed, reason, volatility_pct). Passes under 15 bars."""
    if len(df) < 15:
        return True, None, 0.0
    price = float(df["close"].iloc[-1])
    volatility = atr(df, 14) / price * 100 if price else 0.0
    if volatility > MAX_VOLATILITY_PCT:
        return False, f"Volatility {volatility:.1f}% > 5% threshold", volatility
    return True, None, volatility


def check_volume_validation(clarity_score: float, signals: list[IndicatorSignal]) -> tuple[bool, int]:
    """Returns (volume_confirmed, confidence_adjustment)."""
    confirmed = is_volume_confirmed(signals)
    if confirmed:
        return True, VOLUME_CONFIRMED_BONUS
    if clarity_score >= 80:
        # High clarity without volume behind it is suspicious
        return False, UNCONFIRMED_HIGH_CLARITY_PENALTY
    return False, 0


def check_liquidity(df: pd.DataFrame) -> tuple[bool, str | None, float]:
    """Returns (passed, reason, volume_ratio). Passes under 21 bars."""
    if len(df) < LIQUIDITY_LOOKBACK + 1:
        return True, None, 1.0
    volumes = df["volume"].to_numpy(dtype=float)
    avg_volume = volumes[-(LIQUIDITY_LOOKBACK + 1):-1].mean()
    ratio = volumes[-1] / avg_volume if avg_volume > 0 else 0.0
    if ratio < MIN_LIQUIDITY_RATIO:
        return False, f"Volume {ratio * 100:.0f}% < 50% of average", float(ratio)
    return True, None, float(ratio)


def run_quality_gates(symbol: str, clarity: ClarityResult, df: pd.DataFrame) -> QualityGateResult:
    """Run all gates in order; the first hard failure short-circuits."""
    result = QualityGateResult(passed=False, confidence_adjustment=0)

    ok, reason, _ = check_volatility(df)
    if not ok:
        logger.info("%s rejected by quality gates: %s", symbol, reason)
        result.gates_failed.append("volatility")
        result.reason = reason
        return result
    result.gates_passed.append("volatility")

    confirmed, adjustment = check_volume_validation(clarity.clarity_score, clarity.signals)
    if confirmed:
        result.gates_passed.append("volume_confirmed")
    else:
        result.gates_failed.append("volume_unconfirmed")

    ok, reason, _ = check_liquidity(df)
    if not ok:
        logger.info("%s rejected by quality gates: %s", symbol, reason)
        result.gates_failed.append("liquidity")
        result.reason = reason
        return result
    result.gates_passed.append("liquidity")

    result.passed = True
    result.confidence_adjustment = adjustment
    logger.debug("%s passed all quality gates (adj: %+d)", symbol, adjustment)
    return result
