"""Deterministic "when NOT to trade" checklist over a TradeAnalysis.

Checks run in a fixed order and the first failing one decides the outcome,
so a coin-flip probability always wins over a poor risk/reward.
"""

from __future__ import annotations

import logging

from screener.contracts import RedFlagResult, TradeAnalysis, TradeCategory, TradeDecision

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------
COIN_FLIP_MIN = 45
COIN_FLIP_MAX = 55
MIN_PATTERN_CONFIDENCE = 70
MIN_VOLUME_RATIO = 0.5
MIN_PROBABILITY = 60
MIN_RISK_REWARD = 1.5

STRONG_MIN_PROBABILITY = 65
STRONG_MIN_PATTERN_CONFIDENCE = 75
STRONG_MIN_VOLUME_RATIO = 0.8
STRONG_MIN_RISK_REWARD = 2.0


def _fmt(value: float) -> str:
    return f"{value:g}"


def _rsi_ma_conflict(analysis: TradeAnalysis) -> str | None:
    """Return the MA trend text when RSI and MA trend disagree, else None."""
    ind = analysis.indicators
    if ind is None or ind.rsi is None:
        return None
    ma_trend = ind.ma_trend.lower()
    rsi_bullish = ind.rsi > 50
    ma_bullish = "bullish" in ma_trend or "uptrend" in ma_trend
    ma_bearish = "bearish" in ma_trend or "downtrend" in ma_trend
    if (rsi_bullish and ma_bearish) or (not rsi_bullish and ma_bullish):
        return ind.ma_trend
    return None


def should_trade(analysis: TradeAnalysis) -> TradeDecision:
    bull = analysis.bull_probability
    bear = analysis.bear_probability
    pattern_conf = analysis.pattern_confidence
    volume_ratio = analysis.volume_ratio
    max_rr = analysis.max_risk_reward

    # 1. Coin flip
    if COIN_FLIP_MIN <= bull <= COIN_FLIP_MAX:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.AVOID,
            reason=(
                f"Coin flip probability ({_fmt(bull)}% bullish, {_fmt(bear)}% bearish) "
                "- no clear edge"
            ),
            warnings=[f"Probability in coin-flip range ({COIN_FLIP_MIN}-{COIN_FLIP_MAX}%)"],
        )

    # 2. Weak pattern
    if 0 < pattern_conf < MIN_PATTERN_CONFIDENCE:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.AVOID,
            reason=f"Low pattern confidence ({_fmt(pattern_conf)}%) - wait for clearer setup",
            warnings=[f"Pattern confidence below {MIN_PATTERN_CONFIDENCE}% threshold"],
        )

    # 3. Thin volume
    if volume_ratio < MIN_VOLUME_RATIO:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.AVOID,
            reason=f"Low volume ({volume_ratio * 100:.0f}% of average) - unreliable breakouts",
            warnings=[f"Volume below {MIN_VOLUME_RATIO * 100:.0f}% of average"],
        )

    # 4. RSI vs MA trend
    conflict = _rsi_ma_conflict(analysis)
    if conflict is not None:
        rsi_side = "bullish" if analysis.indicators.rsi > 50 else "bearish"
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.NEUTRAL,
            reason="Conflicting signals between RSI and MA trend - wait for alignment",
            warnings=[f"Conflicting signals: RSI {rsi_side} vs MA {conflict}"],
        )

    # 5. No conviction either way
    if bull < MIN_PROBABILITY and bear < MIN_PROBABILITY:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.NEUTRAL,
            reason=(
                f"Both scenarios weak (Bull: {_fmt(bull)}%, Bear: {_fmt(bear)}%) "
                "- no clear direction"
            ),
            warnings=[f"Neither scenario shows strong conviction (> {MIN_PROBABILITY}%)"],
        )

    # 6. Poor risk/reward
    if 0 < max_rr < MIN_RISK_REWARD:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.AVOID,
            reason=f"Risk/Reward too low ({max_rr:.2f}) - below {MIN_RISK_REWARD} minimum",
            warnings=[f"Risk/Reward below minimum threshold ({MIN_RISK_REWARD})"],
        )

    # 7. Upstream already said avoid
    if analysis.category == TradeCategory.AVOID:
        return TradeDecision(
            should_trade=False,
            category=TradeCategory.AVOID,
            reason=analysis.recommendation or "Analysis marked as AVOID",
            warnings=["Analysis recommends avoiding this trade"],
        )

    warnings: list[str] = []
    if volume_ratio < 0.75:
        warnings.append(f"Volume below average ({volume_ratio * 100:.0f}%)")
    if 0 < pattern_conf < STRONG_MIN_PATTERN_CONFIDENCE:
        warnings.append(f"Pattern confidence moderate ({_fmt(pattern_conf)}%)")
    if analysis.confidence is not None and analysis.confidence.value == "LOW":
        warnings.append("Analysis confidence marked as LOW")

    strong = (
        (bull > STRONG_MIN_PROBABILITY or bear > STRONG_MIN_PROBABILITY)
        and pattern_conf > STRONG_MIN_PATTERN_CONFIDENCE
        and volume_ratio > STRONG_MIN_VOLUME_RATIO
        and max_rr > STRONG_MIN_RISK_REWARD
    )
    dominant = f"{_fmt(bull)}% bullish" if bull > bear else f"{_fmt(bear)}% bearish"

    decision = TradeDecision(
        should_trade=True,
        category=TradeCategory.STRONG_SETUP if strong else TradeCategory.NEUTRAL,
        reason=f"High confidence setup ({dominant})" if strong else f"Acceptable setup ({dominant})",
        warnings=warnings,
    )
    logger.debug("%s trade decision: %s (%s)", analysis.symbol, decision.category.value, decision.reason)
    return decision


def check_red_flags(analysis: TradeAnalysis) -> RedFlagResult:
    """Evaluate every red flag (no short-circuit) and list the ones that fail."""
    failed: list[str] = []

    pattern_conf = analysis.pattern_confidence
    if 0 < pattern_conf <= MIN_PATTERN_CONFIDENCE:
        failed.append(f"Pattern confidence ≤ {MIN_PATTERN_CONFIDENCE}%")

    if (
        analysis.bull_probability < MIN_PROBABILITY
        and analysis.bear_probability < MIN_PROBABILITY
    ):
        failed.append(f"Probability < {MIN_PROBABILITY}% in both directions")

    if analysis.volume_ratio < MIN_VOLUME_RATIO:
        failed.append("Volume does not confirm pattern")

    if analysis.max_risk_reward < MIN_RISK_REWARD:
        failed.append(f"Risk/Reward < {MIN_RISK_REWARD}")

    if analysis.news is not None and analysis.news.items:
        sentiments = {item.sentiment for item in analysis.news.items}
        if "positive" in sentiments and "negative" in sentiments:
            failed.append("News is conflicting")

    return RedFlagResult(passed=not failed, failed_checks=failed)
