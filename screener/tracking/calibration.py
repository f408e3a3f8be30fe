"""Confidence calibration: corrects scorer confidence against realised outcomes.

Two layers read the resolved ledger:

1. Range calibration (50-60 … 90-100). Each range's adjustment factor is
   actual win rate / range midpoint, and `apply_calibration` scales the
   dominant scenario probability of a TradeAnalysis by it.
2. Bucket calibration, an interim fallback used while per-condition data
   accumulates. Once 100+ signals are resolved, a raw confidence maps to
   the actual win rate of its bucket.

Neither layer raises on an empty or unreachable ledger: both report
"not ready" and leave the input unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from screener.config import get_settings
from screener.contracts import Bias, TradeAnalysis, TradeCategory
from screener.tracking.ledger import LedgerQuery, LedgerStore, SignalRecord, SignalStatus

logger = logging.getLogger(__name__)

# (min, max, label), half-open [min, max)
PROBABILITY_RANGES = [
    (50, 60, "50-60"),
    (60, 70, "60-70"),
    (70, 80, "70-80"),
    (80, 90, "80-90"),
    (90, 100, "90-100"),
]

# (min, max, label, predicted win rate)
CONFIDENCE_BUCKETS = [
    (15, 35, "15-35", 25),
    (35, 45, "35-45", 40),
    (45, 55, "45-55", 50),
    (55, 65, "55-65", 60),
    (65, 75, "65-75", 70),
    (75, 85, "75-85", 80),
    (85, 96, "85-95", 90),
]
MIN_SIGNALS_FOR_BUCKETS = 100
MIN_PER_BUCKET = 20
BUCKET_TOLERANCE = 8

DEFAULT_CONFIDENCE_SCORE = 50
MIN_PROBABILITY = 30
MAX_PROBABILITY = 95


@dataclass
class CalibrationRange:
    range_label: str
    predicted_midpoint: int
    actual_win_rate: float
    sample_size: int
    deviation: float
    adjustment_factor: float
    status: str  # CALIBRATED | OVERCONFIDENT | UNDERCONFIDENT


@dataclass
class CalibrationResult:
    ready: bool
    total_samples: int
    ranges: list[CalibrationRange] = field(default_factory=list)
    overall_accuracy: float = 0.0
    recommendations: list[str] = field(default_factory=list)
    adjustment_map: dict[str, float] = field(default_factory=dict)


@dataclass
class ConfidenceBucket:
    range_label: str
    predicted: int
    actual: int
    sample_size: int
    deviation: int
    calibrated: bool
    status: str  # CALIBRATED | OVERCONFIDENT | UNDERCONFIDENT | INSUFFICIENT


@dataclass
class BucketCalibration:
    ready: bool
    total_resolved: int
    buckets: list[ConfidenceBucket] = field(default_factory=list)
    overall_accuracy: int = 0
    quality: str = "INSUFFICIENT"  # GOOD | FAIR | POOR | INSUFFICIENT
    recommendations: list[str] = field(default_factory=list)


@dataclass
class CalibratedConfidence:
    original: float
    calibrated: float
    delta: float
    bucket_used: str
    was_calibratable: bool


def _find_range(score: float) -> tuple[int, int, str] | None:
    for lo, hi, label in PROBABILITY_RANGES:
        if lo <= score < hi:
            return lo, hi, label
    return None


def _score(record: SignalRecord) -> float:
    return record.confidence or DEFAULT_CONFIDENCE_SCORE


# ---------------------------------------------------------------------------
# Range calibration
# ---------------------------------------------------------------------------

def build_calibration(closed: list[SignalRecord]) -> CalibrationResult:
    """Calibration table from closed (non-pending) records."""
    settings = get_settings()
    min_samples = settings.min_calibration_samples
    max_deviation = settings.calibration_max_deviation

    if len(closed) < min_samples:
        return CalibrationResult(
            ready=False,
            total_samples=len(closed),
            recommendations=[
                f"Need {min_samples - len(closed)} more closed predictions for calibration"
            ],
        )

    counts = {label: [0, 0] for _, _, label in PROBABILITY_RANGES}  # wins, total
    total_wins = 0
    total_in_range = 0
    for rec in closed:
        match = _find_range(_score(rec))
        if match is None:
            continue
        counts[match[2]][1] += 1
        total_in_range += 1
        if rec.status == SignalStatus.TARGET_HIT:
            counts[match[2]][0] += 1
            total_wins += 1

    ranges: list[CalibrationRange] = []
    adjustment_map: dict[str, float] = {}
    recommendations: list[str] = []

    for lo, hi, label in PROBABILITY_RANGES:
        wins, total = counts[label]
        if total == 0:
            continue

        predicted = (lo + hi) / 2
        actual = wins / total * 100
        deviation = actual - predicted
        factor = actual / predicted if predicted > 0 else 1.0

        if abs(deviation) <= max_deviation:
            status = "CALIBRATED"
        elif deviation < 0:
            status = "OVERCONFIDENT"
            recommendations.append(
                f"Reduce {label}% predictions by {abs(round(deviation))}% (actual: {actual:.1f}%)"
            )
        else:
            status = "UNDERCONFIDENT"
            recommendations.append(
                f"Increase {label}% predictions by {round(deviation)}% (actual: {actual:.1f}%)"
            )

        ranges.append(CalibrationRange(
            range_label=label,
            predicted_midpoint=round(predicted),
            actual_win_rate=round(actual, 1),
            sample_size=total,
            deviation=round(deviation, 1),
            adjustment_factor=round(factor, 2),
            status=status,
        ))
        adjustment_map[label] = factor

    overall = total_wins / total_in_range * 100 if total_in_range else 0.0
    if overall >= 55:
        recommendations.insert(0, f"✅ Overall accuracy {overall:.1f}% exceeds 55% target")
    elif overall >= 45:
        recommendations.insert(
            0, f"⚠️ Overall accuracy {overall:.1f}% - close to target, keep monitoring"
        )
    else:
        recommendations.insert(
            0, f"❌ Overall accuracy {overall:.1f}% below 55% - review scoring weights"
        )

    return CalibrationResult(
        ready=True,
        total_samples=len(closed),
        ranges=ranges,
        overall_accuracy=round(overall, 1),
        recommendations=recommendations,
        adjustment_map=adjustment_map,
    )


async def get_calibration_data(store: LedgerStore | None) -> CalibrationResult:
    if store is None:
        return CalibrationResult(
            ready=False, total_samples=0, recommendations=["Ledger not available"],
        )
    try:
        closed = await store.find(LedgerQuery(resolved=True))
    except Exception as e:
        logger.warning("Calibration ledger read failed: %s", e)
        return CalibrationResult(
            ready=False, total_samples=0, recommendations=[f"Ledger not available: {e}"],
        )
    return build_calibration(closed)


def calibrate_analysis(analysis: TradeAnalysis, calibration: CalibrationResult) -> TradeAnalysis:
    """Scale the dominant scenario probability by its range factor. Returns a copy."""
    if analysis.bullish is None or analysis.bearish is None:
        return analysis

    if not calibration.ready or not calibration.adjustment_map:
        return analysis.model_copy(update={
            "calibrated": False,
            "calibration_note": "Not enough data for calibration",
        })

    score = analysis.confidence_score or DEFAULT_CONFIDENCE_SCORE
    match = _find_range(score)
    matched_label = match[2] if match else ""
    factor = (calibration.adjustment_map.get(matched_label) or 1.0) if match else 1.0

    bull = analysis.bull_probability
    bear = analysis.bear_probability

    if bull > bear:
        new_bull = max(MIN_PROBABILITY, min(MAX_PROBABILITY, round(bull * factor)))
        new_bear = 100 - new_bull
    else:
        new_bear = max(MIN_PROBABILITY, min(MAX_PROBABILITY, round(bear * factor)))
        new_bull = 100 - new_bear

    if new_bull > 55 and new_bear <= 45:
        bias = Bias.BULLISH
    elif new_bear > 55 and new_bull <= 45:
        bias = Bias.BEARISH
    else:
        bias = Bias.NEUTRAL

    note = f"Adjusted using {matched_label}% range (factor: {factor:.2f})"
    category = analysis.category
    if bias == Bias.NEUTRAL and analysis.category == TradeCategory.STRONG_SETUP:
        category = TradeCategory.NEUTRAL
        note += " - Downgraded from STRONG_SETUP due to calibration"

    return analysis.model_copy(update={
        "bullish": analysis.bullish.model_copy(
            update={"probability": new_bull, "original_probability": bull}
        ),
        "bearish": analysis.bearish.model_copy(
            update={"probability": new_bear, "original_probability": bear}
        ),
        "bias": bias,
        "category": category,
        "calibrated": True,
        "calibration_note": note,
        "calibration_factor": factor,
    })


async def apply_calibration(analysis: TradeAnalysis, store: LedgerStore | None) -> TradeAnalysis:
    if analysis.bullish is None or analysis.bearish is None:
        return analysis
    calibration = await get_calibration_data(store)
    return calibrate_analysis(analysis, calibration)


def calibration_summary(calibration: CalibrationResult) -> str:
    if not calibration.ready:
        min_samples = get_settings().min_calibration_samples
        return f"Calibration: Not ready ({calibration.total_samples}/{min_samples} predictions)"
    well = sum(1 for r in calibration.ranges if r.status == "CALIBRATED")
    return (
        f"Calibration: {well}/{len(calibration.ranges)} ranges calibrated | "
        f"Overall: {calibration.overall_accuracy:g}% accuracy | "
        f"Samples: {calibration.total_samples}"
    )



def miscalibration_report(calibration: CalibrationResult) -> dict:
    """Severity of systematic over/under-confidence across ranges with 5+ samples."""
    if not calibration.ready:
        return {
            "needed": False,
            "adjustments": ["Not enough data to determine scoring adjustments"],
            "severity": "LOW",
        }

    adjustments: list[str] = []
    over = 0
    for r in calibration.ranges:
        if r.sample_size < 5:
            continue
        if r.status == "OVERCONFIDENT":
            over += 1
            if abs(r.deviation) > 15:
                adjustments.append(
                    f"CRITICAL: {r.range_label}% range is severely overconfident "
                    f"(actual: {r.actual_win_rate:g}%). Scale scores in this range "
                    f"toward {round(r.actual_win_rate)}%"
                )
        elif r.status == "UNDERCONFIDENT" and r.deviation > 15:
            adjustments.append(
                f"NOTE: {r.range_label}% range is underconfident "
                f"(actual: {r.actual_win_rate:g}%). Scores can run higher in this range."
            )

    if over >= 2 or calibration.overall_accuracy < 45:
        severity = "HIGH"
        adjustments.insert(
            0,
            "🚨 HIGH PRIORITY: scorer is systematically overconfident. "
            "Consider tightening the quality gates.",
        )
    elif over >= 1 or calibration.overall_accuracy < 55:
        severity = "MEDIUM"
    else:
        severity = "LOW"

    return {"needed": bool(adjustments), "adjustments": adjustments, "severity": severity}


# ---------------------------------------------------------------------------
# Bucket calibration
# ---------------------------------------------------------------------------

def build_bucket_calibration(closed: list[SignalRecord]) -> BucketCalibration:
    total = len(closed)
    if total < MIN_SIGNALS_FOR_BUCKETS:
        return BucketCalibration(
            ready=False,
            total_resolved=total,
            recommendations=[
                f"Need {MIN_SIGNALS_FOR_BUCKETS - total} more resolved signals for calibration "
                f"({total}/{MIN_SIGNALS_FOR_BUCKETS})"
            ],
        )

    counts = {label: [0, 0] for _, _, label, _ in CONFIDENCE_BUCKETS}
    total_wins = 0
    for rec in closed:
        score = _score(rec)
        for lo, hi, label, _ in CONFIDENCE_BUCKETS:
            if lo <= score < hi:
                counts[label][1] += 1
                if rec.status == SignalStatus.TARGET_HIT:
                    counts[label][0] += 1
                    total_wins += 1
                break

    buckets: list[ConfidenceBucket] = []
    recommendations: list[str] = []
    overconfident = 0
    total_deviation = 0

    for _, _, label, predicted in CONFIDENCE_BUCKETS:
        wins, n = counts[label]
        if n == 0:
            continue
        actual = round(wins / n * 100)
        deviation = actual - predicted
        calibrated = n >= MIN_PER_BUCKET

        if not calibrated:
            status = "INSUFFICIENT"
        elif abs(deviation) <= BUCKET_TOLERANCE:
            status = "CALIBRATED"
        elif deviation < 0:
            status = "OVERCONFIDENT"
            overconfident += 1
            recommendations.append(
                f"{label} range: System overconfident by {abs(deviation)}pp "
                f"(predicted ~{predicted}%, actual {actual}%)"
            )
        else:
            status = "UNDERCONFIDENT"
            recommendations.append(
                f"{label} range: System underconfident by {deviation}pp "
                f"(predicted ~{predicted}%, actual {actual}%)"
            )
        if calibrated:
            total_deviation += abs(deviation)

        buckets.append(ConfidenceBucket(
            range_label=label,
            predicted=predicted,
            actual=actual,
            sample_size=n,
            deviation=deviation,
            calibrated=calibrated,
            status=status,
        ))

    n_calibrated = sum(1 for b in buckets if b.calibrated)
    avg_deviation = total_deviation / n_calibrated if n_calibrated else 999
    if n_calibrated < 3:
        quality = "INSUFFICIENT"
    elif avg_deviation <= 5:
        quality = "GOOD"
    elif avg_deviation <= 12:
        quality = "FAIR"
    else:
        quality = "POOR"

    if overconfident >= 2:
        recommendations.insert(
            0,
            "🚨 System is systematically overconfident across multiple buckets. "
            "Consider reducing base modifier weights or tightening selectivity gates.",
        )

    return BucketCalibration(
        ready=True,
        total_resolved=total,
        buckets=buckets,
        overall_accuracy=round(total_wins / total * 100),
        quality=quality,
        recommendations=recommendations,
    )


def calibrate_confidence(raw: float, calibration: BucketCalibration) -> CalibratedConfidence:
    """Map a raw confidence to its bucket's actual win rate, clamped to [15, 95]."""
    if not calibration.ready:
        return CalibratedConfidence(raw, raw, 0, "none", False)

    matched = None
    for lo, hi, label, _ in CONFIDENCE_BUCKETS:
        if lo <= raw < hi:
            matched = next((b for b in calibration.buckets if b.range_label == label), None)
            break

    if matched is None or not matched.calibrated:
        return CalibratedConfidence(
            raw, raw, 0, matched.range_label if matched else "unknown", False
        )

    calibrated = max(15, min(95, matched.actual))
    return CalibratedConfidence(raw, calibrated, calibrated - raw, matched.range_label, True)


async def get_confidence_calibration(store: LedgerStore) -> BucketCalibration:
    try:
        closed = await store.find(LedgerQuery(resolved=True))
    except Exception as e:
        logger.error("Error building bucket calibration: %s", e)
        return BucketCalibration(ready=False, total_resolved=0, recommendations=[f"Error: {e}"])
    return build_bucket_calibration(closed)
