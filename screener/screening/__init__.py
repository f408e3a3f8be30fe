"""Signal clarity scoring, quality gates and the screening pipeline."""

from screener.screening.clarity import ClarityResult, score_clarity
from screener.screening.quality_gates import QualityGateResult, run_quality_gates
from screener.screening.pipeline import run_scan, screen_universe, enhanced_confidence

__all__ = [
    "ClarityResult",
    "score_clarity",
    "QualityGateResult",
    "run_quality_gates",
    "run_scan",
    "screen_universe",
    "enhanced_confidence",
]
