"""Data contracts: typed payloads crossing the evaluator and screening boundaries.

TradeAnalysis replaces the loosely-shaped analysis dict the decision and
calibration steps used to dig into with optional chaining. Missing-field
defaults live in one place: the derived properties on TradeAnalysis.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    """Base for all contract models - unknown fields are forbidden."""

    model_config = ConfigDict(extra="forbid")


class TradeCategory(str, Enum):
    STRONG_SETUP = "STRONG_SETUP"
    NEUTRAL = "NEUTRAL"
    AVOID = "AVOID"


class Bias(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class ConfidenceLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ── Trade analysis ─────────────────────────────────────────────────────────

class TradePlan(StrictModel):
    entry: float | None = None
    target: float | None = None
    stop_loss: float | None = None
    risk_reward: float | None = None


class Scenario(StrictModel):
    probability: float | None = None
    original_probability: float | None = None
    trade_plan: TradePlan | None = None


class AnalysisIndicators(StrictModel):
    rsi: float | None = None
    ma_trend: str = ""
    volume_ratio: float | None = None


class PatternInfo(StrictModel):
    name: str | None = None
    confidence: float | None = None


class NewsItem(StrictModel):
    title: str = ""
    sentiment: str = "neutral"  # positive | negative | neutral


class NewsInfo(StrictModel):
    items: list[NewsItem] = Field(default_factory=list)


class TradeAnalysis(StrictModel):
    symbol: str = "Unknown"
    bullish: Scenario | None = None
    bearish: Scenario | None = None
    indicators: AnalysisIndicators | None = None
    pattern: PatternInfo | None = None
    news: NewsInfo | None = None
    category: TradeCategory | None = None
    confidence: ConfidenceLevel | None = None
    confidence_score: float | None = None
    recommendation: str | None = None
    bias: Bias | None = None

    # Set by calibration
    calibrated: bool | None = None
    calibration_note: str | None = None
    calibration_factor: float | None = None

    @property
    def bull_probability(self) -> float:
        return (self.bullish.probability if self.bullish else None) or 0.0

    @property
    def bear_probability(self) -> float:
        return (self.bearish.probability if self.bearish else None) or 0.0

    @property
    def pattern_confidence(self) -> float:
        return (self.pattern.confidence if self.pattern else None) or 0.0

    @property
    def volume_ratio(self) -> float:
        ratio = self.indicators.volume_ratio if self.indicators else None
        return 1.0 if ratio is None else ratio

    @property
    def max_risk_reward(self) -> float:
        def _rr(scenario: Scenario | None) -> float:
            if scenario is None or scenario.trade_plan is None:
                return 0.0
            return scenario.trade_plan.risk_reward or 0.0

        return max(_rr(self.bullish), _rr(self.bearish))


class TradeDecision(StrictModel):
    should_trade: bool
    category: TradeCategory
    reason: str
    warnings: list[str] = Field(default_factory=list)


class RedFlagResult(StrictModel):
    passed: bool
    failed_checks: list[str] = Field(default_factory=list)


# ── Screening output ───────────────────────────────────────────────────────

class SignalVote(StrictModel):
    name: str
    direction: str
    strength: int
    detail: str


class StockPick(StrictModel):
    symbol: str
    name: str
    price: float
    change_percent: float
    confidence: int = Field(ge=15, le=95)
    reason: str
    technical_score: int
    direction: str
    signal_clarity: int
    signals: list[SignalVote]
    volume_confirmed: bool
    indicator_votes: dict[str, int]
    signal_age: int
    signal_strength: str
    # Set by the trade review: bucket calibration and the trade checklist
    raw_confidence: int | None = None
    calibration_bucket: str | None = None
    trade_category: TradeCategory | None = None
    should_trade: bool | None = None
    trade_reason: str | None = None
    trade_warnings: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
