"""Screening pipeline: universe → pre-filter → clarity → quality gates → top picks.

Pre-filtering fetches history in bounded concurrent batches. Clarity and
the gates are pure functions over the fetched bars. The surviving
candidates are ranked by weighted score, enriched with a live quote, and
scored with the enhanced confidence formula.

When a ledger is supplied the scan also resolves pending signals for every
re-analysed symbol, drops picks whose condition has a reliable negative
expectancy, and records the remaining picks as new signals with their raw
confidence. Every pick then goes through the trade review: its confidence
is mapped through the bucket calibration built from resolved signals, and
the trade checklist and red flags are attached to it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Protocol

import pandas as pd

from screener.analysis.alignment import check_timeframe_alignment, resample_bars
from screener.analysis.expectancy import evaluate_expectancy
from screener.analysis.trade_decision import check_red_flags, should_trade
from screener.config import get_settings
from screener.contracts import (
    AnalysisIndicators,
    Bias,
    Scenario,
    SignalVote,
    StockPick,
    TradeAnalysis,
    TradePlan,
)
from screener.data.cache import Cache, MemoryCache, build_key, df_to_json, get_or_fetch, json_to_df
from screener.data.yfinance_client import Quote
from screener.features.indicators import compute_indicators
from screener.features.regime import classify_market_regime, regime_input_from_bars
from screener.screening.clarity import ClarityResult, score_clarity
from screener.screening.quality_gates import run_quality_gates
from screener.tracking.calibration import (
    apply_calibration,
    build_bucket_calibration,
    calibrate_confidence,
    get_confidence_calibration,
)
from screener.tracking.ledger import LedgerStore, SignalRecord
from screener.tracking.signal_tracker import (
    SignalContext,
    get_empirical_probability,
    save_signal,
    update_signal_outcomes,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 50
MAX_CONFIDENCE = 95
LIQUIDITY_LOOKBACK = 20


class MarketDataFetcher(Protocol):
    async def fetch_history(
        self, symbol: str, period: str = "3mo", interval: str = "1d"
    ) -> pd.DataFrame: ...

    async def fetch_quote(self, symbol: str) -> Quote: ...


@dataclass
class ScreeningFunnel:
    """Tracks how many symbols are eliminated at each screening stage."""

    total_scanned: int = 0
    failed_fetch: int = 0
    failed_insufficient_data: int = 0
    failed_liquidity: int = 0
    passed_prefilter: int = 0
    failed_clarity: int = 0
    passed_clarity: int = 0
    failed_quality_gates: int = 0
    passed_quality_gates: int = 0
    failed_expectancy: int = 0

    def log_summary(self) -> None:
        logger.info(
            "Screening funnel: %d scanned → %d pre-filter → %d clarity → %d gates | "
            "fetch=%d, data=%d, liquidity=%d, clarity=%d, gates=%d, expectancy=%d dropped",
            self.total_scanned,
            self.passed_prefilter,
            self.passed_clarity,
            self.passed_quality_gates,
            self.failed_fetch,
            self.failed_insufficient_data,
            self.failed_liquidity,
            self.failed_clarity,
            self.failed_quality_gates,
            self.failed_expectancy,
        )

    def to_dict(self) -> dict:
        return {
            "total_scanned": self.total_scanned,
            "failed_fetch": self.failed_fetch,
            "failed_insufficient_data": self.failed_insufficient_data,
            "failed_liquidity": self.failed_liquidity,
            "passed_prefilter": self.passed_prefilter,
            "failed_clarity": self.failed_clarity,
            "passed_clarity": self.passed_clarity,
            "failed_quality_gates": self.failed_quality_gates,
            "passed_quality_gates": self.passed_quality_gates,
            "failed_expectancy": self.failed_expectancy,
        }


@dataclass
class PrefilterResult:
    symbol: str
    history: pd.DataFrame


@dataclass
class ScreeningCandidate:
    clarity: ClarityResult
    history: pd.DataFrame
    confidence_adjustment: int


@dataclass
class ScanReport:
    scan_date: date
    picks: list[StockPick]
    funnel: ScreeningFunnel
    duration_s: float = 0.0
    from_cache: bool = False
    recorded_signals: int = 0
    resolved_signals: int = 0

    @property
    def avg_confidence(self) -> int:
        if not self.picks:
            return 0
        return round(sum(p.confidence for p in self.picks) / len(self.picks))

    @property
    def signal_persistence(self) -> dict[str, int]:
        return {
            f"age{age}": sum(1 for p in self.picks if p.signal_age == age)
            for age in (3, 2, 1)
        }

    def to_dict(self) -> dict:
        return {
            "date": self.scan_date.isoformat(),
            "picks": [p.model_dump(mode="json") for p in self.picks],
            "funnel": self.funnel.to_dict(),
            "avg_confidence": self.avg_confidence,
            "signal_persistence": self.signal_persistence,
            "duration_s": self.duration_s,
            "from_cache": self.from_cache,
            "recorded_signals": self.recorded_signals,
            "resolved_signals": self.resolved_signals,
        }


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------

def enhanced_confidence(
    weighted_score: float,
    clarity_score: float,
    volume_confirmed: bool,
    signal_age: int,
    gate_adjustment: int,
) -> int:
    """Final pick confidence, clamped to [50, 95].

    The volume term and the gate adjustment can both credit a confirmed
    volume signal; the two are applied independently.
    """
    confidence = weighted_score

    if clarity_score >= 83:
        confidence += 5

    if volume_confirmed:
        confidence += 5
    elif clarity_score >= 80:
        confidence -= 10

    if signal_age == 3:
        confidence += 8
    elif signal_age == 2:
        confidence += 5
    else:
        confidence -= 8

    confidence += gate_adjustment
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, round(confidence)))


# ---------------------------------------------------------------------------
# Stage 0: pre-filter
# ---------------------------------------------------------------------------

async def load_history(symbol: str, fetcher: MarketDataFetcher, cache: Cache) -> pd.DataFrame:
    """Daily bars for `symbol`, served from the history cache when fresh."""
    settings = get_settings()

    async def fetch() -> str | None:
        history = await fetcher.fetch_history(
            symbol, settings.history_range, settings.history_interval
        )
        return None if history.empty else df_to_json(history)

    payload = await get_or_fetch(
        cache, build_key("history", symbol), fetch, settings.history_cache_ttl_s
    )
    return json_to_df(payload) if payload is not None else pd.DataFrame()


async def prefilter_symbol(
    symbol: str,
    fetcher: MarketDataFetcher,
    cache: Cache,
    funnel: ScreeningFunnel | None = None,
) -> PrefilterResult | None:
    """Drop symbols with too little history or an inactive last session."""
    settings = get_settings()
    funnel = funnel or ScreeningFunnel()

    try:
        history = await load_history(symbol, fetcher, cache)
    except Exception as e:
        logger.warning("Skip %s: history fetch failed: %s", symbol, e)
        funnel.failed_fetch += 1
        return None

    if len(history) < settings.min_bars_for_screen:
        logger.debug("Skip %s: %d bars < %d", symbol, len(history), settings.min_bars_for_screen)
        funnel.failed_insufficient_data += 1
        return None

    if len(history) > LIQUIDITY_LOOKBACK:
        volumes = history["volume"].to_numpy(dtype=float)
        avg_vol = volumes[-(LIQUIDITY_LOOKBACK + 1):-1].mean()
        if avg_vol > 0 and volumes[-1] / avg_vol < settings.prefilter_min_volume_ratio:
            logger.debug("Skip %s: volume %.0f%% of 20-day average", symbol, volumes[-1] / avg_vol * 100)
            funnel.failed_liquidity += 1
            return None

    funnel.passed_prefilter += 1
    return PrefilterResult(symbol=symbol, history=history)


# ---------------------------------------------------------------------------
# Stage 1: clarity + quality gates
# ---------------------------------------------------------------------------

def analyze_symbol(
    symbol: str,
    history: pd.DataFrame,
    min_clarity: float | None = None,
    funnel: ScreeningFunnel | None = None,
) -> ScreeningCandidate | None:
    if min_clarity is None:
        min_clarity = get_settings().min_clarity_threshold
    funnel = funnel or ScreeningFunnel()

    clarity = score_clarity(symbol, history, min_clarity)
    if clarity is None or clarity.clarity_score < min_clarity:
        funnel.failed_clarity += 1
        return None
    funnel.passed_clarity += 1

    gates = run_quality_gates(symbol, clarity, history)
    if not gates.passed:
        funnel.failed_quality_gates += 1
        return None
    funnel.passed_quality_gates += 1

    logger.debug(
        "%s passed: %s (age %d, weighted %d)",
        symbol, clarity.summary, clarity.signal_age, clarity.weighted_score,
    )
    return ScreeningCandidate(
        clarity=clarity,
        history=history,
        confidence_adjustment=gates.confidence_adjustment,
    )


async def screen_universe(
    symbols: list[str],
    fetcher: MarketDataFetcher,
    cache: Cache,
    funnel: ScreeningFunnel | None = None,
) -> tuple[list[ScreeningCandidate], list[PrefilterResult], ScreeningFunnel]:
    """Run pre-filter, clarity and gates over `symbols`.

    Returns candidates sorted by weighted score (best first), every
    pre-filtered symbol with its history, and the funnel counts.
    """
    settings = get_settings()
    funnel = funnel or ScreeningFunnel()
    funnel.total_scanned += len(symbols)
    batch_size = settings.screen_batch_size
    total_batches = (len(symbols) + batch_size - 1) // batch_size

    logger.info("Screening %d symbols in %d batches", len(symbols), total_batches)
    prefiltered: list[PrefilterResult] = []
    for batch_idx in range(0, len(symbols), batch_size):
        batch = symbols[batch_idx:batch_idx + batch_size]
        tasks = [prefilter_symbol(s, fetcher, cache, funnel) for s in batch]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for symbol, result in zip(batch, results):
            if isinstance(result, Exception):
                logger.error("Pre-filter failed for %s: %s", symbol, result)
                funnel.failed_fetch += 1
            elif result is not None:
                prefiltered.append(result)

        if batch_idx + batch_size < len(symbols):
            await asyncio.sleep(settings.screen_batch_pause_s)

    logger.info("Pre-filter complete: %d → %d", len(symbols), len(prefiltered))

    candidates = []
    for pre in prefiltered:
        candidate = analyze_symbol(pre.symbol, pre.history, funnel=funnel)
        if candidate is not None:
            candidates.append(candidate)

    candidates.sort(key=lambda c: c.clarity.weighted_score, reverse=True)
    return candidates, prefiltered, funnel


# ---------------------------------------------------------------------------
# Stage 2: top picks
# ---------------------------------------------------------------------------

def pick_reason(clarity: ClarityResult) -> str:
    aligned = ", ".join(s.name for s in clarity.signals if s.direction == clarity.direction)
    vol = " ✓vol" if clarity.volume_confirmed else ""
    age = f" [{clarity.signal_age}-day]" if clarity.signal_age >= 2 else ""
    return f"{clarity.summary}{vol}{age}. Key signals: {aligned}"


async def build_top_picks(
    candidates: list[ScreeningCandidate],
    fetcher: MarketDataFetcher,
    top_n: int | None = None,
) -> list[StockPick]:
    """Quote-enrich the best candidates and rank them by enhanced confidence."""
    settings = get_settings()
    top_n = top_n or settings.top_n_picks
    top = candidates[:top_n]
    logger.info("Building top picks from %d candidates", len(top))

    picks: list[StockPick] = []
    for cand in top:
        clarity = cand.clarity
        try:
            quote = await fetcher.fetch_quote(clarity.symbol)
        except Exception as e:
            logger.warning("Quote fetch failed for %s: %s", clarity.symbol, e)
            continue

        confidence = enhanced_confidence(
            clarity.weighted_score,
            clarity.clarity_score,
            clarity.volume_confirmed,
            clarity.signal_age,
            cand.confidence_adjustment,
        )
        picks.append(StockPick(
            symbol=clarity.symbol,
            name=quote.name or clarity.symbol,
            price=quote.price,
            change_percent=quote.change_percent,
            confidence=confidence,
            reason=pick_reason(clarity),
            technical_score=clarity.weighted_score,
            direction=clarity.direction,
            signal_clarity=clarity.clarity_score,
            signals=[
                SignalVote(name=s.name, direction=s.direction, strength=s.strength, detail=s.detail)
                for s in clarity.signals
            ],
            volume_confirmed=clarity.volume_confirmed,
            indicator_votes=clarity.indicator_votes,
            signal_age=clarity.signal_age,
            signal_strength=clarity.signal_strength,
        ))
        logger.debug(
            "Pick #%d: %s %s (confidence %d, age %d)",
            len(picks), clarity.symbol, clarity.direction, confidence, clarity.signal_age,
        )
        await asyncio.sleep(settings.quote_pause_s)

    picks.sort(key=lambda p: p.confidence, reverse=True)
    logger.info("Top picks ready: %d", len(picks))
    return picks


# ---------------------------------------------------------------------------
# Ledger hooks
# ---------------------------------------------------------------------------

def signal_context_for(
    pick: StockPick,
    candidate: ScreeningCandidate,
    signal_date: date | None = None,
) -> SignalContext:
    """Market context for a pick: regime, multi-timeframe alignment and price levels."""
    history = candidate.history
    daily = compute_indicators(history)
    weekly_bars = resample_bars(history, "W")
    monthly_bars = resample_bars(history, "M")
    alignment = check_timeframe_alignment(
        daily,
        compute_indicators(weekly_bars) if not weekly_bars.empty else None,
        compute_indicators(monthly_bars) if not monthly_bars.empty else None,
    )
    regime = classify_market_regime(regime_input_from_bars(history, alignment.score))

    bullish = pick.direction == "bullish"
    entry = pick.price or float(history["close"].iloc[-1])
    return SignalContext(
        symbol=pick.symbol,
        direction="BUY" if bullish else "SELL",
        confidence=pick.confidence,
        base_confidence=candidate.clarity.weighted_score,
        regime=regime.regime,
        alignment_score=alignment.score,
        adx_value=daily.adx.adx,
        volume_ratio=daily.volume.ratio,
        volume_confirmed=pick.volume_confirmed,
        rsi_value=daily.rsi.value,
        entry_price=entry,
        target_price=daily.sr.resistance if bullish else daily.sr.support,
        stop_loss=daily.sr.support if bullish else daily.sr.resistance,
        signal_date=signal_date,
        extra={
            "clarity_score": candidate.clarity.clarity_score,
            "signal_age": candidate.clarity.signal_age,
            "regime_confidence": regime.confidence,
            "alignment": alignment.recommendation,
            "ma_trend": daily.ma.trend,
        },
    )


async def filter_and_record(
    picks: list[StockPick],
    contexts: dict[str, SignalContext],
    ledger: LedgerStore,
    funnel: ScreeningFunnel,
) -> tuple[list[StockPick], list[SignalRecord]]:
    """Drop picks rejected by the expectancy filter and record the rest."""
    kept: list[StockPick] = []
    recorded: list[SignalRecord] = []

    for pick in picks:
        ctx = contexts[pick.symbol]
        empirical = await get_empirical_probability(
            ledger, ctx.regime, ctx.alignment_score, ctx.adx_value, ctx.volume_ratio
        )
        verdict = evaluate_expectancy(empirical)
        if not verdict.accepted:
            logger.info("Dropping %s: %s", pick.symbol, verdict.reason)
            funnel.failed_expectancy += 1
            continue

        ctx.extra["expectancy"] = verdict.details
        kept.append(pick)
        record = await save_signal(ledger, ctx)
        if record is not None:
            recorded.append(record)

    return kept, recorded


# ---------------------------------------------------------------------------
# Stage 3: trade review
# ---------------------------------------------------------------------------

def _trade_plan(entry: float, target: float, stop: float) -> TradePlan:
    risk = abs(entry - stop)
    rr = round(abs(target - entry) / risk, 2) if risk > 0 else None
    return TradePlan(entry=entry, target=target, stop_loss=stop, risk_reward=rr)


def pick_analysis(pick: StockPick, ctx: SignalContext) -> TradeAnalysis:
    """Two-scenario view of a pick. Only the picked side carries a trade plan."""
    bullish = ctx.direction == "BUY"
    plan = _trade_plan(ctx.entry_price, ctx.target_price, ctx.stop_loss)
    picked = Scenario(probability=pick.confidence, trade_plan=plan)
    other = Scenario(probability=100 - pick.confidence)

    return TradeAnalysis(
        symbol=pick.symbol,
        bullish=picked if bullish else other,
        bearish=other if bullish else picked,
        indicators=AnalysisIndicators(
            rsi=ctx.rsi_value,
            ma_trend=ctx.extra.get("ma_trend", ""),
            volume_ratio=ctx.volume_ratio,
        ),
        confidence_score=pick.confidence,
        bias=Bias.BULLISH if bullish else Bias.BEARISH,
    )


async def review_picks(
    picks: list[StockPick],
    contexts: dict[str, SignalContext],
    ledger: LedgerStore | None = None,
) -> list[StockPick]:
    """Calibrate pick confidence against resolved outcomes and attach the trade checklist.

    Picks failing the checklist are annotated, not dropped. The ledger keeps
    the raw confidence, so calibration never learns from its own output.
    """
    if ledger is not None:
        buckets = await get_confidence_calibration(ledger)
    else:
        buckets = build_bucket_calibration([])
    if buckets.ready:
        logger.info(
            "Confidence calibration from %d resolved signals (quality %s)",
            buckets.total_resolved, buckets.quality,
        )

    reviewed: list[StockPick] = []
    for pick in picks:
        analysis = await apply_calibration(pick_analysis(pick, contexts[pick.symbol]), ledger)
        decision = should_trade(analysis)
        flags = check_red_flags(analysis)
        calibrated = calibrate_confidence(pick.confidence, buckets)

        if calibrated.was_calibratable:
            logger.info(
                "%s confidence %d -> %d (bucket %s)",
                pick.symbol, pick.confidence, calibrated.calibrated, calibrated.bucket_used,
            )
        if not flags.passed:
            logger.info("%s red flags: %s", pick.symbol, "; ".join(flags.failed_checks))

        reviewed.append(pick.model_copy(update={
            "confidence": round(calibrated.calibrated),
            "raw_confidence": pick.confidence,
            "calibration_bucket": calibrated.bucket_used,
            "trade_category": decision.category,
            "should_trade": decision.should_trade,
            "trade_reason": decision.reason,
            "trade_warnings": decision.warnings,
            "red_flags": flags.failed_checks,
        }))

    reviewed.sort(key=lambda p: p.confidence, reverse=True)
    return reviewed


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

async def run_scan(
    fetcher: MarketDataFetcher,
    symbols: list[str] | None = None,
    cache: Cache | None = None,
    ledger: LedgerStore | None = None,
    force: bool = False,
    today: date | None = None,
) -> ScanReport:
    """One full screening pass. Reuses today's result from the cache unless `force`."""
    settings = get_settings()
    today = today or date.today()
    cache = cache if cache is not None else MemoryCache()
    symbols = list(symbols) if symbols is not None else list(settings.universe)

    scan_key = build_key("screening", today.isoformat())
    if not force:
        cached = cache.get(scan_key)
        if cached:
            logger.info("Screening cache hit for %s (%d picks)", today, len(cached["picks"]))
            return ScanReport(
                scan_date=today,
                picks=[StockPick.model_validate(p) for p in cached["picks"]],
                funnel=ScreeningFunnel(**cached["funnel"]),
                from_cache=True,
            )

    logger.info("Running full screening pass over %d symbols", len(symbols))
    start = time.monotonic()

    candidates, prefiltered, funnel = await screen_universe(symbols, fetcher, cache)

    resolved = 0
    if ledger is not None:
        for pre in prefiltered:
            resolved += await update_signal_outcomes(ledger, pre.symbol, pre.history, today=today)

    if not candidates:
        logger.warning("No symbols passed all filters")
        funnel.log_summary()
        return ScanReport(
            scan_date=today,
            picks=[],
            funnel=funnel,
            duration_s=round(time.monotonic() - start, 1),
            resolved_signals=resolved,
        )

    picks = await build_top_picks(candidates, fetcher)
    by_symbol = {c.clarity.symbol: c for c in candidates}
    contexts = {p.symbol: signal_context_for(p, by_symbol[p.symbol], today) for p in picks}

    recorded: list[SignalRecord] = []
    if ledger is not None:
        picks, recorded = await filter_and_record(picks, contexts, ledger, funnel)
    picks = await review_picks(picks, contexts, ledger)

    report = ScanReport(
        scan_date=today,
        picks=picks,
        funnel=funnel,
        duration_s=round(time.monotonic() - start, 1),
        recorded_signals=len(recorded),
        resolved_signals=resolved,
    )
    funnel.log_summary()
    logger.info(
        "Scan complete in %.1fs: %d picks (avg confidence %d, %d bullish / %d bearish), persistence %s",
        report.duration_s,
        len(picks),
        report.avg_confidence,
        sum(1 for p in picks if p.direction == "bullish"),
        sum(1 for p in picks if p.direction == "bearish"),
        report.signal_persistence,
    )

    if picks:
        cache.set(
            scan_key,
            {"picks": [p.model_dump(mode="json") for p in picks], "funnel": funnel.to_dict()},
            settings.screening_cache_ttl_s,
        )
    return report
