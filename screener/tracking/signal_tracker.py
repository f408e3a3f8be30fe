"""Signal tracker: records every directional signal and learns from outcomes.

Every BUY/SELL call is logged with its market context and condition hash.
Pending records are resolved lazily from later bars the next time the
symbol is analysed. Resolved records feed the condition win-rate matrix
and the empirical probability lookup that replaces static modifiers.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import date

import numpy as np
import pandas as pd

from screener.config import get_settings
from screener.features.regime import MarketRegime
from screener.tracking.condition_hash import compute_condition_hash
from screener.tracking.ledger import LedgerQuery, LedgerStore, SignalRecord, SignalStatus

logger = logging.getLogger(__name__)

CONFIDENCE_BUCKETS = [0, 30, 40, 50, 55, 60, 65, 70, 75, 80, 85, 90, 100]
STATS_READY_RESOLVED = 300
TOP_CONDITION_HASHES = 20


@dataclass
class SignalContext:
    symbol: str
    direction: str  # BUY | SELL
    confidence: float
    base_confidence: float
    regime: MarketRegime | str
    alignment_score: float
    adx_value: float
    volume_ratio: float
    volume_confirmed: bool
    rsi_value: float
    entry_price: float
    target_price: float
    stop_loss: float
    signal_date: date | None = None
    extra: dict = field(default_factory=dict)


@dataclass
class WinRateResult:
    condition: str
    total: int
    wins: int
    losses: int
    win_rate: int  # 0-100
    avg_pnl: float


@dataclass
class EmpiricalProbability:
    available: bool
    condition_hash: str
    condition_label: str
    sample_size: int = 0
    win_rate: float = 0.0  # 0-100
    avg_win_pnl: float = 0.0
    avg_loss_pnl: float = 0.0  # absolute value
    expectancy: float = 0.0
    reliable: bool = False
    method: str = "median"
    message: str = ""


def adx_regime(adx_value: float) -> str:
    if adx_value >= 25:
        return "strong"
    if adx_value >= 15:
        return "weak"
    return "choppy"


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------

async def save_signal(store: LedgerStore, ctx: SignalContext) -> SignalRecord | None:
    """Upsert the day's record for ctx.symbol. Failures are logged, never raised."""
    cond = compute_condition_hash(ctx.regime, ctx.alignment_score, ctx.adx_value, ctx.volume_ratio)
    record = SignalRecord(
        symbol=ctx.symbol,
        signal_date=ctx.signal_date or date.today(),
        direction=ctx.direction,
        confidence=ctx.confidence,
        base_confidence=ctx.base_confidence,
        regime=MarketRegime(ctx.regime).value,
        alignment_score=ctx.alignment_score,
        adx_value=ctx.adx_value,
        adx_regime=adx_regime(ctx.adx_value),
        volume_ratio=ctx.volume_ratio,
        volume_confirmed=ctx.volume_confirmed,
        rsi_value=ctx.rsi_value,
        condition_hash=cond.hash,
        alignment_bucket=cond.alignment_bucket,
        adx_bucket=cond.adx_bucket,
        volume_bucket=cond.volume_bucket,
        entry_price=ctx.entry_price,
        target_price=ctx.target_price,
        stop_loss=ctx.stop_loss,
        context=dict(ctx.extra),
    )
    try:
        updated = await store.upsert(record)
    except Exception as e:
        logger.error("Failed to save signal for %s: %s", ctx.symbol, e)
        return None

    if updated:
        logger.info("Updated signal for %s (hash: %s)", ctx.symbol, cond.hash)
    else:
        logger.info(
            "Saved signal for %s (hash: %s, regime: %s, %s)",
            ctx.symbol, cond.hash, record.regime, cond.label,
        )
    return record


def _pnl_pct(direction: str, entry: float, exit_price: float) -> float:
    if entry == 0:
        return 0.0
    if direction == "BUY":
        return (exit_price - entry) / entry * 100
    return (entry - exit_price) / entry * 100


def resolve_record(
    record: SignalRecord,
    history: pd.DataFrame,
    today: date,
    expiry_days: int,
) -> bool:
    """Move a PENDING record to a terminal state if the bars allow it.

    Bars strictly after the signal date are scanned in order. The target is
    checked before the stop on each bar. Returns True if the record changed.
    """
    if record.status != SignalStatus.PENDING:
        return False

    days_since = (today - record.signal_date).days
    if days_since > expiry_days:
        record.status = SignalStatus.EXPIRED
        record.days_to_outcome = days_since
        record.pnl_percent = 0.0
        return True

    if history.empty:
        return False

    bars = history[pd.to_datetime(history["date"]).dt.date > record.signal_date]
    for bar in bars.itertuples(index=False):
        if record.direction == "BUY":
            if bar.high >= record.target_price:
                status, price = SignalStatus.TARGET_HIT, record.target_price
            elif bar.low <= record.stop_loss:
                status, price = SignalStatus.STOP_HIT, record.stop_loss
            else:
                continue
        else:
            if bar.low <= record.target_price:
                status, price = SignalStatus.TARGET_HIT, record.target_price
            elif bar.high >= record.stop_loss:
                status, price = SignalStatus.STOP_HIT, record.stop_loss
            else:
                continue

        bar_date = pd.Timestamp(bar.date).date()
        record.status = status
        record.outcome_price = price
        record.outcome_date = bar_date
        record.pnl_percent = _pnl_pct(record.direction, record.entry_price, price)
        record.days_to_outcome = (bar_date - record.signal_date).days
        return True
    return False


async def update_signal_outcomes(
    store: LedgerStore,
    symbol: str,
    history: pd.DataFrame,
    today: date | None = None,
    expiry_days: int | None = None,
) -> int:
    """Resolve pending records for `symbol` against `history`. Returns rows changed."""
    today = today or date.today()
    if expiry_days is None:
        expiry_days = get_settings().signal_expiry_days

    try:
        pending = await store.find(LedgerQuery(symbol=symbol, status=SignalStatus.PENDING))
        updated = 0
        for record in pending:
            if resolve_record(record, history, today, expiry_days):
                await store.save(record)
                updated += 1
    except Exception as e:
        logger.error("Error updating outcomes for %s: %s", symbol, e)
        return 0

    if updated:
        logger.info("Updated %d/%d pending signals for %s", updated, len(pending), symbol)
    return updated


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

def _records_frame(records: list[SignalRecord]) -> pd.DataFrame:
    df = pd.DataFrame([r.to_dict() for r in records])
    if df.empty:
        return df
    df["win"] = df["status"] == SignalStatus.TARGET_HIT.value
    df["loss"] = df["status"] == SignalStatus.STOP_HIT.value
    return df


async def get_condition_win_rates(
    store: LedgerStore, query: LedgerQuery | None = None
) -> list[WinRateResult]:
    """Win rates of resolved signals grouped by regime, ADX regime and volume confirmation."""
    query = replace(query or LedgerQuery(), resolved=True)
    try:
        groups = await store.aggregate(["regime", "adx_regime", "volume_confirmed"], query)
    except Exception as e:
        logger.error("Error fetching condition win rates: %s", e)
        return []

    results = []
    for g in groups:
        vol = "true" if g["volume_confirmed"] else "false"
        results.append(WinRateResult(
            condition=f"{g['regime']}|{g['adx_regime']}|vol:{vol}",
            total=g["total"],
            wins=g["wins"],
            losses=g["losses"],
            win_rate=round(g["wins"] / g["total"] * 100) if g["total"] else 0,
            avg_pnl=round(g["avg_pnl"] or 0.0, 2),
        ))
    return results


async def get_empirical_probability(
    store: LedgerStore,
    regime: MarketRegime | str,
    alignment_score: float,
    adx_value: float,
    volume_ratio: float,
) -> EmpiricalProbability:
    """Historical win rate and expectancy of resolved signals sharing this condition hash.

    Below the median threshold (150 samples) the median PnL of wins and
    losses is used so a few outliers cannot distort expectancy. A result
    is reliable only with 50+ samples covering both BUY and SELL.
    """
    settings = get_settings()
    min_samples = settings.min_empirical_samples
    median_threshold = settings.median_sample_threshold

    cond = compute_condition_hash(regime, alignment_score, adx_value, volume_ratio)
    label = cond.label

    try:
        resolved = await store.find(LedgerQuery(condition_hash=cond.hash, resolved=True))
    except Exception as e:
        logger.error("Error fetching empirical probability for %s: %s", label, e)
        return EmpiricalProbability(
            available=False,
            condition_hash=cond.hash,
            condition_label=label,
            message=f"Error fetching empirical data: {e}",
        )

    sample_size = len(resolved)
    if sample_size == 0:
        return EmpiricalProbability(
            available=False,
            condition_hash=cond.hash,
            condition_label=label,
            message=f"No historical data for condition: {label}",
        )

    wins = [r.pnl_percent or 0.0 for r in resolved if r.status == SignalStatus.TARGET_HIT]
    losses = [r.pnl_percent or 0.0 for r in resolved if r.status == SignalStatus.STOP_HIT]
    win_rate = round(len(wins) / sample_size * 100)

    method = "median" if sample_size < median_threshold else "mean"
    reduce = np.median if method == "median" else np.mean
    avg_win = float(reduce(wins)) if wins else 0.0
    avg_loss = abs(float(reduce(losses))) if losses else 0.0

    wr = win_rate / 100
    expectancy = wr * avg_win - (1 - wr) * avg_loss

    diverse = len({r.direction for r in resolved}) >= 2
    enough = sample_size >= min_samples
    reliable = enough and diverse

    if reliable:
        message = (
            f"Empirical probability from {sample_size} samples: {win_rate}% win rate "
            f"(expectancy[{method}]: {expectancy:.3f}%)"
        )
    else:
        note = " (lacks direction diversity - all same direction)" if enough and not diverse else ""
        message = (
            f"Low reliability ({sample_size}/{min_samples} samples). Win rate {win_rate}%{note}. "
            f"Expectancy[{method}]: {expectancy:.3f}%"
        )

    return EmpiricalProbability(
        available=True,
        condition_hash=cond.hash,
        condition_label=label,
        sample_size=sample_size,
        win_rate=win_rate,
        avg_win_pnl=round(avg_win, 2),
        avg_loss_pnl=round(avg_loss, 2),
        expectancy=round(expectancy, 3),
        reliable=reliable,
        method=method,
        message=message,
    )


async def get_signal_stats(store: LedgerStore) -> dict:
    """Ledger-wide statistics: totals, win rate, confidence buckets and top condition hashes."""
    min_samples = get_settings().min_empirical_samples
    empty = {
        "total": 0,
        "resolved": 0,
        "pending": 0,
        "win_rate": 0,
        "avg_pnl": 0.0,
        "by_regime": [],
        "by_confidence_bucket": [],
        "by_condition_hash": [],
        "condition_hash_coverage": {
            "total_hashes": 0,
            "reliable_hashes": 0,
            "min_samples_required": min_samples,
        },
        "ready": False,
    }
    try:
        records = await store.find()
    except Exception as e:
        logger.error("Error fetching signal stats: %s", e)
        return empty

    df = _records_frame(records)
    if df.empty:
        return empty

    total = len(df)
    pending = int((df["status"] == SignalStatus.PENDING.value).sum())
    resolved_df = df[df["status"] != SignalStatus.PENDING.value]
    resolved = len(resolved_df)
    wins = int(df["win"].sum())
    pnl = df["pnl_percent"].dropna()

    by_bucket = []
    if resolved:
        # top bucket is closed so a confidence of 100 lands in 90-100
        scores = resolved_df["confidence"].clip(upper=CONFIDENCE_BUCKETS[-1] - 1e-9)
        buckets = pd.cut(scores, bins=CONFIDENCE_BUCKETS, right=False)
        for interval, group in resolved_df.groupby(buckets, observed=True):
            group_pnl = group["pnl_percent"].dropna()
            by_bucket.append({
                "bucket": f"{interval.left:g}-{interval.right:g}",
                "total": len(group),
                "win_rate": round(group["win"].sum() / len(group) * 100),
                "avg_pnl": round(float(group_pnl.mean()), 2) if len(group_pnl) else 0.0,
            })

    by_hash = []
    if resolved:
        hashes = await store.aggregate(
            ["condition_hash", "regime", "alignment_bucket", "adx_bucket", "volume_bucket"],
            LedgerQuery(resolved=True),
        )
        for g in hashes[:TOP_CONDITION_HASHES]:
            by_hash.append({
                "hash": g["condition_hash"],
                "label": f"{g['regime']}|{g['alignment_bucket']}|{g['adx_bucket']}|{g['volume_bucket']}",
                "total": g["total"],
                "win_rate": round(g["wins"] / g["total"] * 100),
                "avg_pnl": round(g["avg_pnl"] or 0.0, 2),
                "reliable": g["total"] >= min_samples,
            })

    return {
        "total": total,
        "resolved": resolved,
        "pending": pending,
        "win_rate": round(wins / resolved * 100) if resolved else 0,
        "avg_pnl": round(float(pnl.mean()), 2) if len(pnl) else 0.0,
        "by_regime": [asdict(r) for r in await get_condition_win_rates(store)],
        "by_confidence_bucket": by_bucket,
        "by_condition_hash": by_hash,
        "condition_hash_coverage": {
            "total_hashes": len(by_hash),
            "reliable_hashes": sum(1 for h in by_hash if h["reliable"]),
            "min_samples_required": min_samples,
        },
        "ready": resolved >= STATS_READY_RESOLVED,
    }
