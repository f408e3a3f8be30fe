"""Expectancy filter: accept or reject a signal on its condition's track record.

Expectancy = WinRate x AvgWin - LossRate x AvgLoss, looked up per condition
hash. A 63% win rate with negative expectancy is worse than a 55% win rate
with positive expectancy. The filter only rejects once the condition's
sample is reliable; before that it accepts and attaches a warning.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from screener.tracking.signal_tracker import EmpiricalProbability

logger = logging.getLogger(__name__)

MIN_EXPECTANCY = 0.0
MIN_RISK_REWARD = 0.8


@dataclass
class ExpectancyResult:
    accepted: bool
    expectancy: float
    win_rate: float
    avg_win_pnl: float
    avg_loss_pnl: float
    risk_reward_ratio: float
    data_reliable: bool
    reason: str
    details: str


def _risk_reward(avg_win: float, avg_loss: float) -> float:
    if avg_loss > 0:
        return avg_win / avg_loss
    return math.inf if avg_win > 0 else 0.0


def evaluate_expectancy(empirical: EmpiricalProbability) -> ExpectancyResult:
    if not empirical.available or empirical.sample_size == 0:
        return ExpectancyResult(
            accepted=True,
            expectancy=0.0,
            win_rate=0.0,
            avg_win_pnl=0.0,
            avg_loss_pnl=0.0,
            risk_reward_ratio=0.0,
            data_reliable=False,
            reason="No empirical data - trade allowed (accumulating samples)",
            details=f"Condition: {empirical.condition_label} | Samples: 0 | Status: Accumulating",
        )

    e = empirical.expectancy
    rr = _risk_reward(empirical.avg_win_pnl, empirical.avg_loss_pnl)
    rr_out = rr if math.isinf(rr) else round(rr, 2)
    base = (
        f"Condition: {empirical.condition_label} | WR: {empirical.win_rate:g}% | "
        f"AvgWin: {empirical.avg_win_pnl:g}% | AvgLoss: -{empirical.avg_loss_pnl:g}% | "
        f"E: {e:.3f}%"
    )

    if not empirical.reliable:
        if e <= MIN_EXPECTANCY:
            reason = (
                f"Low-sample warning: expectancy {e:.3f}% from {empirical.sample_size} "
                "samples (need 50+ for enforcement)"
            )
        else:
            reason = (
                f"Preliminary data positive: expectancy {e:.3f}% from "
                f"{empirical.sample_size} samples"
            )
        return ExpectancyResult(
            accepted=True,
            expectancy=e,
            win_rate=empirical.win_rate,
            avg_win_pnl=empirical.avg_win_pnl,
            avg_loss_pnl=empirical.avg_loss_pnl,
            risk_reward_ratio=rr_out,
            data_reliable=False,
            reason=reason,
            details=f"{base} | Samples: {empirical.sample_size} | Enforced: NO",
        )

    tail = f"R:R: {rr:.2f} | Samples: {empirical.sample_size}"
    if e <= MIN_EXPECTANCY:
        accepted = False
        reason = (
            f"REJECTED: Negative expectancy {e:.3f}% ({empirical.sample_size} samples). "
            f"Win rate {empirical.win_rate:g}% is misleading - avg loss "
            f"({empirical.avg_loss_pnl:g}%) exceeds scaled avg win."
        )
        details = f"{base} | {tail} | REJECTED"
    elif rr < MIN_RISK_REWARD:
        accepted = False
        reason = (
            f"REJECTED: Risk/reward ratio {rr:.2f} below {MIN_RISK_REWARD} minimum. "
            f"Positive expectancy {e:.3f}% is fragile."
        )
        details = f"{base} | {tail} | REJECTED (R:R)"
    else:
        accepted = True
        reason = (
            f"ACCEPTED: Expectancy {e:.3f}% | WR: {empirical.win_rate:g}% | "
            f"R:R: {rr:.2f} ({empirical.sample_size} samples)"
        )
        details = f"{base} | {tail} | ACCEPTED"

    if not accepted:
        logger.info("Expectancy filter rejected %s: %s", empirical.condition_label, reason)

    return ExpectancyResult(
        accepted=accepted,
        expectancy=e,
        win_rate=empirical.win_rate,
        avg_win_pnl=empirical.avg_win_pnl,
        avg_loss_pnl=empirical.avg_loss_pnl,
        risk_reward_ratio=rr_out,
        data_reliable=True,
        reason=reason,
        details=details,
    )
