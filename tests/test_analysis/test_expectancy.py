"""Tests for the expectancy filter."""

import math

from screener.analysis.expectancy import evaluate_expectancy
from screener.tracking.signal_tracker import EmpiricalProbability


def _empirical(**overrides) -> EmpiricalProbability:
    base = dict(
        available=True,
        condition_hash="abc123def456",
        condition_label="TREND|HIGH|STRONG|NORMAL",
        sample_size=80,
        win_rate=60,
        avg_win_pnl=4.0,
        avg_loss_pnl=2.0,
        expectancy=1.6,
        reliable=True,
    )
    base.update(overrides)
    return EmpiricalProbability(**base)


def test_no_data_is_accepted():
    empirical = EmpiricalProbability(
        available=False, condition_hash="x", condition_label="RANGE|LOW|WEAK|LOW"
    )
    result = evaluate_expectancy(empirical)
    assert result.accepted is True
    assert result.data_reliable is False
    assert result.details == "Condition: RANGE|LOW|WEAK|LOW | Samples: 0 | Status: Accumulating"


def test_unreliable_negative_is_accepted_with_warning():
    result = evaluate_expectancy(_empirical(reliable=False, sample_size=20, expectancy=-0.5))
    assert result.accepted is True
    assert result.reason.startswith("Low-sample warning: expectancy -0.500% from 20 samples")
    assert result.details.endswith("Enforced: NO")


def test_unreliable_positive():
    result = evaluate_expectancy(_empirical(reliable=False, sample_size=20))
    assert result.accepted is True
    assert result.reason == "Preliminary data positive: expectancy 1.600% from 20 samples"


def test_reliable_positive_accepted():
    result = evaluate_expectancy(_empirical())
    assert result.accepted is True
    assert result.risk_reward_ratio == 2.0
    assert result.reason == "ACCEPTED: Expectancy 1.600% | WR: 60% | R:R: 2.00 (80 samples)"
    assert result.details.endswith("| ACCEPTED")


def test_reliable_negative_rejected():
    result = evaluate_expectancy(_empirical(win_rate=63, avg_win_pnl=1.0, avg_loss_pnl=3.0, expectancy=-0.48))
    assert result.accepted is False
    assert result.reason.startswith("REJECTED: Negative expectancy -0.480% (80 samples)")


def test_zero_expectancy_rejected():
    assert evaluate_expectancy(_empirical(expectancy=0.0)).accepted is False


def test_fragile_risk_reward_rejected():
    result = evaluate_expectancy(_empirical(win_rate=70, avg_win_pnl=1.0, avg_loss_pnl=1.5, expectancy=0.25))
    assert result.accepted is False
    assert result.details.endswith("REJECTED (R:R)")


def test_no_losses_is_infinite_risk_reward():
    result = evaluate_expectancy(_empirical(win_rate=100, avg_loss_pnl=0.0, expectancy=4.0))
    assert result.accepted is True
    assert math.isinf(result.risk_reward_ratio)
