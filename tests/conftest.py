"""Shared test fixtures."""

from __future__ import annotations

from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

import screener.config
from screener.config import Settings
from screener.tracking.condition_hash import compute_condition_hash
from screener.tracking.ledger import SignalRecord
from screener.tracking.signal_tracker import adx_regime


@pytest.fixture(autouse=True)
def settings(monkeypatch) -> Settings:
    """Fresh settings per test, with the screening pauses switched off."""
    s = Settings(screen_batch_pause_s=0.0, quote_pause_s=0.0, database_url="")
    monkeypatch.setattr(screener.config, "_settings", s)
    return s


def _frame(close: np.ndarray, start: date = date(2025, 1, 2)) -> pd.DataFrame:
    n = len(close)
    dates = [start + timedelta(days=i) for i in range(n)]
    return pd.DataFrame({
        "date": dates,
        "open": close,
        "high": close * 1.005,
        "low": close * 0.995,
        "close": close,
        "volume": np.full(n, 1_000_000.0),
    })


@pytest.fixture
def sample_ohlcv() -> pd.DataFrame:
    """Generate 100 days of synthetic OHLCV data."""
    np.random.seed(42)
    n = 100
    dates = [date(2025, 1, 2) + timedelta(days=i) for i in range(n)]

    close = 100 + np.cumsum(np.random.randn(n) * 1.5)
    close = np.maximum(close, 10)  # keep positive

    df = pd.DataFrame({
        "date": dates,
        "open": close + np.random.randn(n) * 0.5,
        "high": close + abs(np.random.randn(n)) * 1.0,
        "low": close - abs(np.random.randn(n)) * 1.0,
        "close": close,
        "volume": np.random.randint(500_000, 5_000_000, n).astype(float),
    })
    # Ensure high >= close >= low
    df["high"] = df[["open", "high", "close"]].max(axis=1)
    df["low"] = df[["open", "low", "close"]].min(axis=1)
    return df


@pytest.fixture
def rising_ohlcv() -> pd.DataFrame:
    """60 bars compounding +1% a day on flat volume."""
    return _frame(100 * 1.01 ** np.arange(60))


@pytest.fixture
def falling_ohlcv() -> pd.DataFrame:
    """Mirror image of rising_ohlcv: 60 accelerating down bars, 200 -> ~120."""
    return _frame(300 - 100 * 1.01 ** np.arange(60))


@pytest.fixture
def short_ohlcv() -> pd.DataFrame:
    """Too few bars for clarity scoring."""
    return _frame(100 * 1.01 ** np.arange(10))


def _make_record(**overrides) -> SignalRecord:
    regime = overrides.pop("regime", "TRENDING_STRONG")
    alignment = overrides.pop("alignment_score", 80.0)
    adx_value = overrides.pop("adx_value", 30.0)
    volume_ratio = overrides.pop("volume_ratio", 1.2)
    cond = compute_condition_hash(regime, alignment, adx_value, volume_ratio)
    fields = dict(
        symbol="AAA",
        signal_date=date(2025, 3, 3),
        direction="BUY",
        confidence=70.0,
        base_confidence=65.0,
        regime=regime,
        alignment_score=alignment,
        adx_value=adx_value,
        adx_regime=adx_regime(adx_value),
        volume_ratio=volume_ratio,
        volume_confirmed=True,
        rsi_value=60.0,
        condition_hash=cond.hash,
        alignment_bucket=cond.alignment_bucket,
        adx_bucket=cond.adx_bucket,
        volume_bucket=cond.volume_bucket,
        entry_price=100.0,
        target_price=105.0,
        stop_loss=97.0,
    )
    fields.update(overrides)
    return SignalRecord(**fields)


@pytest.fixture
def make_record():
    """Factory for ledger records; the condition hash follows the context fields."""
    return _make_record
