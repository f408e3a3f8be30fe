"""Tests for the market regime classifier."""

import pytest

from screener.features.regime import (
    DEFAULT_REGIME_WEIGHTS,
    MarketRegime,
    RegimeInput,
    classify_market_regime,
    mean_atr,
    regime_input_from_bars,
)


def _input(**overrides) -> RegimeInput:
    base = dict(adx_value=10.0, atr_current=1.0, atr_mean=1.0, volume_ratio=1.0)
    base.update(overrides)
    return RegimeInput(**base)


def test_breaking_news_wins():
    result = classify_market_regime(_input(adx_value=40, has_breaking_news=True, news_impact="high"))
    assert result.regime == MarketRegime.EVENT_DRIVEN
    assert result.confidence == 85


def test_medium_news_is_not_event_driven():
    result = classify_market_regime(_input(has_breaking_news=True, news_impact="medium"))
    assert result.regime == MarketRegime.RANGE


def test_volatile_needs_atr_and_volume():
    result = classify_market_regime(_input(atr_current=2.5, atr_mean=1.0, volume_ratio=2.0))
    assert result.regime == MarketRegime.VOLATILE
    assert result.confidence == 75  # round(2.5 * 30)

    calm_volume = classify_market_regime(_input(atr_current=2.5, atr_mean=1.0, volume_ratio=1.5))
    assert calm_volume.regime != MarketRegime.VOLATILE


def test_volatile_confidence_capped():
    result = classify_market_regime(_input(atr_current=5.0, atr_mean=1.0, volume_ratio=3.0))
    assert result.confidence == 95


@pytest.mark.parametrize("alignment,confidence", [(65, 90), (64, 70)])
def test_strong_trend_confidence_follows_alignment(alignment, confidence):
    result = classify_market_regime(_input(adx_value=25, alignment_score=alignment))
    assert result.regime == MarketRegime.TRENDING_STRONG
    assert result.confidence == confidence


def test_weak_trend_and_range():
    assert classify_market_regime(_input(adx_value=15)).regime == MarketRegime.TRENDING_WEAK
    result = classify_market_regime(_input(adx_value=14.9))
    assert result.regime == MarketRegime.RANGE
    assert result.confidence == 75


def test_zero_mean_atr_is_not_volatile():
    result = classify_market_regime(_input(atr_current=3.0, atr_mean=0.0, volume_ratio=3.0))
    assert result.regime == MarketRegime.RANGE


def test_weights_sum_to_one():
    for weights in DEFAULT_REGIME_WEIGHTS.values():
        total = (
            weights.technical + weights.pattern + weights.volume
            + weights.news + weights.fundamental
        )
        assert total == pytest.approx(1.0)


def test_mean_atr_short_history(short_ohlcv):
    assert mean_atr(short_ohlcv) == 0.0


def test_regime_from_rising_bars(rising_ohlcv):
    inp = regime_input_from_bars(rising_ohlcv, alignment_score=80)
    assert inp.adx_value >= 25
    assert inp.atr_mean > 0
    assert classify_market_regime(inp).regime == MarketRegime.TRENDING_STRONG
