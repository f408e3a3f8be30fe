"""Tests for condition hashing."""

import hashlib
import itertools

import pytest

from screener.features.regime import MarketRegime
from screener.tracking.condition_hash import (
    bucket_adx,
    bucket_alignment,
    bucket_volume,
    compress_regime,
    compute_condition_hash,
)


@pytest.mark.parametrize("score,bucket", [(70, "HIGH"), (69.999, "MID"), (40, "MID"), (39.9, "LOW")])
def test_alignment_buckets(score, bucket):
    assert bucket_alignment(score) == bucket


@pytest.mark.parametrize("value,bucket", [(25, "STRONG"), (24.9, "MODERATE"), (15, "MODERATE"), (14.9, "WEAK")])
def test_adx_buckets(value, bucket):
    assert bucket_adx(value) == bucket


@pytest.mark.parametrize("ratio,bucket", [(1.5, "HIGH"), (1.49, "NORMAL"), (1.0, "NORMAL"), (0.99, "LOW")])
def test_volume_buckets(ratio, bucket):
    assert bucket_volume(ratio) == bucket


def test_regime_compression():
    assert compress_regime(MarketRegime.TRENDING_STRONG) == "TREND"
    assert compress_regime("TRENDING_WEAK") == "TREND"
    assert compress_regime(MarketRegime.EVENT_DRIVEN) == "VOLATILE"
    assert compress_regime(MarketRegime.VOLATILE) == "VOLATILE"
    assert compress_regime(MarketRegime.RANGE) == "RANGE"


def test_unknown_regime_rejected():
    with pytest.raises(ValueError):
        compress_regime("SIDEWAYS")


def test_hash_is_truncated_md5_of_label():
    cond = compute_condition_hash(MarketRegime.TRENDING_STRONG, 85, 30, 1.6)
    assert cond.label == "TREND|HIGH|STRONG|HIGH"
    assert cond.hash == hashlib.md5(b"TREND|HIGH|STRONG|HIGH").hexdigest()[:12]
    assert len(cond.hash) == 12


def test_same_buckets_share_a_hash():
    a = compute_condition_hash("TRENDING_STRONG", 71, 26, 1.1)
    b = compute_condition_hash("TRENDING_WEAK", 99, 40, 1.4)
    assert a.hash == b.hash


def test_at_most_81_hashes():
    hashes = {
        compute_condition_hash(regime, align, adx, vol).hash
        for regime, align, adx, vol in itertools.product(
            list(MarketRegime), (10, 50, 90), (5, 20, 30), (0.5, 1.2, 2.0)
        )
    }
    assert len(hashes) == 81
