"""Condition hashing: bucket the market context of a signal into a short key.

Four variables, three buckets each, so at most 3^4 = 81 distinct hashes.
The five-way regime is compressed to TREND/RANGE/VOLATILE for the hash
only; the full regime is kept on the ledger row for other uses.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from screener.features.regime import MarketRegime


@dataclass(frozen=True)
class ConditionHash:
    hash: str
    compressed_regime: str
    alignment_bucket: str
    adx_bucket: str
    volume_bucket: str

    @property
    def label(self) -> str:
        return (
            f"{self.compressed_regime}|{self.alignment_bucket}|"
            f"{self.adx_bucket}|{self.volume_bucket}"
        )


def bucket_alignment(score: float) -> str:
    if score >= 70:
        return "HIGH"
    if score >= 40:
        return "MID"
    return "LOW"


def bucket_adx(adx: float) -> str:
    if adx >= 25:
        return "STRONG"
    if adx >= 15:
        return "MODERATE"
    return "WEAK"


def bucket_volume(ratio: float) -> str:
    if ratio >= 1.5:
        return "HIGH"
    if ratio >= 1.0:
        return "NORMAL"
    return "LOW"


def compress_regime(regime: MarketRegime | str) -> str:
    value = MarketRegime(regime)
    if value in (MarketRegime.TRENDING_STRONG, MarketRegime.TRENDING_WEAK):
        return "TREND"
    if value in (MarketRegime.VOLATILE, MarketRegime.EVENT_DRIVEN):
        return "VOLATILE"
    return "RANGE"


def compute_condition_hash(
    regime: MarketRegime | str,
    alignment_score: float,
    adx_value: float,
    volume_ratio: float,
) -> ConditionHash:
    compressed = compress_regime(regime)
    alignment = bucket_alignment(alignment_score)
    adx = bucket_adx(adx_value)
    volume = bucket_volume(volume_ratio)

    # md5 is only a stable bucketing key here
    raw = f"{compressed}|{alignment}|{adx}|{volume}"
    digest = hashlib.md5(raw.encode()).hexdigest()[:12]

    return ConditionHash(
        hash=digest,
        compressed_regime=compressed,
        alignment_bucket=alignment,
        adx_bucket=adx,
        volume_bucket=volume,
    )
