"""Outcome ledger, condition-hash empirical probabilities and calibration."""

from screener.tracking.condition_hash import ConditionHash, compute_condition_hash
from screener.tracking.ledger import InMemoryLedgerStore, SignalRecord, SignalStatus, SqlLedgerStore

__all__ = [
    "ConditionHash",
    "compute_condition_hash",
    "InMemoryLedgerStore",
    "SignalRecord",
    "SignalStatus",
    "SqlLedgerStore",
]
