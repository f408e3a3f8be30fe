"""Outcome ledger: persisted signal records and their storage backends.

A record is keyed by (symbol, signal_date): re-analysing a symbol on the
same calendar day updates the existing row instead of adding a second one.
Resolution moves a record out of PENDING exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Protocol

import pandas as pd
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from screener.db.models import SignalRecordRow
from screener.db.session import get_session

logger = logging.getLogger(__name__)


class SignalStatus(str, Enum):
    PENDING = "PENDING"
    TARGET_HIT = "TARGET_HIT"
    STOP_HIT = "STOP_HIT"
    EXPIRED = "EXPIRED"


@dataclass
class SignalRecord:
    symbol: str
    signal_date: date
    direction: str  # BUY | SELL
    confidence: float
    base_confidence: float
    regime: str
    alignment_score: float
    adx_value: float
    adx_regime: str  # strong | weak | choppy
    volume_ratio: float
    volume_confirmed: bool
    rsi_value: float
    condition_hash: str
    alignment_bucket: str
    adx_bucket: str
    volume_bucket: str
    entry_price: float
    target_price: float
    stop_loss: float
    status: SignalStatus = SignalStatus.PENDING
    outcome_date: date | None = None
    outcome_price: float | None = None
    pnl_percent: float | None = None
    days_to_outcome: int | None = None
    context: dict = field(default_factory=dict)
    id: int | None = None

    @property
    def key(self) -> tuple[str, date]:
        return self.symbol, self.signal_date

    @property
    def resolved(self) -> bool:
        return self.status != SignalStatus.PENDING

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class LedgerQuery:
    """Filters for ledger reads. None means "don't filter on this"."""

    symbol: str | None = None
    status: SignalStatus | None = None
    resolved: bool | None = None
    condition_hash: str | None = None
    direction: str | None = None
    regime: str | None = None
    adx_regime: str | None = None
    volume_confirmed: bool | None = None
    min_confidence: float | None = None
    max_confidence: float | None = None

    def matches(self, rec: SignalRecord) -> bool:
        if self.symbol is not None and rec.symbol != self.symbol:
            return False
        if self.status is not None and rec.status != self.status:
            return False
        if self.resolved is not None and rec.resolved != self.resolved:
            return False
        if self.condition_hash is not None and rec.condition_hash != self.condition_hash:
            return False
        if self.direction is not None and rec.direction != self.direction:
            return False
        if self.regime is not None and rec.regime != self.regime:
            return False
        if self.adx_regime is not None and rec.adx_regime != self.adx_regime:
            return False
        if self.volume_confirmed is not None and rec.volume_confirmed != self.volume_confirmed:
            return False
        if self.min_confidence is not None and rec.confidence < self.min_confidence:
            return False
        if self.max_confidence is not None and rec.confidence > self.max_confidence:
            return False
        return True


class LedgerStore(Protocol):
    async def upsert(self, record: SignalRecord) -> bool:
        """Insert, or update the same-day row. Returns True when a row was updated."""
        ...

    async def save(self, record: SignalRecord) -> None:
        """Persist changes to an existing record (outcome resolution)."""
        ...

    async def find(self, query: LedgerQuery | None = None) -> list[SignalRecord]: ...

    async def aggregate(
        self, group_by: list[str], query: LedgerQuery | None = None
    ) -> list[dict]:
        """Per-group total, wins, losses and mean pnl_percent, largest groups first."""
        ...


def aggregate_records(records: list[SignalRecord], group_by: list[str]) -> list[dict]:
    if not records:
        return []
    df = pd.DataFrame([r.to_dict() for r in records])
    df["win"] = df["status"] == SignalStatus.TARGET_HIT.value
    df["loss"] = df["status"] == SignalStatus.STOP_HIT.value
    grouped = (
        df.groupby(group_by)
        .agg(
            total=("status", "size"),
            wins=("win", "sum"),
            losses=("loss", "sum"),
            avg_pnl=("pnl_percent", "mean"),
        )
        .reset_index()
        .sort_values("total", ascending=False, kind="stable")
    )
    out = []
    for row in grouped.to_dict("records"):
        row["total"] = int(row["total"])
        row["wins"] = int(row["wins"])
        row["losses"] = int(row["losses"])
        row["avg_pnl"] = None if pd.isna(row["avg_pnl"]) else float(row["avg_pnl"])
        out.append(row)
    return out


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryLedgerStore:
    """Dict-backed ledger keyed by (symbol, signal_date)."""

    def __init__(self, records: list[SignalRecord] | None = None):
        self._rows: dict[tuple[str, date], SignalRecord] = {}
        self._next_id = 1
        for rec in records or []:
            self._insert(rec)

    def _insert(self, record: SignalRecord) -> None:
        if record.id is None:
            record.id = self._next_id
            self._next_id += 1
        self._rows[record.key] = record

    async def upsert(self, record: SignalRecord) -> bool:
        existing = self._rows.get(record.key)
        if existing is not None:
            record.id = existing.id
            self._rows[record.key] = record
            return True
        self._insert(record)
        return False

    async def save(self, record: SignalRecord) -> None:
        if record.key not in self._rows:
            raise KeyError(f"No ledger row for {record.symbol} on {record.signal_date}")
        self._rows[record.key] = record

    async def find(self, query: LedgerQuery | None = None) -> list[SignalRecord]:
        query = query or LedgerQuery()
        return [r for r in self._rows.values() if query.matches(r)]

    async def aggregate(
        self, group_by: list[str], query: LedgerQuery | None = None
    ) -> list[dict]:
        return aggregate_records(await self.find(query), group_by)

    def __len__(self) -> int:
        return len(self._rows)


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_RECORD_FIELDS = [f.name for f in fields(SignalRecord) if f.name not in ("id", "status")]


def _row_to_record(row: SignalRecordRow) -> SignalRecord:
    data = {name: getattr(row, name) for name in _RECORD_FIELDS}
    data["context"] = data.get("context") or {}
    return SignalRecord(id=row.id, status=SignalStatus(row.status), **data)


def _apply_record(row: SignalRecordRow, record: SignalRecord) -> None:
    for name in _RECORD_FIELDS:
        setattr(row, name, getattr(record, name))
    row.status = record.status.value


class SqlLedgerStore:
    """Ledger on the signal_records table via SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._factory = session_factory

    async def upsert(self, record: SignalRecord) -> bool:
        async with get_session(self._factory) as session:
            row = (await session.execute(
                select(SignalRecordRow).where(
                    SignalRecordRow.symbol == record.symbol,
                    SignalRecordRow.signal_date == record.signal_date,
                )
            )).scalar_one_or_none()
            updated = row is not None
            if row is None:
                row = SignalRecordRow()
                session.add(row)
            _apply_record(row, record)
            await session.flush()
            record.id = row.id
        return updated

    async def save(self, record: SignalRecord) -> None:
        async with get_session(self._factory) as session:
            row = (await session.execute(
                select(SignalRecordRow).where(
                    SignalRecordRow.symbol == record.symbol,
                    SignalRecordRow.signal_date == record.signal_date,
                )
            )).scalar_one_or_none()
            if row is None:
                raise KeyError(f"No ledger row for {record.symbol} on {record.signal_date}")
            _apply_record(row, record)

    @staticmethod
    def _filtered(stmt, query: LedgerQuery):
        if query.symbol is not None:
            stmt = stmt.where(SignalRecordRow.symbol == query.symbol)
        if query.status is not None:
            stmt = stmt.where(SignalRecordRow.status == query.status.value)
        if query.resolved is True:
            stmt = stmt.where(SignalRecordRow.status != SignalStatus.PENDING.value)
        elif query.resolved is False:
            stmt = stmt.where(SignalRecordRow.status == SignalStatus.PENDING.value)
        if query.condition_hash is not None:
            stmt = stmt.where(SignalRecordRow.condition_hash == query.condition_hash)
        if query.direction is not None:
            stmt = stmt.where(SignalRecordRow.direction == query.direction)
        if query.regime is not None:
            stmt = stmt.where(SignalRecordRow.regime == query.regime)
        if query.adx_regime is not None:
            stmt = stmt.where(SignalRecordRow.adx_regime == query.adx_regime)
        if query.volume_confirmed is not None:
            stmt = stmt.where(SignalRecordRow.volume_confirmed == query.volume_confirmed)
        if query.min_confidence is not None:
            stmt = stmt.where(SignalRecordRow.confidence >= query.min_confidence)
        if query.max_confidence is not None:
            stmt = stmt.where(SignalRecordRow.confidence <= query.max_confidence)
        return stmt

    async def find(self, query: LedgerQuery | None = None) -> list[SignalRecord]:
        stmt = self._filtered(select(SignalRecordRow), query or LedgerQuery())
        async with get_session(self._factory) as session:
            rows = (await session.execute(stmt.order_by(SignalRecordRow.id))).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def aggregate(
        self, group_by: list[str], query: LedgerQuery | None = None
    ) -> list[dict]:
        keys = [getattr(SignalRecordRow, name) for name in group_by]
        total = func.count(SignalRecordRow.id).label("total")
        stmt = select(
            *keys,
            total,
            func.sum(case((SignalRecordRow.status == SignalStatus.TARGET_HIT.value, 1), else_=0)).label("wins"),
            func.sum(case((SignalRecordRow.status == SignalStatus.STOP_HIT.value, 1), else_=0)).label("losses"),
            func.avg(SignalRecordRow.pnl_percent).label("avg_pnl"),
        )
        stmt = self._filtered(stmt, query or LedgerQuery()).group_by(*keys).order_by(total.desc())

        async with get_session(self._factory) as session:
            result = await session.execute(stmt)
            out = []
            for row in result.mappings():
                item = dict(row)
                item["total"] = int(item["total"])
                item["wins"] = int(item["wins"] or 0)
                item["losses"] = int(item["losses"] or 0)
                item["avg_pnl"] = None if item["avg_pnl"] is None else float(item["avg_pnl"])
                out.append(item)
            return out
