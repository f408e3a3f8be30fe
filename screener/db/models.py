"""SQLAlchemy ORM models for the signal outcome ledger."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class SignalRecordRow(Base):
    """One directional signal per symbol per calendar day, plus its outcome."""

    __tablename__ = "signal_records"
    __table_args__ = (
        UniqueConstraint("symbol", "signal_date", name="uq_signal_symbol_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    signal_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    direction: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY / SELL
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    base_confidence: Mapped[float] = mapped_column(Float, nullable=False)

    # Conditions at signal time
    regime: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    alignment_score: Mapped[float] = mapped_column(Float, nullable=False)
    adx_value: Mapped[float] = mapped_column(Float, nullable=False)
    adx_regime: Mapped[str] = mapped_column(String(10), nullable=False)  # strong / weak / choppy
    volume_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    volume_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rsi_value: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)

    # Condition hash for the empirical probability lookup
    condition_hash: Mapped[str] = mapped_column(String(12), nullable=False, index=True)
    alignment_bucket: Mapped[str] = mapped_column(String(10), nullable=False)
    adx_bucket: Mapped[str] = mapped_column(String(10), nullable=False)
    volume_bucket: Mapped[str] = mapped_column(String(10), nullable=False)

    # Price levels
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    target_price: Mapped[float] = mapped_column(Float, nullable=False)
    stop_loss: Mapped[float] = mapped_column(Float, nullable=False)

    # Outcome (filled by lazy resolution)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="PENDING", index=True)
    outcome_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    outcome_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    pnl_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    days_to_outcome: Mapped[int | None] = mapped_column(Integer, nullable=True)

    context: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
