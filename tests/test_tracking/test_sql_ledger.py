"""SqlLedgerStore against a throwaway SQLite database."""

from datetime import date

import pandas as pd
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from screener.db.session import init_db
from screener.tracking.ledger import InMemoryLedgerStore, LedgerQuery, SignalStatus, SqlLedgerStore
from screener.tracking.signal_tracker import get_empirical_probability, update_signal_outcomes


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlLedgerStore(factory)
    await engine.dispose()


@pytest.mark.asyncio
async def test_upsert_is_keyed_by_symbol_and_day(store, make_record):
    assert await store.upsert(make_record(confidence=70, context={"clarity_score": 83})) is False
    assert await store.upsert(make_record(confidence=81)) is True
    await store.upsert(make_record(signal_date=date(2025, 3, 4)))

    rows = await store.find(LedgerQuery(symbol="AAA"))
    assert len(rows) == 2
    assert rows[0].confidence == 81
    assert rows[0].status == SignalStatus.PENDING
    assert rows[0].id is not None


@pytest.mark.asyncio
async def test_context_round_trips(store, make_record):
    await store.upsert(make_record(context={"clarity_score": 83, "alignment": "Strong"}))
    [row] = await store.find()
    assert row.context == {"clarity_score": 83, "alignment": "Strong"}
    assert row.signal_date == date(2025, 3, 3)


@pytest.mark.asyncio
async def test_save_requires_existing_row(store, make_record):
    with pytest.raises(KeyError):
        await store.save(make_record(symbol="GHOST"))


@pytest.mark.asyncio
async def test_filters(store, make_record):
    await store.upsert(make_record(symbol="A", direction="BUY", confidence=60))
    await store.upsert(make_record(symbol="B", direction="SELL", confidence=75,
                                   status=SignalStatus.TARGET_HIT, pnl_percent=4.0))
    await store.upsert(make_record(symbol="C", direction="SELL", confidence=90,
                                   status=SignalStatus.STOP_HIT, pnl_percent=-2.0))

    assert {r.symbol for r in await store.find(LedgerQuery(resolved=True))} == {"B", "C"}
    assert {r.symbol for r in await store.find(LedgerQuery(resolved=False))} == {"A"}
    assert {r.symbol for r in await store.find(LedgerQuery(direction="SELL", max_confidence=80))} == {"B"}
    assert {r.symbol for r in await store.find(LedgerQuery(min_confidence=75))} == {"B", "C"}
    assert {r.symbol for r in await store.find(LedgerQuery(status=SignalStatus.STOP_HIT))} == {"C"}


@pytest.mark.asyncio
async def test_aggregate_matches_in_memory(store, make_record):
    records = [
        make_record(symbol="W1", status=SignalStatus.TARGET_HIT, pnl_percent=5.0),
        make_record(symbol="W2", status=SignalStatus.TARGET_HIT, pnl_percent=3.0),
        make_record(symbol="L1", status=SignalStatus.STOP_HIT, pnl_percent=-2.0),
        make_record(symbol="R1", regime="RANGE", adx_value=10.0, volume_confirmed=False,
                    status=SignalStatus.EXPIRED, pnl_percent=0.0),
        make_record(symbol="P1"),
    ]
    for rec in records:
        await store.upsert(rec)

    group_by = ["regime", "adx_regime", "volume_confirmed"]
    query = LedgerQuery(resolved=True)
    sql = await store.aggregate(group_by, query)
    memory = await InMemoryLedgerStore(records).aggregate(group_by, query)

    assert len(sql) == len(memory) == 2
    top = sql[0]
    assert top["regime"] == "TRENDING_STRONG"
    assert (top["total"], top["wins"], top["losses"]) == (3, 2, 1)
    assert top["avg_pnl"] == pytest.approx(2.0)
    for a, b in zip(sql, memory):
        assert (a["total"], a["wins"], a["losses"]) == (b["total"], b["wins"], b["losses"])
        assert bool(a["volume_confirmed"]) == bool(b["volume_confirmed"])


@pytest.mark.asyncio
async def test_outcome_resolution_persists(store, make_record):
    await store.upsert(make_record())
    history = pd.DataFrame({
        "date": [date(2025, 3, 4)],
        "open": [101.0], "high": [106.0], "low": [100.0], "close": [105.5], "volume": [1e6],
    })
    assert await update_signal_outcomes(store, "AAA", history, today=date(2025, 3, 5)) == 1

    [row] = await store.find()
    assert row.status == SignalStatus.TARGET_HIT
    assert row.outcome_date == date(2025, 3, 4)
    assert row.pnl_percent == pytest.approx(5.0)

    empirical = await get_empirical_probability(store, row.regime, 80.0, 30.0, 1.2)
    assert empirical.available is True
    assert empirical.sample_size == 1
