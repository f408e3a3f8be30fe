"""Tests for signal recording, lazy outcome resolution and ledger stats."""

from datetime import date, timedelta

import pandas as pd
import pytest

from screener.features.regime import MarketRegime
from screener.tracking.ledger import InMemoryLedgerStore, LedgerQuery, SignalStatus
from screener.tracking.signal_tracker import (
    SignalContext,
    adx_regime,
    get_condition_win_rates,
    get_signal_stats,
    resolve_record,
    save_signal,
    update_signal_outcomes,
)

SIGNAL_DATE = date(2025, 3, 3)


def _ctx(**overrides) -> SignalContext:
    base = dict(
        symbol="AAA",
        direction="BUY",
        confidence=72,
        base_confidence=64,
        regime=MarketRegime.TRENDING_STRONG,
        alignment_score=82,
        adx_value=31.0,
        volume_ratio=1.3,
        volume_confirmed=True,
        rsi_value=61.0,
        entry_price=100.0,
        target_price=105.0,
        stop_loss=97.0,
        signal_date=SIGNAL_DATE,
    )
    base.update(overrides)
    return SignalContext(**base)


def _bars(rows: list[tuple[date, float, float]]) -> pd.DataFrame:
    return pd.DataFrame({
        "date": [d for d, _, _ in rows],
        "open": [(h + l) / 2 for _, h, l in rows],
        "high": [h for _, h, _ in rows],
        "low": [l for _, _, l in rows],
        "close": [(h + l) / 2 for _, h, l in rows],
        "volume": [1_000_000.0] * len(rows),
    })


def _day(n: int) -> date:
    return SIGNAL_DATE + timedelta(days=n)


class BrokenStore:
    async def upsert(self, record):
        raise ConnectionError("db down")

    async def save(self, record):
        raise ConnectionError("db down")

    async def find(self, query=None):
        raise ConnectionError("db down")

    async def aggregate(self, group_by, query=None):
        raise ConnectionError("db down")


@pytest.mark.parametrize("value,label", [(25, "strong"), (24.9, "weak"), (15, "weak"), (14.9, "choppy")])
def test_adx_regime(value, label):
    assert adx_regime(value) == label


class TestSaveSignal:
    @pytest.mark.asyncio
    async def test_records_context_and_hash(self):
        store = InMemoryLedgerStore()
        record = await save_signal(store, _ctx(extra={"clarity_score": 100}))
        assert record is not None
        assert record.id == 1
        assert record.regime == "TRENDING_STRONG"
        assert record.adx_regime == "strong"
        assert (record.alignment_bucket, record.adx_bucket, record.volume_bucket) == ("HIGH", "STRONG", "NORMAL")
        assert record.status == SignalStatus.PENDING
        assert record.context == {"clarity_score": 100}

    @pytest.mark.asyncio
    async def test_same_day_updates_in_place(self):
        store = InMemoryLedgerStore()
        first = await save_signal(store, _ctx(confidence=70))
        second = await save_signal(store, _ctx(confidence=80))
        assert len(store) == 1
        assert second.id == first.id
        assert (await store.find())[0].confidence == 80

        await save_signal(store, _ctx(signal_date=_day(1)))
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(self):
        assert await save_signal(BrokenStore(), _ctx()) is None


class TestResolveRecord:
    def test_buy_target_hit(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        history = _bars([(SIGNAL_DATE, 110, 90), (_day(1), 103, 99), (_day(2), 106, 101)])
        assert resolve_record(record, history, _day(3), 10) is True
        assert record.status == SignalStatus.TARGET_HIT
        assert record.outcome_price == 105.0
        assert record.outcome_date == _day(2)
        assert record.pnl_percent == pytest.approx(5.0)
        assert record.days_to_outcome == 2

    def test_buy_stop_hit(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        history = _bars([(_day(1), 101, 96)])
        assert resolve_record(record, history, _day(1), 10) is True
        assert record.status == SignalStatus.STOP_HIT
        assert record.pnl_percent == pytest.approx(-3.0)

    def test_target_checked_before_stop_on_same_bar(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        resolve_record(record, _bars([(_day(1), 106, 96)]), _day(1), 10)
        assert record.status == SignalStatus.TARGET_HIT

    def test_sell_mirrors_levels(self, make_record):
        target = make_record(direction="SELL", target_price=95.0, stop_loss=103.0)
        resolve_record(target, _bars([(_day(1), 100, 94)]), _day(1), 10)
        assert target.status == SignalStatus.TARGET_HIT
        assert target.pnl_percent == pytest.approx(5.0)

        stop = make_record(direction="SELL", target_price=95.0, stop_loss=103.0)
        resolve_record(stop, _bars([(_day(1), 104, 99)]), _day(1), 10)
        assert stop.status == SignalStatus.STOP_HIT
        assert stop.pnl_percent == pytest.approx(-3.0)

    def test_expiry(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        assert resolve_record(record, _bars([(_day(1), 106, 96)]), _day(11), 10) is True
        assert record.status == SignalStatus.EXPIRED
        assert record.pnl_percent == 0.0
        assert record.days_to_outcome == 11

    def test_not_yet_expired_stays_pending(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        assert resolve_record(record, _bars([(_day(1), 101, 99)]), _day(10), 10) is False
        assert record.status == SignalStatus.PENDING

    def test_signal_day_bar_ignored(self, make_record):
        record = make_record(signal_date=SIGNAL_DATE)
        assert resolve_record(record, _bars([(SIGNAL_DATE, 120, 80)]), SIGNAL_DATE, 10) is False

    def test_resolved_records_are_final(self, make_record):
        record = make_record(status=SignalStatus.TARGET_HIT)
        assert resolve_record(record, _bars([(_day(1), 90, 80)]), _day(20), 10) is False
        assert record.status == SignalStatus.TARGET_HIT


class TestUpdateOutcomes:
    @pytest.mark.asyncio
    async def test_resolves_only_matching_pending(self, make_record):
        store = InMemoryLedgerStore([
            make_record(symbol="AAA"),
            make_record(symbol="AAA", signal_date=_day(-30)),
            make_record(symbol="BBB"),
        ])
        history = _bars([(_day(1), 106, 99)])
        changed = await update_signal_outcomes(store, "AAA", history, today=_day(2))
        assert changed == 2

        statuses = {(r.symbol, r.signal_date): r.status for r in await store.find()}
        assert statuses[("AAA", SIGNAL_DATE)] == SignalStatus.TARGET_HIT
        assert statuses[("AAA", _day(-30))] == SignalStatus.EXPIRED
        assert statuses[("BBB", SIGNAL_DATE)] == SignalStatus.PENDING

        # Already resolved: nothing left to do
        assert await update_signal_outcomes(store, "AAA", history, today=_day(2)) == 0

    @pytest.mark.asyncio
    async def test_storage_failure_returns_zero(self):
        assert await update_signal_outcomes(BrokenStore(), "AAA", _bars([])) == 0


class TestStats:
    @pytest.mark.asyncio
    async def test_condition_win_rates(self, make_record):
        records = [
            make_record(symbol=f"W{i}", status=SignalStatus.TARGET_HIT, pnl_percent=5.0) for i in range(3)
        ] + [
            make_record(symbol="L0", status=SignalStatus.STOP_HIT, pnl_percent=-3.0),
            make_record(symbol="P0"),
            make_record(symbol="R0", regime="RANGE", adx_value=10.0, volume_confirmed=False,
                        status=SignalStatus.STOP_HIT, pnl_percent=-2.0),
        ]
        store = InMemoryLedgerStore(records)
        query = LedgerQuery(direction="BUY")
        rates = await get_condition_win_rates(store, query)

        assert query.resolved is None
        assert [r.condition for r in rates] == [
            "TRENDING_STRONG|strong|vol:true",
            "RANGE|choppy|vol:false",
        ]
        top = rates[0]
        assert (top.total, top.wins, top.losses, top.win_rate) == (4, 3, 1, 75)
        assert top.avg_pnl == 3.0

    @pytest.mark.asyncio
    async def test_condition_win_rates_storage_failure(self):
        assert await get_condition_win_rates(BrokenStore()) == []

    @pytest.mark.asyncio
    async def test_signal_stats(self, make_record):
        records = [
            make_record(symbol="A", confidence=72, status=SignalStatus.TARGET_HIT, pnl_percent=5.0),
            make_record(symbol="B", confidence=74, status=SignalStatus.STOP_HIT, pnl_percent=-3.0),
            make_record(symbol="C", confidence=58, status=SignalStatus.EXPIRED, pnl_percent=0.0),
            make_record(symbol="D", confidence=90),
        ]
        stats = await get_signal_stats(InMemoryLedgerStore(records))

        assert stats["total"] == 4
        assert stats["resolved"] == 3
        assert stats["pending"] == 1
        assert stats["win_rate"] == 33
        assert stats["avg_pnl"] == pytest.approx(0.67)
        assert stats["ready"] is False

        buckets = {b["bucket"]: b for b in stats["by_confidence_bucket"]}
        assert set(buckets) == {"55-60", "70-75"}
        assert buckets["70-75"]["total"] == 2
        assert buckets["70-75"]["win_rate"] == 50

        assert len(stats["by_condition_hash"]) == 1
        assert stats["by_condition_hash"][0]["label"] == "TRENDING_STRONG|HIGH|STRONG|NORMAL"
        assert stats["by_condition_hash"][0]["reliable"] is False
        assert stats["condition_hash_coverage"] == {
            "total_hashes": 1, "reliable_hashes": 0, "min_samples_required": 50,
        }

    @pytest.mark.asyncio
    async def test_full_confidence_lands_in_top_bucket(self, make_record):
        records = [
            make_record(symbol="A", confidence=100, status=SignalStatus.TARGET_HIT, pnl_percent=5.0),
            make_record(symbol="B", confidence=92, status=SignalStatus.STOP_HIT, pnl_percent=-3.0),
        ]
        stats = await get_signal_stats(InMemoryLedgerStore(records))

        [bucket] = stats["by_confidence_bucket"]
        assert bucket["bucket"] == "90-100"
        assert bucket["total"] == 2
        assert bucket["win_rate"] == 50

    @pytest.mark.asyncio
    async def test_empty_stats(self):
        stats = await get_signal_stats(InMemoryLedgerStore())
        assert stats["total"] == 0
        assert stats["by_confidence_bucket"] == []
        assert stats["ready"] is False

    @pytest.mark.asyncio
    async def test_stats_storage_failure(self):
        stats = await get_signal_stats(BrokenStore())
        assert stats["total"] == 0
