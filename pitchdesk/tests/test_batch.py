"""Tests for the micro-batch driver and its resumable progress cursor.

Runs against in-memory SQLite through :class:`SqlStore`, with a recording
subclass that logs every storage call and can inject failures.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pitchdesk.analyzer import InvestorAnalyzer
from pitchdesk.batch import (
    JOB_ID,
    BatchRangeError,
    batch_info,
    progressive_info,
    run_full_sweep,
    run_progressive,
    run_single_batch,
    summarize,
)
from pitchdesk.models import Base, CronProgress, Investor, MatchAnalysis
from pitchdesk.store import ProgressState, SqlStore, StoreError


class RecordingStore(SqlStore):
    """SqlStore that records calls and fails on request."""

    def __init__(self, session_factory, fail_offsets=(), fail_inserts=0):
        super().__init__(session_factory)
        self.calls: list[tuple] = []
        self.fail_offsets = set(fail_offsets)
        self.fail_inserts = fail_inserts

    def fetch_investors(self, offset, limit):
        self.calls.append(("fetch", offset))
        if offset in self.fail_offsets:
            raise StoreError(f"fetch failed at {offset}")
        return super().fetch_investors(offset, limit)

    def insert_analyses(self, rows):
        self.calls.append(("insert", len(rows)))
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise StoreError("insert failed")
        return super().insert_analyses(rows)

    def clear_analyses(self):
        self.calls.append(("clear",))
        return super().clear_analyses()

    def save_progress(self, state):
        self.calls.append(("progress", state.last_batch_processed))
        return super().save_progress(state)

    def named(self, name):
        return [c for c in self.calls if c[0] == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def store(session_factory) -> RecordingStore:
    return RecordingStore(session_factory)


@pytest.fixture()
def analyzer() -> InvestorAnalyzer:
    return InvestorAnalyzer(current_year=2025)


def seed(session_factory, n: int) -> None:
    with session_factory() as session:
        for i in range(1, n + 1):
            session.add(Investor(investor_name=f"Investor {i}", investment_score=str(i)))
        session.commit()


def analysis_count(session_factory) -> int:
    with session_factory() as session:
        return session.execute(select(func.count(MatchAnalysis.id))).scalar_one()


def progress_row(session_factory) -> CronProgress | None:
    with session_factory() as session:
        return session.get(CronProgress, JOB_ID)


# ---------------------------------------------------------------------------
# Full sweep
# ---------------------------------------------------------------------------


class TestFullSweep:
    @pytest.mark.asyncio
    async def test_cold_start_end_to_end(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0)

        assert store.named("clear") == [("clear",)]
        assert store.calls.index(("clear",)) < store.calls.index(("fetch", 0))
        assert store.named("fetch") == [("fetch", 0), ("fetch", 10), ("fetch", 20)]
        assert store.named("progress") == [("progress", 1), ("progress", 2), ("progress", 3), ("progress", 0)]

        summary = result.summary()
        assert summary["total_investors"] == 25
        assert summary["total_analyzed"] == 25
        assert summary["total_inserted"] == 25
        assert summary["total_errors"] == 0
        assert summary["batch_info"]["total_batches"] == 3
        assert result.cleared is True
        assert result.state.last_batch_processed == 0
        assert analysis_count(session_factory) == 25
        assert progress_row(session_factory).last_batch_processed == 0

    @pytest.mark.asyncio
    async def test_resumes_from_cursor_without_clearing(self, session_factory, store, analyzer):
        seed(session_factory, 100)
        store.save_progress(ProgressState(JOB_ID, 3))
        store.insert_analyses([MatchAnalysis(investor_id=1, score=1, reason="old", top_rated=False)])
        store.calls.clear()

        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0)

        assert store.named("clear") == []
        assert [c[1] for c in store.named("fetch")] == [30, 40, 50, 60, 70, 80, 90]
        assert store.named("progress")[-1] == ("progress", 0)
        assert [c[1] for c in store.named("progress")[:-1]] == [4, 5, 6, 7, 8, 9, 10]
        assert result.resumed_from == 3
        assert result.cleared is False
        assert len(result.analyses) == 70
        assert analysis_count(session_factory) == 71
        assert progress_row(session_factory).last_batch_processed == 0

    @pytest.mark.asyncio
    async def test_zero_investors_writes_nothing(self, session_factory, store, analyzer):
        result = await run_full_sweep(store, analyzer, delay=0)
        assert result.nothing_to_do is True
        assert store.calls == []
        assert progress_row(session_factory) is None

    @pytest.mark.asyncio
    async def test_explicit_state_overrides_stored_cursor(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0,
                                      state=ProgressState(JOB_ID, 2))
        assert store.named("fetch") == [("fetch", 20)]
        assert len(result.analyses) == 5
        assert result.cleared is False

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_page(self, session_factory, analyzer):
        seed(session_factory, 25)
        store = RecordingStore(session_factory, fail_offsets={10})
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0)

        assert result.batches_failed == [1]
        assert len(result.analyses) == 15
        assert store.named("progress") == [("progress", 1), ("progress", 3), ("progress", 0)]
        assert result.summary()["batch_info"]["failed_batches"] == [2]

    @pytest.mark.asyncio
    async def test_insert_failure_counted(self, session_factory, analyzer):
        seed(session_factory, 25)
        store = RecordingStore(session_factory, fail_inserts=1)
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0)

        summary = result.summary()
        assert summary["total_analyzed"] == 25
        assert summary["total_inserted"] == 15
        assert summary["total_errors"] == 10
        assert analysis_count(session_factory) == 15

    @pytest.mark.asyncio
    async def test_insert_sub_batches_keep_successful_rows(self, session_factory, analyzer):
        seed(session_factory, 10)
        store = RecordingStore(session_factory, fail_inserts=1)
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0, insert_batch_size=4)

        assert store.named("insert") == [("insert", 4), ("insert", 4), ("insert", 2)]
        assert result.total_inserted == 6
        assert result.total_errors == 4

    @pytest.mark.asyncio
    async def test_count_failure_aborts(self, analyzer):
        store = MagicMock()
        store.count_investors.side_effect = StoreError("database unreachable")
        with pytest.raises(StoreError, match="unreachable"):
            await run_full_sweep(store, analyzer, delay=0)
        store.clear_analyses.assert_not_called()

    @pytest.mark.asyncio
    async def test_progress_read_failure_starts_fresh(self, session_factory, analyzer):
        seed(session_factory, 5)
        store = RecordingStore(session_factory)
        with patch.object(store, "get_progress", side_effect=StoreError("no table")):
            result = await run_full_sweep(store, analyzer, delay=0)
        assert result.cleared is True
        assert len(result.analyses) == 5

    @pytest.mark.asyncio
    async def test_ranking_is_per_page(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_full_sweep(store, analyzer, batch_size=10, delay=0)
        # ceil(10%) of pages sized 10, 10, 5
        assert result.summary()["top_rated_count"] == 3

    @pytest.mark.asyncio
    async def test_delay_between_pages(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        with patch("pitchdesk.batch.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await run_full_sweep(store, analyzer, batch_size=10, delay=0.5)
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, store, analyzer):
        with pytest.raises(ValueError):
            await run_full_sweep(store, analyzer, batch_size=0)


# ---------------------------------------------------------------------------
# Single page
# ---------------------------------------------------------------------------


class TestSingleBatch:
    @pytest.mark.asyncio
    async def test_processes_one_page(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_single_batch(store, analyzer, batch_number=1, batch_size=10)
        summary = result.summary()
        assert summary["batch_number"] == 2
        assert summary["total_batches"] == 3
        assert summary["total_analyzed"] == 10
        assert summary["range"] == {"from": 11, "to": 20}
        assert store.named("progress") == []
        assert store.named("clear") == []
        assert progress_row(session_factory) is None

    @pytest.mark.asyncio
    async def test_last_partial_page(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_single_batch(store, analyzer, batch_number=2, batch_size=10)
        assert result.summary()["range"] == {"from": 21, "to": 25}
        assert result.summary()["total_analyzed"] == 5

    @pytest.mark.asyncio
    async def test_out_of_range(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        with pytest.raises(BatchRangeError, match="Total batches: 3"):
            await run_single_batch(store, analyzer, batch_number=3, batch_size=10)

    @pytest.mark.asyncio
    async def test_clear_existing(self, session_factory, store, analyzer):
        seed(session_factory, 5)
        await run_single_batch(store, analyzer, batch_number=0, batch_size=5)
        await run_single_batch(store, analyzer, batch_number=0, batch_size=5, clear_existing=True)
        assert analysis_count(session_factory) == 5

    @pytest.mark.asyncio
    async def test_without_clear_rows_accumulate(self, session_factory, store, analyzer):
        seed(session_factory, 5)
        await run_single_batch(store, analyzer, batch_number=0, batch_size=5)
        await run_single_batch(store, analyzer, batch_number=0, batch_size=5)
        assert analysis_count(session_factory) == 10

    @pytest.mark.asyncio
    async def test_fetch_failure_reported(self, session_factory, analyzer):
        seed(session_factory, 5)
        store = RecordingStore(session_factory, fail_offsets={0})
        result = await run_single_batch(store, analyzer, batch_number=0, batch_size=5)
        summary = result.summary()
        assert summary["success"] is False
        assert "fetch failed" in summary["error"]
        assert summary["total_analyzed"] == 0

    @pytest.mark.asyncio
    async def test_no_investors(self, store, analyzer):
        result = await run_single_batch(store, analyzer)
        assert result.nothing_to_do is True


# ---------------------------------------------------------------------------
# Progressive
# ---------------------------------------------------------------------------


class TestProgressive:
    @pytest.mark.asyncio
    async def test_stops_at_last_page(self, session_factory, store, analyzer):
        seed(session_factory, 25)
        result = await run_progressive(store, analyzer, start_batch=1, num_batches=5,
                                       batch_size=10, delay=0)
        summary = result.summary()
        assert summary["start_batch"] == 2
        assert summary["end_batch"] == 3
        assert summary["batches_processed"] == 2
        assert summary["total_processed"] == 15
        assert [b["batch_number"] for b in summary["batch_results"]] == [2, 3]
        assert all(b["success"] for b in summary["batch_results"])
        assert summary["range"] == {"from": 11, "to": 25}

    @pytest.mark.asyncio
    async def test_failed_page_in_breakdown(self, session_factory, analyzer):
        seed(session_factory, 30)
        store = RecordingStore(session_factory, fail_offsets={10})
        result = await run_progressive(store, analyzer, num_batches=3, batch_size=10, delay=0)
        breakdown = result.summary()["batch_results"]
        assert [b["success"] for b in breakdown] == [True, False, True]
        assert breakdown[1]["processed"] == 0
        assert result.summary()["failed_batches"] == 1
        assert result.summary()["total_analyzed"] == 20

    @pytest.mark.asyncio
    async def test_out_of_range(self, session_factory, store, analyzer):
        seed(session_factory, 5)
        with pytest.raises(BatchRangeError):
            await run_progressive(store, analyzer, start_batch=1, batch_size=10, delay=0)

    @pytest.mark.asyncio
    async def test_does_not_touch_cursor(self, session_factory, store, analyzer):
        seed(session_factory, 20)
        await run_progressive(store, analyzer, num_batches=2, batch_size=10, delay=0)
        assert store.named("progress") == []


# ---------------------------------------------------------------------------
# Info and summaries
# ---------------------------------------------------------------------------


class TestInfo:
    def test_batch_info(self, session_factory, store):
        seed(session_factory, 25)
        info = batch_info(store, 10)
        assert info["total_investors"] == 25
        assert info["total_batches"] == 3
        assert info["batches"][-1] == {"batch_number": 2, "from": 21, "to": 25, "size": 5}

    def test_batch_info_empty(self, store):
        info = batch_info(store, 10)
        assert info["total_batches"] == 0
        assert info["batches"] == []

    def test_progressive_info(self, session_factory, store):
        seed(session_factory, 95)
        info = progressive_info(store, batch_size=10, num_batches=4)
        assert info["total_batches"] == 10
        assert info["max_start_batch"] == 6
        assert info["recommended_batches"] == 10
        assert info["estimated_total_time"] == 8


class TestSummarize:
    def test_bands_and_average(self):
        rows = [MatchAnalysis(investor_id=i, score=s, top_rated=s >= 80)
                for i, s in enumerate([95, 80, 79, 50, 49, 0], start=1)]
        summary = summarize(rows)
        assert summary["score_distribution"] == {"high": 2, "medium": 2, "low": 2}
        assert summary["top_rated_count"] == 2
        assert summary["average_score"] == 59  # 353 / 6 = 58.83

    def test_empty(self):
        assert summarize([])["average_score"] == 0
