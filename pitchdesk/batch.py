"""Micro-batch analysis driver with a resumable progress cursor.

Investors are scored one small page at a time so a long sweep fits inside
short execution windows.  After each page the cursor in ``cron_progress`` is
advanced; an interrupted sweep resumes from the cursor on the next call, and
a completed sweep resets it to 0.

Page-level failures (fetch or insert) are logged and counted, never raised.
Only job-level failures (counting investors, clearing old results) abort.
Runs are expected one at a time: the cursor is read and written without
locking.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from pitchdesk.analyzer import TOP_RATED_THRESHOLD, InvestorAnalyzer
from pitchdesk.models import MatchAnalysis
from pitchdesk.store import AnalysisStore, ProgressState, StoreError

log = logging.getLogger(__name__)

JOB_ID = "investor_analysis"
DEFAULT_BATCH_SIZE = 10
DEFAULT_DELAY = 0.5
DEFAULT_NUM_BATCHES = 5
INSERT_BATCH_SIZE = 100
PROGRESSIVE_INSERT_BATCH_SIZE = 10
MEDIUM_SCORE = 50
SECONDS_PER_BATCH = 2
MAX_RECOMMENDED_BATCHES = 10


class BatchRangeError(ValueError):
    """Requested page lies beyond the last page."""


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def summarize(analyses: Sequence[MatchAnalysis]) -> dict[str, Any]:
    """Top-rated count, rounded average score and score bands."""
    scores = [a.score for a in analyses]
    average = math.floor(sum(scores) / len(scores) + 0.5) if scores else 0
    return {
        "top_rated_count": sum(1 for a in analyses if a.top_rated),
        "average_score": average,
        "score_distribution": {
            "high": sum(1 for s in scores if s >= TOP_RATED_THRESHOLD),
            "medium": sum(1 for s in scores if MEDIUM_SCORE <= s < TOP_RATED_THRESHOLD),
            "low": sum(1 for s in scores if s < MEDIUM_SCORE),
        },
    }


def total_batches(total_investors: int, batch_size: int) -> int:
    return math.ceil(total_investors / batch_size) if total_investors > 0 else 0


def _check_size(name: str, value: int) -> None:
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")


def _page_range(batch_number: int, batch_size: int, total_investors: int) -> dict[str, int]:
    start = batch_number * batch_size
    return {"from": start + 1, "to": min(start + batch_size, total_investors)}


# ---------------------------------------------------------------------------
# Per-page processing
# ---------------------------------------------------------------------------


@dataclass
class PageOutcome:
    """What happened to one page: rows scored, inserted, and failures."""
    batch_number: int
    processed: int = 0
    analyses: list[MatchAnalysis] = field(default_factory=list)
    inserted: int = 0
    errors: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def breakdown(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "batch_number": self.batch_number + 1,
            "success": self.success,
            "processed": self.processed,
            "top_rated": sum(1 for a in self.analyses if a.top_rated),
        }
        if self.success:
            entry["inserted"] = self.inserted
            entry["errors"] = self.errors
            entry["average_score"] = summarize(self.analyses)["average_score"]
        else:
            entry["error"] = self.error
        return entry


def insert_in_chunks(
    store: AnalysisStore, rows: Sequence[MatchAnalysis], chunk_size: int = INSERT_BATCH_SIZE,
) -> tuple[int, int]:
    """Insert *rows* in sub-batches; returns ``(inserted, errors)``.

    A failed sub-batch counts all its rows as errors; earlier sub-batches
    stay committed.
    """
    inserted = errors = 0
    for start in range(0, len(rows), chunk_size):
        chunk = rows[start:start + chunk_size]
        try:
            inserted += store.insert_analyses(chunk)
        except StoreError as exc:
            log.warning("Insert of %d analyses failed: %s", len(chunk), exc)
            errors += len(chunk)
    return inserted, errors


def process_page(
    store: AnalysisStore,
    analyzer: InvestorAnalyzer,
    batch_number: int,
    batch_size: int,
    insert_batch_size: int = INSERT_BATCH_SIZE,
) -> PageOutcome:
    """Fetch, score and persist one page.  Ranking is relative to this page only."""
    outcome = PageOutcome(batch_number=batch_number)
    try:
        investors = store.fetch_investors(batch_number * batch_size, batch_size)
    except StoreError as exc:
        log.warning("Skipping batch %d: %s", batch_number + 1, exc)
        outcome.error = str(exc)
        return outcome
    if not investors:
        log.warning("No investors in batch %d", batch_number + 1)
        outcome.error = "No investors found"
        return outcome

    outcome.processed = len(investors)
    outcome.analyses = analyzer.analyze_all(investors)
    outcome.inserted, outcome.errors = insert_in_chunks(store, outcome.analyses, insert_batch_size)
    log.info(
        "Batch %d: analyzed %d, inserted %d, errors %d",
        batch_number + 1, outcome.processed, outcome.inserted, outcome.errors,
    )
    return outcome


def _clear(store: AnalysisStore) -> None:
    log.info("Clearing existing analysis data")
    removed = store.clear_analyses()
    log.info("Cleared %d analysis rows", removed)


# ---------------------------------------------------------------------------
# Full sweep
# ---------------------------------------------------------------------------


@dataclass
class SweepResult:
    total_investors: int
    batch_size: int
    total_batches: int = 0
    resumed_from: int = 0
    cleared: bool = False
    processed_count: int = 0
    total_inserted: int = 0
    total_errors: int = 0
    batches_processed: list[int] = field(default_factory=list)
    batches_failed: list[int] = field(default_factory=list)
    analyses: list[MatchAnalysis] = field(default_factory=list, repr=False)
    state: ProgressState | None = None

    @property
    def nothing_to_do(self) -> bool:
        return self.total_investors == 0

    def summary(self) -> dict[str, Any]:
        return {
            "total_investors": self.total_investors,
            "total_analyzed": len(self.analyses),
            "total_inserted": self.total_inserted,
            "total_errors": self.total_errors,
            **summarize(self.analyses),
            "batch_info": {
                "total_batches": self.total_batches,
                "batch_size": self.batch_size,
                "processed_count": self.processed_count,
                "resumed_from": self.resumed_from,
                "failed_batches": [b + 1 for b in self.batches_failed],
            },
        }


def _save_progress(store: AnalysisStore, state: ProgressState) -> ProgressState:
    try:
        return store.save_progress(state)
    except StoreError as exc:
        log.warning("Could not persist progress for %s: %s", state.job_id, exc)
        return state


async def run_full_sweep(
    store: AnalysisStore,
    analyzer: InvestorAnalyzer,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay: float = DEFAULT_DELAY,
    job_id: str = JOB_ID,
    state: ProgressState | None = None,
    insert_batch_size: int = INSERT_BATCH_SIZE,
) -> SweepResult:
    """Analyze every investor page by page, resuming from the saved cursor.

    Pass *state* to start from an explicit cursor instead of the stored one.
    Raises StoreError only if counting investors or clearing old results fails.
    """
    _check_size("batch_size", batch_size)
    total = store.count_investors()
    result = SweepResult(total_investors=total, batch_size=batch_size)
    if total == 0:
        log.info("No investors found to analyze")
        return result

    result.total_batches = total_batches(total, batch_size)
    if state is None:
        try:
            state = store.get_progress(job_id)
        except StoreError as exc:
            log.warning("Could not read progress for %s, starting fresh: %s", job_id, exc)
        state = state or ProgressState(job_id)
    result.resumed_from = state.last_batch_processed

    if state.is_fresh:
        _clear(store)
        result.cleared = True
    else:
        log.info("Resuming %s from batch %d", job_id, state.last_batch_processed + 1)

    log.info("Analyzing %d investors in %d batches of %d", total, result.total_batches, batch_size)
    for batch_number in range(state.last_batch_processed, result.total_batches):
        outcome = process_page(store, analyzer, batch_number, batch_size, insert_batch_size)
        if not outcome.success:
            result.batches_failed.append(batch_number)
            continue

        result.batches_processed.append(batch_number)
        result.processed_count += outcome.processed
        result.analyses.extend(outcome.analyses)
        result.total_inserted += outcome.inserted
        result.total_errors += outcome.errors
        state = _save_progress(store, state.advance(batch_number))

        if batch_number < result.total_batches - 1 and delay > 0:
            await asyncio.sleep(delay)

    result.state = _save_progress(store, state.reset())
    log.info(
        "Sweep complete: analyzed %d, inserted %d, errors %d",
        len(result.analyses), result.total_inserted, result.total_errors,
    )
    return result


# ---------------------------------------------------------------------------
# Single page
# ---------------------------------------------------------------------------


@dataclass
class BatchResult:
    total_investors: int
    batch_size: int
    batch_number: int = 0
    total_batches: int = 0
    outcome: PageOutcome | None = None

    @property
    def nothing_to_do(self) -> bool:
        return self.total_investors == 0

    def summary(self) -> dict[str, Any]:
        outcome = self.outcome or PageOutcome(batch_number=self.batch_number)
        return {
            "batch_number": self.batch_number + 1,
            "total_batches": self.total_batches,
            "batch_size": self.batch_size,
            "total_investors": self.total_investors,
            "success": outcome.success,
            "error": outcome.error,
            "total_analyzed": len(outcome.analyses),
            "total_inserted": outcome.inserted,
            "total_errors": outcome.errors,
            **summarize(outcome.analyses),
            "range": _page_range(self.batch_number, self.batch_size, self.total_investors),
        }


async def run_single_batch(
    store: AnalysisStore,
    analyzer: InvestorAnalyzer,
    *,
    batch_number: int = 0,
    batch_size: int = DEFAULT_BATCH_SIZE,
    clear_existing: bool = False,
    insert_batch_size: int = INSERT_BATCH_SIZE,
) -> BatchResult:
    """Analyze exactly one page.  Does not read or move the progress cursor."""
    _check_size("batch_size", batch_size)
    if batch_number < 0:
        raise BatchRangeError(f"Batch number {batch_number} is out of range")
    total = store.count_investors()
    result = BatchResult(total_investors=total, batch_size=batch_size, batch_number=batch_number)
    if total == 0:
        log.info("No investors found to analyze")
        return result

    result.total_batches = total_batches(total, batch_size)
    if batch_number >= result.total_batches:
        raise BatchRangeError(
            f"Batch number {batch_number} is out of range. Total batches: {result.total_batches}"
        )
    if clear_existing:
        _clear(store)

    result.outcome = process_page(store, analyzer, batch_number, batch_size, insert_batch_size)
    return result


# ---------------------------------------------------------------------------
# Progressive (several pages, caller-driven)
# ---------------------------------------------------------------------------


@dataclass
class ProgressiveResult:
    total_investors: int
    batch_size: int
    start_batch: int = 0
    end_batch: int = 0
    total_batches: int = 0
    outcomes: list[PageOutcome] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return self.total_investors == 0

    @property
    def total_processed(self) -> int:
        return sum(o.processed for o in self.outcomes)

    def summary(self) -> dict[str, Any]:
        analyses = [a for o in self.outcomes for a in o.analyses]
        return {
            "total_investors": self.total_investors,
            "total_batches": self.total_batches,
            "batch_size": self.batch_size,
            "start_batch": self.start_batch + 1,
            "end_batch": self.end_batch + 1,
            "batches_processed": len(self.outcomes),
            "failed_batches": sum(1 for o in self.outcomes if not o.success),
            "total_analyzed": len(analyses),
            "total_processed": self.total_processed,
            "total_inserted": sum(o.inserted for o in self.outcomes),
            "total_errors": sum(o.errors for o in self.outcomes),
            **summarize(analyses),
            "batch_results": [o.breakdown() for o in self.outcomes],
            "range": {
                "from": self.start_batch * self.batch_size + 1,
                "to": min((self.end_batch + 1) * self.batch_size, self.total_investors),
            },
        }


async def run_progressive(
    store: AnalysisStore,
    analyzer: InvestorAnalyzer,
    *,
    start_batch: int = 0,
    num_batches: int = DEFAULT_NUM_BATCHES,
    batch_size: int = DEFAULT_BATCH_SIZE,
    clear_existing: bool = False,
    delay: float = DEFAULT_DELAY,
    insert_batch_size: int = PROGRESSIVE_INSERT_BATCH_SIZE,
) -> ProgressiveResult:
    """Analyze ``num_batches`` pages starting at ``start_batch``."""
    _check_size("batch_size", batch_size)
    _check_size("num_batches", num_batches)
    if start_batch < 0:
        raise BatchRangeError(f"Start batch {start_batch} is out of range")
    total = store.count_investors()
    result = ProgressiveResult(total_investors=total, batch_size=batch_size, start_batch=start_batch)
    if total == 0:
        log.info("No investors found to analyze")
        return result

    result.total_batches = total_batches(total, batch_size)
    if start_batch >= result.total_batches:
        raise BatchRangeError(
            f"Start batch {start_batch} is out of range. Total batches: {result.total_batches}"
        )
    result.end_batch = min(start_batch + num_batches - 1, result.total_batches - 1)
    if clear_existing:
        _clear(store)

    for batch_number in range(start_batch, result.end_batch + 1):
        outcome = process_page(store, analyzer, batch_number, batch_size, insert_batch_size)
        result.outcomes.append(outcome)
        if outcome.success and batch_number < result.end_batch and delay > 0:
            await asyncio.sleep(delay)
    return result


# ---------------------------------------------------------------------------
# Info
# ---------------------------------------------------------------------------


def batch_info(store: AnalysisStore, batch_size: int = DEFAULT_BATCH_SIZE) -> dict[str, Any]:
    """Total investors and the page layout for *batch_size*."""
    _check_size("batch_size", batch_size)
    total = store.count_investors()
    n = total_batches(total, batch_size)
    return {
        "total_investors": total,
        "total_batches": n,
        "batch_size": batch_size,
        "batches": [
            {
                "batch_number": i,
                **_page_range(i, batch_size, total),
                "size": min(batch_size, total - i * batch_size),
            }
            for i in range(n)
        ],
    }


def progressive_info(
    store: AnalysisStore,
    batch_size: int = DEFAULT_BATCH_SIZE,
    num_batches: int = DEFAULT_NUM_BATCHES,
) -> dict[str, Any]:
    """Totals plus the largest start page that still fits *num_batches* pages."""
    _check_size("batch_size", batch_size)
    _check_size("num_batches", num_batches)
    total = store.count_investors()
    n = total_batches(total, batch_size)
    return {
        "total_investors": total,
        "total_batches": n,
        "batch_size": batch_size,
        "num_batches": num_batches,
        "max_start_batch": max(0, n - num_batches),
        "estimated_time_per_batch": SECONDS_PER_BATCH,
        "estimated_total_time": num_batches * SECONDS_PER_BATCH,
        "recommended_batches": min(MAX_RECOMMENDED_BATCHES, n),
    }
