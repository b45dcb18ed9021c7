"""Storage collaborator for the analysis batch driver.

The driver only needs paged investor reads, bulk analysis writes and a
progress cursor; :class:`AnalysisStore` names exactly those calls so the
driver can run against SQLite in production and fakes in tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pitchdesk.models import CronProgress, Investor, MatchAnalysis

log = logging.getLogger(__name__)


class StoreError(Exception):
    """A storage round-trip failed."""


@dataclass(frozen=True)
class ProgressState:
    """Cursor of a resumable job: the next page to process.

    A cursor of 0 means either a fresh run or a run that just completed and
    was reset; the two are deliberately indistinguishable.
    """
    job_id: str
    last_batch_processed: int = 0
    updated_at: datetime | None = None

    @property
    def is_fresh(self) -> bool:
        return self.last_batch_processed == 0

    def advance(self, batch_index: int) -> ProgressState:
        """State after page *batch_index* (0-based) has completed."""
        return replace(self, last_batch_processed=batch_index + 1, updated_at=datetime.now(UTC))

    def reset(self) -> ProgressState:
        return replace(self, last_batch_processed=0, updated_at=datetime.now(UTC))


class AnalysisStore(Protocol):
    def count_investors(self) -> int: ...

    def fetch_investors(self, offset: int, limit: int) -> list[Investor]: ...

    def insert_analyses(self, rows: Sequence[MatchAnalysis]) -> int: ...

    def clear_analyses(self) -> int: ...

    def get_progress(self, job_id: str) -> ProgressState | None: ...

    def save_progress(self, state: ProgressState) -> ProgressState: ...


class SqlStore:
    """:class:`AnalysisStore` backed by SQLAlchemy sessions.

    Every call runs in its own short transaction so a failure in one page
    never rolls back rows committed for earlier pages.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def count_investors(self) -> int:
        try:
            with self._session() as session:
                return session.execute(select(func.count(Investor.id))).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to count investors: {exc}") from exc

    def fetch_investors(self, offset: int, limit: int) -> list[Investor]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(Investor).order_by(Investor.id.asc()).offset(offset).limit(limit)
                ).scalars().all()
                return list(rows)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to fetch investors {offset}-{offset + limit - 1}: {exc}") from exc

    def insert_analyses(self, rows: Sequence[MatchAnalysis]) -> int:
        if not rows:
            return 0
        try:
            with self._session() as session, session.begin():
                session.execute(insert(MatchAnalysis), [
                    {"investor_id": r.investor_id, "score": r.score,
                     "reason": r.reason, "top_rated": r.top_rated}
                    for r in rows
                ])
            return len(rows)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to insert {len(rows)} analyses: {exc}") from exc

    def clear_analyses(self) -> int:
        try:
            with self._session() as session, session.begin():
                result = session.execute(delete(MatchAnalysis))
            return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to clear existing analysis: {exc}") from exc

    def get_progress(self, job_id: str) -> ProgressState | None:
        try:
            with self._session() as session:
                row = session.get(CronProgress, job_id)
                if row is None:
                    return None
                return ProgressState(job_id, row.last_batch_processed, row.updated_at)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read progress for {job_id}: {exc}") from exc

    def save_progress(self, state: ProgressState) -> ProgressState:
        updated_at = state.updated_at or datetime.now(UTC)
        try:
            with self._session() as session, session.begin():
                session.merge(CronProgress(
                    id=state.job_id,
                    last_batch_processed=state.last_batch_processed,
                    updated_at=updated_at,
                ))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to save progress for {state.job_id}: {exc}") from exc
        return replace(state, updated_at=updated_at)
