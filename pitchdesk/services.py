"""Shared business logic for the PitchDesk API."""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from pitchdesk.batch import JOB_ID, summarize
from pitchdesk.models import CronProgress, Investor, MatchAnalysis
from pitchdesk.utils import json_parse, to_text, to_year

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

INVESTOR_FIELDS = (
    "investor_name", "contact_person", "designation", "email", "phone",
    "website", "linkedin", "company_linkedin", "twitter", "country", "state",
    "city", "investor_type", "practice_areas", "description", "overview",
    "investment_score", "business_models",
)

SORT_COLUMNS = {"score": MatchAnalysis.score, "created_at": MatchAnalysis.created_at}

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def investor_summary(inv: Investor) -> dict:
    return {
        "id": inv.id,
        **{f: getattr(inv, f) or "" for f in INVESTOR_FIELDS},
        "founded_year": inv.founded_year,
        "extra_fields": json_parse(inv.extra_fields_json, {}),
    }


def analysis_summary(analysis: MatchAnalysis, with_investor: bool = True) -> dict:
    result = {
        "id": analysis.id, "investor_id": analysis.investor_id,
        "score": analysis.score, "reason": analysis.reason,
        "top_rated": analysis.top_rated,
        "created_at": analysis.created_at.isoformat() if analysis.created_at else None,
    }
    if with_investor:
        result["investor"] = investor_summary(analysis.investor) if analysis.investor else None
    return result


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def create_investor(session: Session, data: dict[str, Any]) -> Investor:
    """Build an Investor from form/CSV data; unknown keys become extra fields.

    Caller must commit.
    """
    known = {f: to_text(data.get(f)) for f in INVESTOR_FIELDS}
    extra = {
        k: to_text(v) for k, v in data.items()
        if k not in INVESTOR_FIELDS and k not in ("id", "founded_year") and to_text(v)
    }
    inv = Investor(
        **known,
        founded_year=to_year(data.get("founded_year")),
        extra_fields_json=json.dumps(extra),
    )
    session.add(inv)
    return inv


def query_analyses(
    session: Session, *, page: int = 1, limit: int = 20, top_rated: bool | None = None,
    min_score: int = 0, max_score: int = 100, sort_by: str = "score", sort_order: str = "desc",
) -> tuple[list[dict], dict]:
    """Filtered, sorted page of analyses with their investors, plus pagination."""
    filters = []
    if top_rated:
        filters.append(MatchAnalysis.top_rated.is_(True))
    if min_score > 0:
        filters.append(MatchAnalysis.score >= min_score)
    if max_score < 100:
        filters.append(MatchAnalysis.score <= max_score)

    column = SORT_COLUMNS.get(sort_by)
    if column is None:
        order = MatchAnalysis.score.desc()
    else:
        order = column.asc() if sort_order == "asc" else column.desc()

    total_count = session.execute(
        select(func.count(MatchAnalysis.id)).where(*filters)
    ).scalar_one()
    rows = session.execute(
        select(MatchAnalysis)
        .options(selectinload(MatchAnalysis.investor))
        .where(*filters)
        .order_by(order, MatchAnalysis.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    total_pages = math.ceil(total_count / limit) if total_count else 0
    pagination = {
        "page": page, "limit": limit, "total_count": total_count,
        "total_pages": total_pages, "has_next": page < total_pages, "has_prev": page > 1,
    }
    return [analysis_summary(a) for a in rows], pagination


def compute_stats(session: Session) -> dict:
    analyses = session.execute(select(MatchAnalysis)).scalars().all()
    progress = session.get(CronProgress, JOB_ID)
    summary = summarize(analyses)
    return {
        "total_investors": session.execute(select(func.count(Investor.id))).scalar_one(),
        "analyzed": len(analyses),
        "top_rated": summary["top_rated_count"],
        "average_score": summary["average_score"],
        "score_distribution": summary["score_distribution"],
        "last_batch_processed": progress.last_batch_processed if progress else 0,
    }
