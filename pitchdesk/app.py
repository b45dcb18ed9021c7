from __future__ import annotations

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Generator

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pitchdesk import batch, services
from pitchdesk.analyzer import InvestorAnalyzer
from pitchdesk.db import get_session, get_session_factory, init_db
from pitchdesk.importer import import_csv_text, import_xlsx
from pitchdesk.profile import load_profile
from pitchdesk.schemas import (
    AnalysisListResponse,
    BatchRequest,
    ImportResult,
    InvestorCreate,
    ProgressiveRequest,
    StatsOut,
)
from pitchdesk.store import AnalysisStore, SqlStore, StoreError

log = logging.getLogger(__name__)

NOTHING_TO_DO = {"message": "No investors found to analyze"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    get_analyzer()  # fail fast on a bad PITCHDESK_PROFILE
    yield


app = FastAPI(
    title="PitchDesk",
    version="0.1.0",
    description=(
        "Investor matching API. Import investor contacts, score them against the "
        "company profile in resumable micro-batches, and browse ranked matches. "
        "Analysis triggers require a bearer token when CRON_SECRET is set."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Analysis", "description": "Batch scoring triggers (cron, single page, progressive)."},
        {"name": "Investors", "description": "Add and import investor records."},
        {"name": "Results", "description": "Browse scored matches and aggregate stats."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_store() -> AnalysisStore:
    return SqlStore(get_session_factory())


@lru_cache(maxsize=1)
def get_analyzer() -> InvestorAnalyzer:
    return InvestorAnalyzer(load_profile())


def require_cron_secret(authorization: str | None = Header(None)) -> None:
    """Bearer-token check; open when CRON_SECRET is unset."""
    secret = os.environ.get("CRON_SECRET")
    if secret and authorization != f"Bearer {secret}":
        log.warning("Unauthorized analysis request")
        raise HTTPException(401, "Unauthorized")


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _job_response(message: str, summary: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "message": message, "summary": summary, "timestamp": _timestamp()}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    log.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Storage operation failed", "details": str(exc), "timestamp": _timestamp()},
    )


@app.exception_handler(batch.BatchRangeError)
async def range_error_handler(request: Request, exc: batch.BatchRangeError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


# ---------------------------------------------------------------------------
# Routes: Analysis triggers
# ---------------------------------------------------------------------------


@app.api_route("/api/cron/analyze-investors", methods=["GET", "POST"],
               dependencies=[Depends(require_cron_secret)],
               tags=["Analysis"], summary="Analyze all investors, resuming from the saved cursor")
async def analyze_investors(
    store: AnalysisStore = Depends(get_store),
    analyzer: InvestorAnalyzer = Depends(get_analyzer),
):
    result = await batch.run_full_sweep(store, analyzer)
    if result.nothing_to_do:
        return NOTHING_TO_DO
    return _job_response("Investor analysis completed successfully", result.summary())


@app.post("/api/cron/analyze-investors-batch",
          dependencies=[Depends(require_cron_secret)],
          tags=["Analysis"], summary="Analyze a single page of investors")
async def analyze_batch(
    body: BatchRequest | None = None,
    store: AnalysisStore = Depends(get_store),
    analyzer: InvestorAnalyzer = Depends(get_analyzer),
):
    body = body or BatchRequest()
    result = await batch.run_single_batch(
        store, analyzer, batch_number=body.batch_number,
        batch_size=body.batch_size, clear_existing=body.clear_existing,
    )
    if result.nothing_to_do:
        return NOTHING_TO_DO
    return _job_response(
        f"Micro-batch {body.batch_number + 1} analysis completed successfully", result.summary(),
    )


@app.get("/api/cron/analyze-investors-batch", tags=["Analysis"],
         summary="Page layout for single-page analysis")
async def analyze_batch_info(
    batch_size: int = Query(batch.DEFAULT_BATCH_SIZE, ge=1, le=500),
    store: AnalysisStore = Depends(get_store),
):
    return {"success": True, "data": batch.batch_info(store, batch_size)}


@app.post("/api/cron/analyze-investors-progressive",
          dependencies=[Depends(require_cron_secret)],
          tags=["Analysis"], summary="Analyze several consecutive pages of investors")
async def analyze_progressive(
    body: ProgressiveRequest | None = None,
    store: AnalysisStore = Depends(get_store),
    analyzer: InvestorAnalyzer = Depends(get_analyzer),
):
    body = body or ProgressiveRequest()
    result = await batch.run_progressive(
        store, analyzer, start_batch=body.start_batch, num_batches=body.num_batches,
        batch_size=body.batch_size, clear_existing=body.clear_existing,
        delay=body.delay_between_batches / 1000,
    )
    if result.nothing_to_do:
        return NOTHING_TO_DO
    return _job_response(
        f"Progressive analysis completed successfully. Processed {result.total_processed} "
        f"investors across {len(result.outcomes)} micro-batches.",
        result.summary(),
    )


@app.get("/api/cron/analyze-investors-progressive", tags=["Analysis"],
         summary="Totals and safe start page for progressive analysis")
async def analyze_progressive_info(
    batch_size: int = Query(batch.DEFAULT_BATCH_SIZE, ge=1, le=500),
    num_batches: int = Query(batch.DEFAULT_NUM_BATCHES, ge=1, le=100),
    store: AnalysisStore = Depends(get_store),
):
    return {"success": True, "data": batch.progressive_info(store, batch_size, num_batches)}


# ---------------------------------------------------------------------------
# Routes: Investors
# ---------------------------------------------------------------------------


@app.post("/api/add-investor", tags=["Investors"], summary="Add a single investor")
async def add_investor(body: InvestorCreate, session: Session = Depends(db_session)):
    if not body.investor_name.strip() or not body.contact_person.strip():
        raise HTTPException(400, "Investor name and contact person are required")
    inv = services.create_investor(session, body.model_dump())
    session.commit()
    session.refresh(inv)
    return {"success": True, "data": services.investor_summary(inv),
            "message": "Investor added successfully"}


@app.post("/api/import", response_model=ImportResult,
          tags=["Investors"], summary="Import investors from a CSV or XLSX file")
async def import_file(file: UploadFile = File(...), session: Session = Depends(db_session)):
    name = (file.filename or "").lower()
    if not name.endswith((".csv", ".xlsx")):
        raise HTTPException(400, "Only .csv and .xlsx files are supported")
    content = await file.read()
    if name.endswith(".csv"):
        return import_csv_text(content.decode("utf-8-sig"), session)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_xlsx(tmp_path, session)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Routes: Results
# ---------------------------------------------------------------------------


@app.get("/api/investor-analysis", response_model=AnalysisListResponse,
         tags=["Results"], summary="List scored investors with filtering, sorting, and pagination")
async def list_analysis(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=500),
    top_rated: bool | None = Query(None),
    min_score: int = Query(0, ge=0),
    max_score: int = Query(100, ge=0),
    sort_by: str = Query("score", description="score or created_at"),
    sort_order: str = Query("desc", description="asc or desc"),
    session: Session = Depends(db_session),
):
    data, pagination = services.query_analyses(
        session, page=page, limit=limit, top_rated=top_rated,
        min_score=min_score, max_score=max_score, sort_by=sort_by, sort_order=sort_order,
    )
    return {"success": True, "data": data, "pagination": pagination}


@app.get("/api/stats", response_model=StatsOut,
         tags=["Results"], summary="Aggregate scoring statistics")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("pitchdesk.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
