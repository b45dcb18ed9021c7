"""Pydantic request/response schemas for the PitchDesk API."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class InvestorCreate(BaseModel):
    """Manual investor entry; unknown keys are kept as extra fields."""
    model_config = ConfigDict(extra="allow")

    investor_name: str = ""
    contact_person: str = ""
    designation: str = ""
    email: str = ""
    phone: str = ""
    website: str = ""
    linkedin: str = ""
    company_linkedin: str = ""
    twitter: str = ""
    country: str = ""
    state: str = ""
    city: str = ""
    founded_year: int | None = None
    investor_type: str = ""
    practice_areas: str = ""
    description: str = ""
    overview: str = ""
    investment_score: str | float | None = None
    business_models: str = ""


class InvestorOut(BaseModel):
    id: int
    investor_name: str
    contact_person: str
    designation: str
    email: str
    phone: str
    website: str
    linkedin: str
    company_linkedin: str
    twitter: str
    country: str
    state: str
    city: str
    founded_year: int | None = None
    investor_type: str
    practice_areas: str
    description: str
    overview: str
    investment_score: str
    business_models: str
    extra_fields: dict[str, str] = {}


class AnalysisOut(BaseModel):
    id: int
    investor_id: int
    score: int
    reason: str
    top_rated: bool
    created_at: str | None = None
    investor: InvestorOut | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AnalysisListResponse(BaseModel):
    success: bool = True
    data: list[AnalysisOut]
    pagination: Pagination


class BatchRequest(BaseModel):
    batch_number: int = Field(0, ge=0)
    batch_size: int = Field(10, ge=1, le=500)
    clear_existing: bool = False


class ProgressiveRequest(BaseModel):
    start_batch: int = Field(0, ge=0)
    num_batches: int = Field(5, ge=1, le=100)
    batch_size: int = Field(10, ge=1, le=500)
    clear_existing: bool = False
    delay_between_batches: int = Field(500, ge=0, le=60_000, description="Milliseconds")


class ImportResult(BaseModel):
    total_rows: int
    imported: int
    skipped: int


class StatsOut(BaseModel):
    total_investors: int
    analyzed: int
    top_rated: int
    average_score: int
    score_distribution: dict[str, int]
    last_batch_processed: int
