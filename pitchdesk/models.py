from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Investor(Base):
    __tablename__ = "investors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investor_name: Mapped[str] = mapped_column(String(300), nullable=False)
    contact_person: Mapped[str] = mapped_column(String(300), default="")
    designation: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    phone: Mapped[str] = mapped_column(String(100), default="")
    website: Mapped[str] = mapped_column(String(500), default="")
    linkedin: Mapped[str] = mapped_column(String(500), default="")
    company_linkedin: Mapped[str] = mapped_column(String(500), default="")
    twitter: Mapped[str] = mapped_column(String(500), default="")
    country: Mapped[str] = mapped_column(String(100), default="")
    state: Mapped[str] = mapped_column(String(100), default="")
    city: Mapped[str] = mapped_column(String(100), default="")
    founded_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    investor_type: Mapped[str] = mapped_column(String(200), default="")
    practice_areas: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    overview: Mapped[str] = mapped_column(Text, default="")
    # "85", "85/100" or "85%"; normalized at scoring time
    investment_score: Mapped[str] = mapped_column(String(50), default="")
    business_models: Mapped[str] = mapped_column(Text, default="")
    extra_fields_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    analyses: Mapped[list[MatchAnalysis]] = relationship(
        "MatchAnalysis", back_populates="investor", cascade="all, delete-orphan",
    )


class MatchAnalysis(Base):
    __tablename__ = "investor_match_analysis"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investor_id: Mapped[int] = mapped_column(Integer, ForeignKey("investors.id"), nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0)
    reason: Mapped[str] = mapped_column(Text, default="")
    top_rated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    investor: Mapped[Investor] = relationship("Investor", back_populates="analyses")


class CronProgress(Base):
    """Resumable cursor for a named batch job."""
    __tablename__ = "cron_progress"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_batch_processed: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
