# models/analysis_job.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisJob(Base):
    __tablename__ = "analysis_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="queued")
    phase: Mapped[str] = mapped_column(String(24), nullable=False, default="init")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result_accumulator: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    analysis: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    data_quality: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # worker currently holding the job; NULL while idle between phases
    claim_token: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    phase_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_analysis_jobs_status_created", "status", "created_at"),
        Index("ix_analysis_jobs_symbol_status", "symbol", "status"),
    )
