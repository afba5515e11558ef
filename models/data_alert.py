# models/data_alert.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class DataAlert(Base):
    """A sanity discrepancy queued for human review."""
    __tablename__ = "data_alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(48), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # affected_sources, impact, recommendation
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_data_alerts_reviewed_created", "reviewed", "created_at"),
        Index("ix_data_alerts_severity", "severity"),
    )
