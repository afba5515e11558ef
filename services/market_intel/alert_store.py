# services/market_intel/alert_store.py
"""
Review queue for data-quality alerts.

Sanity checking hands its discrepancies to `record_discrepancies()`; fatal
ones (and warnings, when ALERT_WARNINGS is on) become `data_alerts` rows an
operator reviews later. Writing an alert is bookkeeping: a database error is
logged and the phase carries on.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models.data_alert import DataAlert

from .types import Discrepancy, DiscrepancyType, Severity, as_utc, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RECOMMENDATIONS: Dict[DiscrepancyType, str] = {
    DiscrepancyType.ZERO_VALUE: "Verify the provider response; a zero here means the data is invalid.",
    DiscrepancyType.PRICE_JUMP: "Compare against an exchange before trusting the new value.",
    DiscrepancyType.STALE_DATA: "Check whether the provider stopped updating this asset.",
    DiscrepancyType.OUT_OF_RANGE: "Inspect the provider payload for unit or parsing errors.",
    DiscrepancyType.SOURCE_DIVERGENCE: "Identify the divergent provider and lower its priority if it persists.",
    DiscrepancyType.NO_CONSENSUS: "No provider returned a usable value; check provider status.",
    DiscrepancyType.INCONSISTENT: "Cross-check related metrics from the same provider.",
}


def _to_dict(row: DataAlert) -> Dict[str, Any]:
    return {
        "id": row.id,
        "symbol": row.symbol,
        "data_type": row.data_type,
        "severity": row.severity,
        "alert_type": row.alert_type,
        "message": row.message,
        "details": dict(row.details or {}),
        "job_id": row.job_id,
        "requires_review": bool(row.requires_review),
        "reviewed": bool(row.reviewed),
        "reviewed_by": row.reviewed_by,
        "reviewed_at": as_utc(row.reviewed_at),
        "review_notes": row.review_notes,
        "created_at": as_utc(row.created_at),
    }


class AlertStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        clock: Clock = utcnow,
        include_warnings: bool = False,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.include_warnings = include_warnings

    def now(self) -> datetime:
        return as_utc(self._clock())

    def _wanted(self, d: Discrepancy) -> bool:
        return d.is_fatal or (self.include_warnings and d.severity == Severity.WARNING)

    # ── write ───────────────────────────────────────────────────────

    def record_discrepancies(
        self,
        symbol: str,
        data_type: str,
        discrepancies: Sequence[Discrepancy],
        *,
        job_id: Optional[str] = None,
    ) -> int:
        """Queue the alert-worthy discrepancies. Returns how many were stored."""
        wanted = [d for d in discrepancies if self._wanted(d)]
        if not wanted:
            return 0
        now = self.now()
        rows = [
            DataAlert(
                symbol=symbol.upper(),
                data_type=data_type,
                severity=d.severity.value,
                alert_type=d.type.value,
                message=d.description,
                details={
                    "affected_sources": list(d.affected_sources),
                    "impact": d.impact,
                    "recommendation": RECOMMENDATIONS.get(d.type, ""),
                },
                job_id=job_id,
                requires_review=d.is_fatal,
                reviewed=False,
                created_at=now,
            )
            for d in wanted
        ]
        try:
            with self._session_factory() as db:
                db.add_all(rows)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "alert_store_failed symbol=%s data_type=%s count=%d err=%s",
                symbol, data_type, len(rows), e,
                extra={"symbol": symbol, "data_type": data_type, "job_id": job_id},
            )
            return 0

        for d in wanted:
            logger.warning(
                "data_alert severity=%s type=%s symbol=%s data_type=%s msg=%s",
                d.severity.value, d.type.value, symbol, data_type, d.description,
                extra={"symbol": symbol, "data_type": data_type, "job_id": job_id},
            )
        return len(rows)

    def mark_reviewed(self, alert_id: int, reviewed_by: str, notes: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """None when no such alert exists."""
        with self._session_factory() as db:
            row = db.get(DataAlert, alert_id)
            if row is None:
                return None
            row.reviewed = True
            row.reviewed_by = reviewed_by
            row.reviewed_at = self.now()
            row.review_notes = notes
            db.commit()
            db.refresh(row)
            out = _to_dict(row)
        logger.info("data_alert_reviewed id=%s by=%s", alert_id, reviewed_by)
        return out

    # ── read ────────────────────────────────────────────────────────

    def pending(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Unreviewed alerts, newest first."""
        with self._session_factory() as db:
            rows = (
                db.query(DataAlert)
                .filter(DataAlert.reviewed.is_(False))
                .order_by(DataAlert.created_at.desc(), DataAlert.id.desc())
                .limit(limit)
                .all()
            )
            return [_to_dict(r) for r in rows]

    def recent(self, limit: int = 100, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            q = db.query(DataAlert)
            if symbol is not None:
                q = q.filter(DataAlert.symbol == symbol.upper())
            rows = q.order_by(DataAlert.created_at.desc(), DataAlert.id.desc()).limit(limit).all()
            return [_to_dict(r) for r in rows]

    def statistics(self) -> Dict[str, Any]:
        with self._session_factory() as db:
            total = db.query(func.count(DataAlert.id)).scalar() or 0
            pending = db.query(func.count(DataAlert.id)).filter(DataAlert.reviewed.is_(False)).scalar() or 0
            by_severity = dict(
                db.query(DataAlert.severity, func.count(DataAlert.id)).group_by(DataAlert.severity).all()
            )
            by_type = dict(
                db.query(DataAlert.alert_type, func.count(DataAlert.id)).group_by(DataAlert.alert_type).all()
            )
        return {
            "total": int(total),
            "pending": int(pending),
            "reviewed": int(total) - int(pending),
            "by_severity": {k: int(v) for k, v in by_severity.items()},
            "by_type": {k: int(v) for k, v in by_type.items()},
        }
