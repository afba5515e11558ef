# services/market_intel/cache_store.py
"""
TTL cache of phase results, keyed by (symbol, data_type).

The `analysis_cache` table is the source of truth. When REDIS_URL is set the
entries are mirrored into Redis with the remaining TTL so readers on other
instances skip the database; a Redis failure never fails a request.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import redis
from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from models.analysis_cache import AnalysisCacheEntry
from schemas.market_intel import dump_payload, parse_payload

from .errors import JobPersistenceFailure
from .retry_policy import RetryPolicy
from .types import as_utc, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# provider health scores share the table under this pseudo-symbol
HEALTH_SYMBOL = "_SOURCES"


@dataclass(frozen=True)
class CacheEntry:
    symbol: str
    data_type: str
    payload: BaseModel
    quality_score: int
    created_at: datetime
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "data_type": self.data_type,
            "payload": dump_payload(self.payload),
            "quality_score": self.quality_score,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "CacheEntry":
        return CacheEntry(
            symbol=d["symbol"],
            data_type=d["data_type"],
            payload=parse_payload(d["payload"]),
            quality_score=int(d["quality_score"]),
            created_at=as_utc(datetime.fromisoformat(d["created_at"])),
            expires_at=as_utc(datetime.fromisoformat(d["expires_at"])),
        )

    @staticmethod
    def from_row(row: AnalysisCacheEntry) -> "CacheEntry":
        return CacheEntry(
            symbol=row.symbol,
            data_type=row.data_type,
            payload=parse_payload(row.payload),
            quality_score=int(row.quality_score),
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
        )


def _norm_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


class RedisMirror:
    """Shared L2 copy of live cache entries. Any error degrades to a miss."""

    def __init__(self, client: Any, prefix: str = "marketintel:"):
        self._client = client
        self._prefix = prefix

    @staticmethod
    def from_url(url: Optional[str], prefix: str = "marketintel:") -> Optional["RedisMirror"]:
        if not url:
            return None
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        return RedisMirror(client, prefix)

    def key(self, symbol: str, data_type: str) -> str:
        return f"{self._prefix}{symbol}:{data_type}"

    def get(self, symbol: str, data_type: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._client.get(self.key(symbol, data_type))
        except redis.RedisError as e:
            logger.warning("cache_mirror_get_failed symbol=%s data_type=%s err=%s", symbol, data_type, e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return None

    def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            self._client.setex(
                self.key(entry.symbol, entry.data_type),
                ttl_seconds,
                json.dumps(entry.to_dict(), separators=(",", ":")),
            )
        except redis.RedisError as e:
            logger.warning("cache_mirror_set_failed symbol=%s data_type=%s err=%s", entry.symbol, entry.data_type, e)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("cache_mirror_delete_failed count=%d err=%s", len(keys), e)


class AnalysisCache:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        clock: Clock = utcnow,
        retry: Optional[RetryPolicy] = None,
        mirror: Optional[RedisMirror] = None,
        sweep_grace_s: int = 3600,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._retry = (retry or RetryPolicy.immediate(3)).with_retry_on(IntegrityError, OperationalError)
        self._mirror = mirror
        self.sweep_grace_s = sweep_grace_s

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ── read ────────────────────────────────────────────────────────

    def get(self, symbol: str, data_type: str) -> Optional[CacheEntry]:
        """Live entry or None. An expired row is a miss even before it is swept."""
        symbol = _norm_symbol(symbol)
        now = self.now()

        if self._mirror is not None:
            hit = self._mirror.get(symbol, data_type)
            if hit is not None:
                try:
                    entry = CacheEntry.from_dict(hit)
                except (KeyError, ValueError, ValidationError):
                    entry = None
                if entry is not None and entry.expires_at > now:
                    return entry

        with self._session_factory() as db:
            row = (
                db.query(AnalysisCacheEntry)
                .filter(
                    AnalysisCacheEntry.symbol == symbol,
                    AnalysisCacheEntry.data_type == data_type,
                )
                .first()
            )
            if row is None or as_utc(row.expires_at) <= now:
                return None
            try:
                entry = CacheEntry.from_row(row)
            except ValidationError:
                logger.warning("cache_payload_invalid symbol=%s data_type=%s", symbol, data_type)
                return None

        if self._mirror is not None:
            self._mirror.set(entry, int((entry.expires_at - now).total_seconds()))
        return entry

    # ── write ───────────────────────────────────────────────────────

    def set(
        self,
        symbol: str,
        data_type: str,
        payload: Any,
        ttl_seconds: int,
        quality_score: int,
    ) -> CacheEntry:
        """Upsert; the latest write wins. Raises JobPersistenceFailure after retries."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        symbol = _norm_symbol(symbol)
        body = dump_payload(payload)
        now = self.now()
        expires_at = now + timedelta(seconds=ttl_seconds)

        def _write() -> None:
            with self._session_factory() as db:
                self._upsert(db, symbol, data_type, body, int(quality_score), now, expires_at)

        try:
            self._retry.call(_write)
        except (IntegrityError, OperationalError) as e:
            logger.error("cache_write_failed symbol=%s data_type=%s err=%s", symbol, data_type, e)
            raise JobPersistenceFailure(f"cache write failed for {symbol}/{data_type}: {e}") from e

        entry = CacheEntry(
            symbol=symbol,
            data_type=data_type,
            payload=parse_payload(body),
            quality_score=int(quality_score),
            created_at=now,
            expires_at=expires_at,
        )
        if self._mirror is not None:
            self._mirror.set(entry, ttl_seconds)
        logger.info(
            "cache_set symbol=%s data_type=%s quality=%d ttl=%d",
            symbol, data_type, entry.quality_score, ttl_seconds,
            extra={"symbol": symbol, "data_type": data_type},
        )
        return entry

    @staticmethod
    def _upsert(
        db: Session,
        symbol: str,
        data_type: str,
        body: Dict[str, Any],
        quality_score: int,
        now: datetime,
        expires_at: datetime,
    ) -> None:
        row = (
            db.query(AnalysisCacheEntry)
            .filter(
                AnalysisCacheEntry.symbol == symbol,
                AnalysisCacheEntry.data_type == data_type,
            )
            .first()
        )
        if row:
            row.payload = body
            row.quality_score = quality_score
            row.created_at = now
            row.expires_at = expires_at
        else:
            db.add(
                AnalysisCacheEntry(
                    symbol=symbol,
                    data_type=data_type,
                    payload=body,
                    quality_score=quality_score,
                    created_at=now,
                    expires_at=expires_at,
                )
            )
        try:
            db.commit()
        except (IntegrityError, OperationalError):
            # concurrent insert of the same key; the retry turns it into an update
            db.rollback()
            raise

    def invalidate(self, symbol: str, data_type: Optional[str] = None) -> int:
        symbol = _norm_symbol(symbol)
        with self._session_factory() as db:
            q = db.query(AnalysisCacheEntry).filter(AnalysisCacheEntry.symbol == symbol)
            if data_type is not None:
                q = q.filter(AnalysisCacheEntry.data_type == data_type)
            types = [r.data_type for r in q.all()]
            deleted = q.delete(synchronize_session=False)
            db.commit()

        if self._mirror is not None:
            self._mirror.delete(*(self._mirror.key(symbol, t) for t in types))
        logger.info("cache_invalidated symbol=%s data_type=%s deleted=%d", symbol, data_type, deleted)
        return int(deleted or 0)

    def sweep(self) -> int:
        """Delete rows that expired more than `sweep_grace_s` ago."""
        cutoff = self.now() - timedelta(seconds=self.sweep_grace_s)
        with self._session_factory() as db:
            deleted = (
                db.query(AnalysisCacheEntry)
                .filter(AnalysisCacheEntry.expires_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        logger.info("cache_swept deleted=%d cutoff=%s", deleted, cutoff.isoformat())
        return int(deleted or 0)

    # ── stats ───────────────────────────────────────────────────────

    def stats(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        """Counts over market symbols; provider health rows are not cache entries."""
        now = self.now()
        with self._session_factory() as db:
            q = db.query(AnalysisCacheEntry).filter(AnalysisCacheEntry.symbol != HEALTH_SYMBOL)
            if symbol is not None:
                q = q.filter(AnalysisCacheEntry.symbol == _norm_symbol(symbol))
            total = q.count()
            live_q = q.filter(AnalysisCacheEntry.expires_at > now)
            live = live_q.count()
            avg_quality = live_q.with_entities(func.avg(AnalysisCacheEntry.quality_score)).scalar()
            symbols = sorted({r[0] for r in live_q.with_entities(AnalysisCacheEntry.symbol).all()})
            oldest = live_q.with_entities(func.min(AnalysisCacheEntry.created_at)).scalar()

        return {
            "total_entries": total,
            "live_entries": live,
            "expired_entries": total - live,
            "symbols": symbols,
            "average_quality": round(float(avg_quality), 1) if avg_quality is not None else None,
            "oldest_entry": as_utc(oldest).isoformat() if oldest is not None else None,
        }
