# database.py
import os
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

Base = declarative_base()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in the environment")

# ─── Connection-pool tuning ────────────────────────────────────────
# These defaults are sensible for a Railway / small-VPS deployment.
# Override via env vars for larger setups.
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))           # steady-state connections
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))     # burst above pool_size
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))     # seconds to wait for a conn
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "1800"))   # recycle every 30 min (avoids stale PG conns)

# Statement timeout for store calls; every write in the job pipeline must be bounded.
STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))


def make_engine(url: str) -> Engine:
    """
    Build an engine for `url`.

    SQLite (local runs and tests) gets a single shared connection so an
    in-memory database is visible to every session.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"

    return create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,  # test connection liveness before checkout
        connect_args=connect_args,
    )


def make_session_factory(url: str, *, create_tables: bool = False) -> sessionmaker:
    eng = make_engine(url)
    if create_tables:
        import models  # noqa: F401  registers every table on Base.metadata

        Base.metadata.create_all(bind=eng)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=eng)


engine = make_engine(DATABASE_URL)

logger.info(
    "DB pool configured: size=%d, max_overflow=%d, recycle=%ds, pre_ping=True",
    POOL_SIZE, MAX_OVERFLOW, POOL_RECYCLE,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
