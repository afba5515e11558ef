"""Alembic environment for the analysis_jobs / analysis_cache schema."""

import os
import sys
from logging.config import fileConfig

from alembic import context

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DATABASE_URL wins; alembic.ini only supplies a local fallback.
DB_URL = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
os.environ.setdefault("DATABASE_URL", DB_URL)

from database import Base, make_engine  # noqa: E402
import models  # noqa: E402, F401  registers analysis_jobs / analysis_cache / data_alerts

target_metadata = Base.metadata


def _options() -> dict:
    # SQLite cannot ALTER most constraints in place
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": DB_URL.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    context.configure(
        url=DB_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = make_engine(DB_URL)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_options())
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
