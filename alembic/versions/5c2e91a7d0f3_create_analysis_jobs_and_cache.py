"""create analysis jobs and cache tables

Revision ID: 5c2e91a7d0f3
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "5c2e91a7d0f3"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "analysis_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("phase", sa.String(length=24), nullable=False, server_default="init"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_accumulator", sa.JSON(), nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=True),
        sa.Column("data_quality", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("claim_token", sa.String(length=36), nullable=True),
        sa.Column("phase_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_analysis_jobs_symbol", "analysis_jobs", ["symbol"], unique=False)
    op.create_index("ix_analysis_jobs_status_created", "analysis_jobs", ["status", "created_at"], unique=False)
    op.create_index("ix_analysis_jobs_symbol_status", "analysis_jobs", ["symbol", "status"], unique=False)

    op.create_table(
        "analysis_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("data_type", sa.String(length=48), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("quality_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("symbol", "data_type", name="uq_analysis_cache_symbol_type"),
    )
    op.create_index("ix_analysis_cache_symbol", "analysis_cache", ["symbol"], unique=False)
    op.create_index("ix_analysis_cache_expires_at", "analysis_cache", ["expires_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_analysis_cache_expires_at", table_name="analysis_cache")
    op.drop_index("ix_analysis_cache_symbol", table_name="analysis_cache")
    op.drop_table("analysis_cache")
    op.drop_index("ix_analysis_jobs_symbol_status", table_name="analysis_jobs")
    op.drop_index("ix_analysis_jobs_status_created", table_name="analysis_jobs")
    op.drop_index("ix_analysis_jobs_symbol", table_name="analysis_jobs")
    op.drop_table("analysis_jobs")
