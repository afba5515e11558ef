"""add data alerts table and job quality summary

Revision ID: 8d4b17e2c6a9
Revises: 5c2e91a7d0f3
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "8d4b17e2c6a9"
down_revision: Union[str, None] = "5c2e91a7d0f3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("analysis_jobs", sa.Column("quality_summary", sa.JSON(), nullable=True))

    op.create_table(
        "data_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("data_type", sa.String(length=48), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("alert_type", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("requires_review", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reviewed_by", sa.String(length=120), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_data_alerts_symbol", "data_alerts", ["symbol"], unique=False)
    op.create_index("ix_data_alerts_reviewed_created", "data_alerts", ["reviewed", "created_at"], unique=False)
    op.create_index("ix_data_alerts_severity", "data_alerts", ["severity"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_data_alerts_severity", table_name="data_alerts")
    op.drop_index("ix_data_alerts_reviewed_created", table_name="data_alerts")
    op.drop_index("ix_data_alerts_symbol", table_name="data_alerts")
    op.drop_table("data_alerts")
    op.drop_column("analysis_jobs", "quality_summary")
