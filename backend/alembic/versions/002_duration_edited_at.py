"""Manual duration corrections on completed jobs.

Revision ID: 002_duration_edited_at
Revises: 001_cleaning_jobs
Create Date: 2026-10-19
"""
from alembic import op

revision = '002_duration_edited_at'
down_revision = '001_cleaning_jobs'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("ALTER TABLE cleaning_jobs ADD COLUMN IF NOT EXISTS duration_edited_at TIMESTAMP")
    # ADD VALUE cannot run inside a transaction block on older PostgreSQL
    with op.get_context().autocommit_block():
        op.execute("ALTER TYPE auditaction ADD VALUE IF NOT EXISTS 'job_duration_edited'")


def downgrade() -> None:
    # PostgreSQL cannot drop a single enum label; the value stays unused
    op.execute("ALTER TABLE cleaning_jobs DROP COLUMN IF EXISTS duration_edited_at")
