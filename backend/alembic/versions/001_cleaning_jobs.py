"""Cleaning jobs, photo evidence, activity ledger and audit log.

Revision ID: 001_cleaning_jobs
Revises:
Create Date: 2026-10-19
"""
from alembic import op

revision = '001_cleaning_jobs'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "jobstatus": ("pending", "in_progress", "completed"),
    "unittype": ("bachelor", "studio", "1_bed", "2_beds", "3_beds", "4_beds", "house"),
    "photophase": ("before", "after"),
    "activityaction": ("start", "stop"),
    "auditaction": (
        "job_created",
        "job_attributes_edited",
        "job_started",
        "job_completed",
        "job_reset",
        "photo_deleted",
    ),
}


def upgrade() -> None:
    # Create enum types (IF NOT EXISTS)
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
        """)

    # Raw SQL bypasses SQLAlchemy enum auto-creation
    op.execute("""
        CREATE TABLE cleaning_jobs (
            id UUID PRIMARY KEY,
            status jobstatus NOT NULL DEFAULT 'pending',
            unit_type unittype,
            features JSON NOT NULL DEFAULT '[]',
            assigned_worker_id VARCHAR(128),
            requester_id VARCHAR(128),
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            duration_minutes INTEGER,
            notes TEXT,
            created_at TIMESTAMP DEFAULT NOW(),
            updated_at TIMESTAMP DEFAULT NOW()
        )
    """)
    op.create_index('ix_cleaning_jobs_status', 'cleaning_jobs', ['status'])
    op.create_index('ix_cleaning_jobs_assigned_worker_id', 'cleaning_jobs', ['assigned_worker_id'])
    op.create_index('ix_cleaning_jobs_requester_id', 'cleaning_jobs', ['requester_id'])

    op.execute("""
        CREATE TABLE job_photos (
            id UUID PRIMARY KEY,
            job_id UUID NOT NULL REFERENCES cleaning_jobs(id) ON DELETE CASCADE,
            category_key VARCHAR(64) NOT NULL,
            phase photophase NOT NULL,
            object_path VARCHAR(500) NOT NULL,
            storage_ref VARCHAR(500),
            file_hash VARCHAR(64) NOT NULL,
            mime_type VARCHAR(100) DEFAULT 'image/jpeg',
            file_size_bytes INTEGER NOT NULL,
            original_filename VARCHAR(255),
            uploaded_at TIMESTAMP DEFAULT NOW(),
            uploaded_by_id VARCHAR(128)
        )
    """)
    op.create_index('ix_job_photos_job_id', 'job_photos', ['job_id'])
    op.create_index('ix_job_photos_job_phase_category', 'job_photos', ['job_id', 'phase', 'category_key'])

    op.execute("""
        CREATE TABLE job_activity_log (
            id UUID PRIMARY KEY,
            job_id UUID NOT NULL REFERENCES cleaning_jobs(id) ON DELETE CASCADE,
            action activityaction NOT NULL,
            at TIMESTAMP NOT NULL DEFAULT NOW(),
            notes TEXT,
            duration_seconds INTEGER,
            actor_id VARCHAR(128)
        )
    """)
    op.create_index('ix_job_activity_log_job_id', 'job_activity_log', ['job_id'])

    # No foreign key: audit entries outlive resets
    op.execute("""
        CREATE TABLE audit_log (
            id UUID PRIMARY KEY,
            actor_id VARCHAR(128),
            actor_role VARCHAR(32),
            action auditaction NOT NULL,
            resource_type VARCHAR(50) NOT NULL,
            resource_id UUID NOT NULL,
            details JSON,
            created_at TIMESTAMP DEFAULT NOW()
        )
    """)
    op.create_index('ix_audit_log_actor_id', 'audit_log', ['actor_id'])
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])
    op.create_index('ix_audit_log_resource_id', 'audit_log', ['resource_id'])


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('job_activity_log')
    op.drop_table('job_photos')
    op.drop_table('cleaning_jobs')
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
