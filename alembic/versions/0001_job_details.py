"""Persist site sync job history

Revision ID: 0001_job_details
Revises:
Create Date: 2026-10-18
"""

from alembic import op


revision = "0001_job_details"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS job_details (
          id BIGSERIAL PRIMARY KEY,
          job_id VARCHAR(36) NOT NULL UNIQUE,
          job_name VARCHAR(100) NOT NULL,
          status VARCHAR(20) NOT NULL DEFAULT 'RUNNING',
          start_time TIMESTAMPTZ NOT NULL,
          end_time TIMESTAMPTZ,
          duration_ms BIGINT,
          records_processed INTEGER NOT NULL DEFAULT 0,
          error_message TEXT,
          api_response TEXT,
          create_ts TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          update_ts TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          CONSTRAINT ck_job_details_status
            CHECK (status IN ('RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED')),
          CONSTRAINT ck_job_details_records CHECK (records_processed >= 0)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_job_details_name_create_ts ON job_details(job_name, create_ts DESC)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_job_details_status ON job_details(status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_job_details_create_ts ON job_details(create_ts)")


def downgrade():
    op.execute("DROP INDEX IF EXISTS idx_job_details_create_ts")
    op.execute("DROP INDEX IF EXISTS idx_job_details_status")
    op.execute("DROP INDEX IF EXISTS idx_job_details_name_create_ts")
    op.execute("DROP TABLE IF EXISTS job_details")
