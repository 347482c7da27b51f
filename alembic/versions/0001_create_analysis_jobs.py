"""create analysis job tracking table

Revision ID: 0001_create_analysis_jobs
Revises:
Create Date: 2026-09-14

"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_create_analysis_jobs"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_jobs (
          job_id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          owner_id           TEXT NOT NULL,
          file_name          TEXT,
          status             TEXT NOT NULL DEFAULT 'pending',
          progress           INT NOT NULL DEFAULT 0,
          total_rows         INT,
          processed_rows     INT NOT NULL DEFAULT 0,
          cached_rows        INT NOT NULL DEFAULT 0,
          fresh_rows         INT NOT NULL DEFAULT 0,
          estimated_seconds  INT,
          error              TEXT,
          results            JSONB,
          attempts           INT NOT NULL DEFAULT 0,
          created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
          started_at         TIMESTAMPTZ,
          completed_at       TIMESTAMPTZ,
          CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')),
          CHECK (progress BETWEEN 0 AND 100)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS analysis_jobs_owner_created_idx "
        "ON analysis_jobs (owner_id, created_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS analysis_jobs_status_idx "
        "ON analysis_jobs (status, created_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS analysis_jobs;")
