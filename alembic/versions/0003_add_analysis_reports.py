"""add write-once analysis reports

Revision ID: 0003_add_analysis_reports
Revises: 0002_add_analysis_cache
Create Date: 2026-09-21

"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0003_add_analysis_reports"
down_revision = "0002_add_analysis_cache"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_reports (
          report_id    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          job_id       UUID UNIQUE REFERENCES analysis_jobs(job_id) ON DELETE SET NULL,
          owner_id     TEXT,
          file_name    TEXT,
          total_rows   INT NOT NULL,
          cached_rows  INT NOT NULL,
          fresh_rows   INT NOT NULL,
          tokens_used  INT,
          results      JSONB NOT NULL,
          created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS analysis_reports_owner_created_idx "
        "ON analysis_reports (owner_id, created_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS analysis_reports;")
