"""add row analysis cache

Revision ID: 0002_add_analysis_cache
Revises: 0001_create_analysis_jobs
Create Date: 2026-09-16

"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_add_analysis_cache"
down_revision = "0001_create_analysis_jobs"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_cache (
          row_hash         TEXT NOT NULL,
          model_version    TEXT NOT NULL,
          prompt_version   TEXT NOT NULL,
          analysis_result  JSONB NOT NULL,
          created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
          PRIMARY KEY (row_hash, model_version, prompt_version)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS analysis_cache_created_idx "
        "ON analysis_cache (created_at);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS analysis_cache;")
