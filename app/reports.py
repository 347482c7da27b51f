from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine


class ReportStore:
    """Write-once audit records of completed jobs."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_report(
        self,
        *,
        job_id: UUID,
        owner_id: Optional[str],
        file_name: Optional[str],
        cached_rows: int,
        fresh_rows: int,
        tokens_used: Optional[int],
        results: List[Dict[str, Any]],
    ) -> UUID:
        with self._engine.begin() as conn:
            created = conn.execute(
                text(
                    """
                    INSERT INTO analysis_reports
                      (job_id, owner_id, file_name, total_rows, cached_rows, fresh_rows,
                       tokens_used, results)
                    VALUES
                      (:job_id, :owner_id, :file_name, :total_rows, :cached_rows, :fresh_rows,
                       :tokens_used, CAST(:results AS jsonb))
                    ON CONFLICT (job_id) DO NOTHING
                    RETURNING report_id
                    """
                ),
                {
                    "job_id": job_id,
                    "owner_id": owner_id,
                    "file_name": file_name,
                    "total_rows": len(results),
                    "cached_rows": cached_rows,
                    "fresh_rows": fresh_rows,
                    "tokens_used": tokens_used,
                    "results": json.dumps(results),
                },
            ).fetchone()
            if created:
                return created[0]

            existing = conn.execute(
                text("SELECT report_id FROM analysis_reports WHERE job_id = :job_id"),
                {"job_id": job_id},
            ).fetchone()
            if existing is None:
                raise RuntimeError(f"failed to create or fetch report for job {job_id}")
            return existing[0]
