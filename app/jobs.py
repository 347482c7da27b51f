from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Sequence
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .logging_utils import get_logger
from .progress import ProgressSnapshot

JOB_STATUS = Literal["pending", "processing", "completed", "failed", "cancelled"]
STATUS_PENDING: JOB_STATUS = "pending"
STATUS_PROCESSING: JOB_STATUS = "processing"
STATUS_COMPLETED: JOB_STATUS = "completed"
STATUS_FAILED: JOB_STATUS = "failed"
STATUS_CANCELLED: JOB_STATUS = "cancelled"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})
logger = get_logger(__name__)


class JobNotFoundError(KeyError):
    pass


def _parse_job_id(job_id: Any) -> Optional[UUID]:
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except (TypeError, ValueError):
        return None


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_job(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "jobId": str(row["job_id"]),
        "ownerId": row["owner_id"],
        "fileName": row["file_name"],
        "status": row["status"],
        "progress": row["progress"],
        "totalRows": row["total_rows"],
        "processedRows": row["processed_rows"],
        "cachedRows": row["cached_rows"],
        "freshRows": row["fresh_rows"],
        "estimatedSeconds": row["estimated_seconds"],
        "error": row["error"],
        "results": row["results"],
        "createdAt": _iso(row["created_at"]),
        "startedAt": _iso(row["started_at"]),
        "completedAt": _iso(row["completed_at"]),
    }


class JobStore:
    """Persistence and state transitions for analysis jobs.

    Every transition is one conditional ``UPDATE`` guarded on the current
    status, so concurrent workers and cancel requests cannot both win.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_job(
        self,
        owner_id: str,
        file_name: str,
        *,
        total_rows: Optional[int],
        estimated_seconds: Optional[int],
    ) -> UUID:
        with self._engine.begin() as conn:
            job_id = conn.execute(
                text(
                    """
                    INSERT INTO analysis_jobs
                      (owner_id, file_name, status, total_rows, estimated_seconds)
                    VALUES
                      (:owner_id, :file_name, :status, :total_rows, :estimated_seconds)
                    RETURNING job_id
                    """
                ),
                {
                    "owner_id": owner_id,
                    "file_name": file_name,
                    "status": STATUS_PENDING,
                    "total_rows": total_rows,
                    "estimated_seconds": estimated_seconds,
                },
            ).scalar_one()
        logger.info(
            "analysis_job.created job_id=%s owner=%s total_rows=%s",
            job_id,
            owner_id,
            total_rows,
        )
        return job_id

    def _transition(
        self,
        job_id: UUID,
        *,
        from_statuses: Sequence[str],
        set_clauses: Sequence[str],
        params: Dict[str, Any],
        returning: str = "job_id",
    ) -> Optional[Dict[str, Any]]:
        statement = text(
            f"""
            UPDATE analysis_jobs
            SET {", ".join(list(set_clauses) + ["updated_at = now()"])}
            WHERE job_id = :job_id
              AND status = ANY(:from_statuses)
            RETURNING {returning}
            """
        )
        with self._engine.begin() as conn:
            row = conn.execute(
                statement,
                {**params, "job_id": job_id, "from_statuses": list(from_statuses)},
            ).mappings().first()
        return dict(row) if row is not None else None

    def _applied(self, job_id: UUID, **kwargs: Any) -> bool:
        return self._transition(job_id, **kwargs) is not None

    def start_job(self, job_id: UUID) -> Optional[Dict[str, Any]]:
        """Move a pending job to processing.

        Returns the job's ``total_rows`` and ``estimated_seconds``, or ``None``
        when the job is not pending (duplicate delivery, cancelled, terminal).
        """
        return self._transition(
            job_id,
            from_statuses=[STATUS_PENDING],
            set_clauses=["status = :status", "started_at = now()", "attempts = attempts + 1"],
            params={"status": STATUS_PROCESSING},
            returning="total_rows, estimated_seconds",
        )

    def update_progress(self, job_id: UUID, snapshot: ProgressSnapshot) -> bool:
        return self._applied(
            job_id,
            from_statuses=[STATUS_PROCESSING],
            set_clauses=[
                "progress = GREATEST(progress, :progress)",
                "processed_rows = GREATEST(processed_rows, :processed_rows)",
                "estimated_seconds = :estimated_seconds",
            ],
            params={
                "progress": snapshot.progress,
                "processed_rows": snapshot.processed_rows,
                "estimated_seconds": snapshot.estimated_seconds,
            },
        )

    def complete_job(
        self,
        job_id: UUID,
        results: List[Dict[str, Any]],
        *,
        cached_rows: int,
        fresh_rows: int,
    ) -> bool:
        return self._applied(
            job_id,
            from_statuses=[STATUS_PROCESSING],
            set_clauses=[
                "status = :status",
                "progress = 100",
                "total_rows = :total_rows",
                "processed_rows = :total_rows",
                "cached_rows = :cached_rows",
                "fresh_rows = :fresh_rows",
                "estimated_seconds = 0",
                "results = CAST(:results AS jsonb)",
                "error = NULL",
                "completed_at = now()",
            ],
            params={
                "status": STATUS_COMPLETED,
                "total_rows": len(results),
                "cached_rows": cached_rows,
                "fresh_rows": fresh_rows,
                "results": json.dumps(results),
            },
        )

    def fail_job(self, job_id: UUID, error: str) -> bool:
        return self._applied(
            job_id,
            from_statuses=[STATUS_PENDING, STATUS_PROCESSING],
            set_clauses=["status = :status", "error = :error", "completed_at = now()"],
            params={"status": STATUS_FAILED, "error": error},
        )

    def get_status(self, job_id: UUID) -> Optional[str]:
        with self._engine.connect() as conn:
            return conn.execute(
                text("SELECT status FROM analysis_jobs WHERE job_id = :job_id"),
                {"job_id": job_id},
            ).scalar()

    def is_cancelled(self, job_id: UUID) -> bool:
        return self.get_status(job_id) == STATUS_CANCELLED

    def cancel_job(self, job_id: Any, owner_id: str) -> str:
        job_uuid = _parse_job_id(job_id)
        if job_uuid is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    UPDATE analysis_jobs
                    SET status = :status, completed_at = now(), updated_at = now()
                    WHERE job_id = :job_id
                      AND owner_id = :owner_id
                      AND status IN ('pending', 'processing')
                    RETURNING status
                    """
                ),
                {"status": STATUS_CANCELLED, "job_id": job_uuid, "owner_id": owner_id},
            ).fetchone()
            if row is not None:
                logger.info("analysis_job.cancelled job_id=%s owner=%s", job_uuid, owner_id)
                return row[0]

            current = conn.execute(
                text(
                    """
                    SELECT status FROM analysis_jobs
                    WHERE job_id = :job_id AND owner_id = :owner_id
                    """
                ),
                {"job_id": job_uuid, "owner_id": owner_id},
            ).scalar()
        if current is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        return current

    def get_job(self, job_id: Any, owner_id: str) -> Dict[str, Any]:
        job_uuid = _parse_job_id(job_id)
        if job_uuid is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT job_id, owner_id, file_name, status, progress, total_rows,
                           processed_rows, cached_rows, fresh_rows, estimated_seconds,
                           error, results, created_at, started_at, completed_at
                    FROM analysis_jobs
                    WHERE job_id = :job_id AND owner_id = :owner_id
                    """
                ),
                {"job_id": job_uuid, "owner_id": owner_id},
            ).mappings().first()
        if row is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        return _serialize_job(dict(row))

    def get_job_status(self, job_id: Any, owner_id: str) -> Dict[str, Any]:
        job_uuid = _parse_job_id(job_id)
        if job_uuid is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT status, progress, total_rows, processed_rows, estimated_seconds
                    FROM analysis_jobs
                    WHERE job_id = :job_id AND owner_id = :owner_id
                    """
                ),
                {"job_id": job_uuid, "owner_id": owner_id},
            ).mappings().first()
        if row is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        return {
            "status": row["status"],
            "progress": row["progress"],
            "totalRows": row["total_rows"],
            "processedRows": row["processed_rows"],
            "estimatedSeconds": row["estimated_seconds"],
        }

    def list_jobs(self, owner_id: str, *, limit: int = 20) -> Dict[str, Any]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT job_id, file_name, status, progress, total_rows,
                           created_at, completed_at
                    FROM analysis_jobs
                    WHERE owner_id = :owner_id
                    ORDER BY created_at DESC, job_id DESC
                    LIMIT :limit
                    """
                ),
                {"owner_id": owner_id, "limit": limit},
            ).mappings()
            jobs = [
                {
                    "jobId": str(row["job_id"]),
                    "fileName": row["file_name"],
                    "status": row["status"],
                    "progress": row["progress"],
                    "totalRows": row["total_rows"],
                    "createdAt": _iso(row["created_at"]),
                    "completedAt": _iso(row["completed_at"]),
                }
                for row in rows
            ]
        return {"jobs": jobs}
