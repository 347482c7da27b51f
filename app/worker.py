from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
from uuid import UUID

from redis import Redis
from rq import Queue, Retry

from .config import Settings
from .csv_ingest import count_csv_rows
from .logging_utils import get_logger
from .pipeline import remove_source_file
from .progress import initial_estimate_seconds
from .services import Services

CSV_SUFFIXES = (".csv",)
CSV_CONTENT_TYPES = frozenset({"text/csv", "application/csv", "text/plain"})
logger = get_logger(__name__)

_services: Optional[Services] = None


class UploadRejectedError(ValueError):
    pass


def bind_services(services: Services) -> None:
    """Attach the worker process's handles; called once by the worker entry point."""
    global _services
    _services = services


def unbind_services() -> Optional[Services]:
    global _services
    services, _services = _services, None
    return services


def _require_services() -> Services:
    if _services is None:
        raise RuntimeError("worker services are not bound; start via app.scripts.analysis_worker")
    return _services


def _build_retry_policy(max_attempts: int, base_backoff_s: int) -> Optional[Retry]:
    normalized_attempts = max(1, int(max_attempts))
    max_retries = max(0, normalized_attempts - 1)
    if max_retries == 0:
        return None
    base = max(1, int(base_backoff_s))
    intervals = [base * (2 ** idx) for idx in range(max_retries)]
    return Retry(max=max_retries, interval=intervals)


def _enqueue_job(
    redis: Redis,
    settings: Settings,
    *,
    job_id: UUID,
    file_path: str,
    owner_id: str,
    file_name: str,
) -> str:
    queue = Queue(settings.analysis_queue_name, connection=redis)
    max_attempts = max(1, int(settings.analysis_job_max_attempts))
    retry = _build_retry_policy(max_attempts, settings.analysis_job_retry_backoff_s)
    rq_job = queue.enqueue(
        "app.worker.process_analysis_job",
        str(job_id),
        file_path,
        owner_id,
        file_name,
        job_id=str(job_id),
        retry=retry,
    )
    logger.info(
        "analysis_job.enqueued job_id=%s queue=%s max_attempts=%s",
        job_id,
        settings.analysis_queue_name,
        max_attempts,
    )
    return rq_job.id


def _is_csv_upload(file_name: str, content_type: Optional[str]) -> bool:
    if file_name.lower().endswith(CSV_SUFFIXES):
        return True
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type in CSV_CONTENT_TYPES


def submit_upload(
    services: Services,
    *,
    owner_id: str,
    file_name: str,
    file_path: str,
    content_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Register an uploaded file as a pending job and hand it to the queue.

    The uploaded file is removed if any step before the hand-off fails.
    """
    path = Path(file_path)
    job_id: Optional[UUID] = None
    try:
        if not _is_csv_upload(file_name, content_type):
            raise UploadRejectedError("Only CSV files are allowed")
        total_rows = count_csv_rows(path)
        estimated_seconds = initial_estimate_seconds(
            total_rows, services.settings.analysis_batch_size
        )
        job_id = services.jobs.create_job(
            owner_id,
            file_name,
            total_rows=total_rows,
            estimated_seconds=estimated_seconds,
        )
        _enqueue_job(
            services.redis,
            services.settings,
            job_id=job_id,
            file_path=str(path),
            owner_id=owner_id,
            file_name=file_name,
        )
    except Exception as exc:
        logger.warning(
            "analysis_job.submit_failed file_name=%s owner=%s error=%s",
            file_name,
            owner_id,
            str(exc),
        )
        if job_id is not None:
            services.jobs.fail_job(job_id, f"failed to enqueue job: {exc}")
        remove_source_file(path)
        raise

    return {
        "jobId": str(job_id),
        "totalRows": total_rows,
        "estimatedSeconds": estimated_seconds,
    }


def process_analysis_job(
    job_id: str,
    file_path: str,
    owner_id: Optional[str] = None,
    file_name: Optional[str] = None,
) -> Dict[str, Any]:
    if not job_id or not file_path:
        raise ValueError("Missing file_path or job_id in job data")
    services = _require_services()
    return services.build_pipeline().run(job_id, file_path, owner_id, file_name)
