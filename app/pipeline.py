from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID

from .analysis_cache import AnalysisCache, entries_from_results
from .csv_ingest import DEFAULT_WINDOW_SIZE, Row, count_csv_rows, iter_row_windows
from .dispatcher import ERROR_RESULT_MISSING, BatchDispatcher, error_marker, iter_batches
from .jobs import STATUS_CANCELLED, STATUS_COMPLETED, STATUS_FAILED, TERMINAL_STATUSES, JobStore
from .logging_utils import bind_job_id, get_logger, reset_job_id
from .progress import ProgressTracker
from .reports import ReportStore

logger = get_logger(__name__)


@dataclass
class RunStats:
    cached_rows: int = 0
    fresh_rows: int = 0
    tokens_used: Optional[int] = None
    external_batches: int = 0

    def add_tokens(self, tokens: Optional[int]) -> None:
        if tokens is None:
            return
        self.tokens_used = (self.tokens_used or 0) + tokens


def remove_source_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("analysis_job.cleanup_failed path=%s error=%s", path, str(exc))


def build_result_item(row: Row, analysis_result: Dict[str, Any]) -> Dict[str, Any]:
    return {"row_id": row.row_id, "row": dict(row.fields), "analysis_result": analysis_result}


class CsvAnalysisPipeline:
    """Runs one analysis job from the source file to a terminal state."""

    def __init__(
        self,
        jobs: JobStore,
        cache: AnalysisCache,
        dispatcher: BatchDispatcher,
        reports: ReportStore,
        *,
        model_version: str,
        prompt_version: str,
        window_size: int = DEFAULT_WINDOW_SIZE,
    ) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be > 0")
        self._jobs = jobs
        self._cache = cache
        self._dispatcher = dispatcher
        self._reports = reports
        self.model_version = model_version
        self.prompt_version = prompt_version
        self.window_size = int(window_size)

    def run(
        self,
        job_id: Any,
        file_path: str,
        owner_id: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        job_uuid = UUID(str(job_id))
        source_path = Path(file_path)
        token = bind_job_id(str(job_uuid))
        try:
            started = self._jobs.start_job(job_uuid)
            if started is None:
                return self._skip_pickup(job_uuid, source_path)
            try:
                return self._process(job_uuid, source_path, owner_id, file_name, started)
            finally:
                remove_source_file(source_path)
        finally:
            reset_job_id(token)

    def _skip_pickup(self, job_id: UUID, source_path: Path) -> Dict[str, Any]:
        status = self._jobs.get_status(job_id)
        logger.info("analysis_job.pickup_skipped job_id=%s status=%s", job_id, status)
        if status is None or status in TERMINAL_STATUSES:
            remove_source_file(source_path)
        return {"jobId": str(job_id), "status": status, "skipped": True}

    def _process(
        self,
        job_id: UUID,
        source_path: Path,
        owner_id: Optional[str],
        file_name: Optional[str],
        started: Dict[str, Any],
    ) -> Dict[str, Any]:
        stats = RunStats()
        try:
            total_rows = started.get("total_rows")
            if total_rows is None:
                total_rows = count_csv_rows(source_path)
            tracker = ProgressTracker(
                total_rows,
                self._dispatcher.batch_size,
                initial_estimate=started.get("estimated_seconds"),
            )
            logger.info(
                "analysis_job.start job_id=%s total_rows=%s window_size=%s batch_size=%s",
                job_id,
                total_rows,
                self.window_size,
                self._dispatcher.batch_size,
            )

            results: List[Dict[str, Any]] = []
            for window in iter_row_windows(source_path, self.window_size):
                window_results = self._process_window(job_id, window, tracker, stats)
                if window_results is None:
                    return self._cancelled_summary(job_id, stats)
                results.extend(window_results)

            if len(results) != total_rows:
                logger.warning(
                    "analysis_job.row_count_mismatch job_id=%s counted=%s expected=%s",
                    job_id,
                    len(results),
                    total_rows,
                )

            if not self._jobs.complete_job(
                job_id,
                results,
                cached_rows=stats.cached_rows,
                fresh_rows=stats.fresh_rows,
            ):
                return self._cancelled_summary(job_id, stats)
        except Exception as exc:
            logger.exception("analysis_job.failed job_id=%s error=%s", job_id, str(exc))
            self._jobs.fail_job(job_id, str(exc) or exc.__class__.__name__)
            return {"jobId": str(job_id), "status": STATUS_FAILED, "error": str(exc)}

        self._write_report(job_id, owner_id, file_name, stats, results)
        logger.info(
            "analysis_job.complete job_id=%s total_rows=%s cached=%s fresh=%s batches=%s",
            job_id,
            len(results),
            stats.cached_rows,
            stats.fresh_rows,
            stats.external_batches,
        )
        return {
            "jobId": str(job_id),
            "status": STATUS_COMPLETED,
            "totalRows": len(results),
            "cachedRows": stats.cached_rows,
            "freshRows": stats.fresh_rows,
            "tokensUsed": stats.tokens_used,
        }

    def _process_window(
        self,
        job_id: UUID,
        window: List[Row],
        tracker: ProgressTracker,
        stats: RunStats,
    ) -> Optional[List[Dict[str, Any]]]:
        if self._jobs.is_cancelled(job_id):
            return None

        hits = self._cache.lookup_many(
            [row.row_hash for row in window], self.model_version, self.prompt_version
        )
        analysis_by_row: Dict[str, Dict[str, Any]] = {}
        uncached: List[Row] = []
        for row in window:
            cached = hits.get(row.row_hash)
            if cached is not None:
                analysis_by_row[row.row_id] = cached
            else:
                uncached.append(row)

        cached_count = len(window) - len(uncached)
        if cached_count:
            stats.cached_rows += cached_count
            if not self._jobs.update_progress(job_id, tracker.record(cached_count, cached=True)):
                return None

        for batch in iter_batches(uncached, self._dispatcher.batch_size):
            if self._jobs.is_cancelled(job_id):
                return None
            outcome = self._dispatcher.analyze_batch(batch)
            stats.external_batches += 1
            stats.add_tokens(outcome.tokens_used)
            # The job may have been cancelled while the batch was in flight.
            if not self._jobs.update_progress(job_id, tracker.record(len(batch), cached=False)):
                return None
            stats.fresh_rows += len(batch)
            analysis_by_row.update(outcome.results)
            if outcome.cacheable:
                self._cache.insert_many(
                    entries_from_results(
                        {row.row_id: row.row_hash for row in batch},
                        outcome.cacheable,
                        model_version=self.model_version,
                        prompt_version=self.prompt_version,
                    )
                )

        return [
            build_result_item(
                row, analysis_by_row.get(row.row_id) or error_marker(ERROR_RESULT_MISSING)
            )
            for row in window
        ]

    def _cancelled_summary(self, job_id: UUID, stats: RunStats) -> Dict[str, Any]:
        status = self._jobs.get_status(job_id) or STATUS_CANCELLED
        logger.info(
            "analysis_job.stopped job_id=%s status=%s cached=%s fresh=%s",
            job_id,
            status,
            stats.cached_rows,
            stats.fresh_rows,
        )
        return {"jobId": str(job_id), "status": status}

    def _write_report(
        self,
        job_id: UUID,
        owner_id: Optional[str],
        file_name: Optional[str],
        stats: RunStats,
        results: List[Dict[str, Any]],
    ) -> None:
        try:
            self._reports.create_report(
                job_id=job_id,
                owner_id=owner_id,
                file_name=file_name,
                cached_rows=stats.cached_rows,
                fresh_rows=stats.fresh_rows,
                tokens_used=stats.tokens_used,
                results=results,
            )
        except Exception as exc:
            logger.exception(
                "analysis_report.write_failed job_id=%s error=%s", job_id, str(exc)
            )
