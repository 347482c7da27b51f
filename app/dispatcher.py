from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from .analysis_client import CompletionResult
from .csv_ingest import Row
from .fingerprint import trim_row_for_input
from .logging_utils import get_logger
from .schemas import RowAnalysis

DEFAULT_BATCH_SIZE = 10
ERROR_ROW_MISSING = "Analysis missing for this row"
ERROR_BATCH_FAILED = "Batch processing failed"
ERROR_RESULT_MISSING = "Missing"
logger = get_logger(__name__)


class BatchResponseError(ValueError):
    pass


class BatchAnalyzer(Protocol):
    def analyze(self, batch_payload: Sequence[Dict[str, Any]]) -> CompletionResult:
        ...


@dataclass
class BatchOutcome:
    results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    cacheable: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    tokens_used: Optional[int] = None
    failed: bool = False


def error_marker(message: str) -> Dict[str, Any]:
    return {"error": message}


def is_error_marker(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result


def iter_batches(rows: Sequence[Row], batch_size: int) -> Iterator[List[Row]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")
    for start in range(0, len(rows), batch_size):
        yield list(rows[start : start + batch_size])


def parse_batch_response(content: str, row_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    """Validate a raw batch response and map each requested row id to a result.

    Any structural problem with the payload or with one of the returned
    entries rejects the whole batch. Requested ids that are simply absent get
    an individual error marker.
    """
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise BatchResponseError(f"analysis response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise BatchResponseError("analysis response must be a JSON object keyed by row id")

    results: Dict[str, Dict[str, Any]] = {}
    for row_id in row_ids:
        raw = parsed.get(row_id)
        if raw is None:
            results[row_id] = error_marker(ERROR_ROW_MISSING)
            continue
        if not isinstance(raw, dict):
            raise BatchResponseError(f"analysis for {row_id} is not an object")
        if raw.get("error"):
            results[row_id] = error_marker(str(raw["error"]))
            continue
        try:
            analysis = RowAnalysis.model_validate(raw)
        except ValidationError as exc:
            raise BatchResponseError(
                f"analysis for {row_id} does not match schema: {exc.error_count()} errors"
            ) from exc
        results[row_id] = analysis.model_dump(mode="json")
    return results


class BatchDispatcher:
    def __init__(self, client: BatchAnalyzer, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._client = client
        self.batch_size = int(batch_size)

    def analyze_batch(self, rows: Sequence[Row]) -> BatchOutcome:
        if len(rows) > self.batch_size:
            raise ValueError(
                f"batch of {len(rows)} rows exceeds batch_size={self.batch_size}"
            )
        outcome = BatchOutcome()
        if not rows:
            return outcome

        row_ids = [row.row_id for row in rows]
        payload = [trim_row_for_input(row.row_id, row.fields) for row in rows]
        try:
            completion = self._client.analyze(payload)
            outcome.tokens_used = completion.total_tokens
            results = parse_batch_response(completion.content, row_ids)
        except Exception as exc:
            logger.exception(
                "batch_dispatch.failed first_row=%s rows=%s error=%s",
                row_ids[0],
                len(row_ids),
                str(exc),
            )
            outcome.failed = True
            outcome.results = {row_id: error_marker(ERROR_BATCH_FAILED) for row_id in row_ids}
            return outcome

        outcome.results = results
        outcome.cacheable = {
            row_id: result for row_id, result in results.items() if not is_error_marker(result)
        }
        missing = len(results) - len(outcome.cacheable)
        if missing:
            logger.warning(
                "batch_dispatch.partial first_row=%s rows=%s row_errors=%s",
                row_ids[0],
                len(row_ids),
                missing,
            )
        return outcome
