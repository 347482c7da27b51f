from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from app.analysis_client import AnalysisClientError, CompletionResult
from app.csv_ingest import Row
from app.dispatcher import (
    ERROR_BATCH_FAILED,
    ERROR_ROW_MISSING,
    BatchDispatcher,
    BatchResponseError,
    iter_batches,
    parse_batch_response,
)
from app.fingerprint import fingerprint


def _rows(count: int) -> List[Row]:
    rows = []
    for index in range(count):
        fields = {"Staff": f"Staff {index}", "Notes": f"note {index}", "Expense": ""}
        rows.append(
            Row(index=index, row_id=f"r{index}", fields=fields, row_hash=fingerprint(fields))
        )
    return rows


def _analysis(summary: str) -> Dict[str, Any]:
    return {
        "staff_name": "Ana",
        "shift_summary": summary,
        "exceptions": {"overtime": {"occurred": True, "duration": "30 minutes"}},
        "expenses": [],
        "reimbursement_claim_explicit": False,
        "lazy_note": False,
    }


class _FakeAnalyzer:
    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.content = content
        self.error = error
        self.payloads: List[List[Dict[str, Any]]] = []

    def analyze(self, batch_payload):
        self.payloads.append(list(batch_payload))
        if self.error is not None:
            raise self.error
        return CompletionResult(content=self.content or "{}", model="gpt-4o", total_tokens=120)


def test_analyze_batch_maps_results_by_row_id() -> None:
    rows = _rows(3)
    analyzer = _FakeAnalyzer(json.dumps({row.row_id: _analysis(row.row_id) for row in rows}))

    outcome = BatchDispatcher(analyzer, batch_size=10).analyze_batch(rows)

    assert not outcome.failed
    assert outcome.tokens_used == 120
    assert outcome.results["r1"]["shift_summary"] == "r1"
    assert outcome.results["r1"]["exceptions"]["overtime"]["duration"] == "30 minutes"
    assert outcome.results["r1"]["exceptions"]["incident"]["occurred"] is False
    assert set(outcome.cacheable) == {"r0", "r1", "r2"}


def test_analyze_batch_sends_trimmed_rows() -> None:
    rows = _rows(2)
    analyzer = _FakeAnalyzer(json.dumps({row.row_id: _analysis("ok") for row in rows}))

    BatchDispatcher(analyzer).analyze_batch(rows)

    assert analyzer.payloads[0] == [
        {"id": "r0", "Staff": "Staff 0", "Notes": "note 0"},
        {"id": "r1", "Staff": "Staff 1", "Notes": "note 1"},
    ]


def test_missing_row_gets_individual_marker() -> None:
    rows = _rows(10)
    body = {row.row_id: _analysis("ok") for row in rows if row.row_id != "r7"}
    outcome = BatchDispatcher(_FakeAnalyzer(json.dumps(body))).analyze_batch(rows)

    assert outcome.results["r7"] == {"error": ERROR_ROW_MISSING}
    assert "r7" not in outcome.cacheable
    assert len(outcome.cacheable) == 9
    assert not outcome.failed


def test_row_level_error_entry_is_not_cached() -> None:
    rows = _rows(2)
    body = {"r0": _analysis("ok"), "r1": {"error": "could not read notes"}}
    outcome = BatchDispatcher(_FakeAnalyzer(json.dumps(body))).analyze_batch(rows)

    assert outcome.results["r1"] == {"error": "could not read notes"}
    assert set(outcome.cacheable) == {"r0"}


@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        json.dumps([{"id": "r0"}]),
        json.dumps({"r0": "plain string", "r1": {"shift_summary": "ok"}}),
        json.dumps({"r0": {"shift_summary": "ok"}, "r1": {"staff_name": "no summary"}}),
    ],
)
def test_malformed_response_fails_whole_batch(content: str) -> None:
    rows = _rows(2)
    outcome = BatchDispatcher(_FakeAnalyzer(content)).analyze_batch(rows)

    assert outcome.failed
    assert outcome.results == {
        "r0": {"error": ERROR_BATCH_FAILED},
        "r1": {"error": ERROR_BATCH_FAILED},
    }
    assert outcome.cacheable == {}


def test_client_error_becomes_row_markers() -> None:
    rows = _rows(3)
    analyzer = _FakeAnalyzer(error=AnalysisClientError("analysis service returned 429: slow down"))

    outcome = BatchDispatcher(analyzer).analyze_batch(rows)

    assert outcome.failed
    assert all(result == {"error": ERROR_BATCH_FAILED} for result in outcome.results.values())
    assert outcome.tokens_used is None


def test_analyze_batch_rejects_oversized_batch() -> None:
    with pytest.raises(ValueError, match="exceeds batch_size"):
        BatchDispatcher(_FakeAnalyzer(), batch_size=2).analyze_batch(_rows(3))


def test_analyze_batch_empty_rows_skips_call() -> None:
    analyzer = _FakeAnalyzer()
    outcome = BatchDispatcher(analyzer).analyze_batch([])
    assert outcome.results == {}
    assert analyzer.payloads == []


def test_parse_batch_response_ignores_unrequested_ids() -> None:
    content = json.dumps({"r0": _analysis("ok"), "r99": {"garbage": True}})
    results = parse_batch_response(content, ["r0"])
    assert list(results) == ["r0"]


def test_parse_batch_response_rejects_non_object() -> None:
    with pytest.raises(BatchResponseError):
        parse_batch_response("[]", ["r0"])


def test_iter_batches_splits_rows() -> None:
    batches = list(iter_batches(_rows(25), 10))
    assert [len(batch) for batch in batches] == [10, 10, 5]
    assert batches[2][0].row_id == "r20"
    with pytest.raises(ValueError):
        list(iter_batches(_rows(1), 0))
