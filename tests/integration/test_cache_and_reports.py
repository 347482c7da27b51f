from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import text

from app.analysis_cache import AnalysisCache, CacheEntry
from app.fingerprint import fingerprint
from app.jobs import JobStore
from app.reports import ReportStore

pytestmark = pytest.mark.integration


def _entry(row_hash: str, summary: str, model: str = "gpt-4o", prompt: str = "v1") -> CacheEntry:
    return CacheEntry(
        row_hash=row_hash,
        model_version=model,
        prompt_version=prompt,
        analysis_result={"shift_summary": summary},
    )


def test_cache_is_write_once_and_scoped_by_model_and_prompt(engine) -> None:
    cache = AnalysisCache(engine, ttl_days=30)
    row_hash = fingerprint({"Notes": f"note {uuid4().hex}"})

    assert cache.insert_many([_entry(row_hash, "first")]) == 1
    assert cache.insert_many([_entry(row_hash, "second")]) == 0

    assert cache.lookup_many([row_hash], "gpt-4o", "v1") == {
        row_hash: {"shift_summary": "first"}
    }
    assert cache.lookup_many([row_hash], "gpt-4o", "v2") == {}
    assert cache.lookup_many([row_hash], "gpt-4o-mini", "v1") == {}


def test_expired_entries_are_invisible_and_purged(engine) -> None:
    cache = AnalysisCache(engine, ttl_days=30)
    fresh_hash = fingerprint({"Notes": f"fresh {uuid4().hex}"})
    stale_hash = fingerprint({"Notes": f"stale {uuid4().hex}"})
    cache.insert_many([_entry(fresh_hash, "fresh"), _entry(stale_hash, "stale")])
    with engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE analysis_cache SET created_at = now() - interval '31 days' "
                "WHERE row_hash = :row_hash"
            ),
            {"row_hash": stale_hash},
        )

    hits = cache.lookup_many([fresh_hash, stale_hash], "gpt-4o", "v1")
    assert set(hits) == {fresh_hash}

    assert cache.purge_expired() >= 1
    with engine.connect() as conn:
        remaining = conn.execute(
            text("SELECT count(*) FROM analysis_cache WHERE row_hash = :row_hash"),
            {"row_hash": stale_hash},
        ).scalar_one()
    assert remaining == 0


def test_insert_replaces_expired_entry_before_purge(engine) -> None:
    cache = AnalysisCache(engine, ttl_days=30)
    row_hash = fingerprint({"Notes": f"aged {uuid4().hex}"})
    cache.insert_many([_entry(row_hash, "old")])
    with engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE analysis_cache SET created_at = now() - interval '31 days' "
                "WHERE row_hash = :row_hash"
            ),
            {"row_hash": row_hash},
        )
    assert cache.lookup_many([row_hash], "gpt-4o", "v1") == {}

    assert cache.insert_many([_entry(row_hash, "new")]) == 1
    assert cache.lookup_many([row_hash], "gpt-4o", "v1") == {
        row_hash: {"shift_summary": "new"}
    }
    # A live entry is still never overwritten.
    assert cache.insert_many([_entry(row_hash, "newer")]) == 0
    assert cache.lookup_many([row_hash], "gpt-4o", "v1")[row_hash]["shift_summary"] == "new"


def test_report_is_created_once_per_job(engine) -> None:
    jobs = JobStore(engine)
    reports = ReportStore(engine)
    owner = f"owner-{uuid4().hex[:8]}"
    job_id = jobs.create_job(owner, "notes.csv", total_rows=1, estimated_seconds=3)
    results = [{"row_id": "r0", "row": {"Notes": "a"}, "analysis_result": {"shift_summary": "a"}}]

    report_id = reports.create_report(
        job_id=job_id,
        owner_id=owner,
        file_name="notes.csv",
        cached_rows=0,
        fresh_rows=1,
        tokens_used=42,
        results=results,
    )
    again = reports.create_report(
        job_id=job_id,
        owner_id=owner,
        file_name="notes.csv",
        cached_rows=0,
        fresh_rows=1,
        tokens_used=42,
        results=results,
    )
    assert again == report_id

    with engine.connect() as conn:
        row = conn.execute(
            text(
                "SELECT total_rows, tokens_used, results FROM analysis_reports "
                "WHERE report_id = :report_id"
            ),
            {"report_id": report_id},
        ).mappings().one()
    assert row["total_rows"] == 1
    assert row["tokens_used"] == 42
    assert row["results"][0]["row_id"] == "r0"
