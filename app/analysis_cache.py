from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .logging_utils import get_logger

DEFAULT_TTL_DAYS = 30
logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    row_hash: str
    model_version: str
    prompt_version: str
    analysis_result: Dict[str, Any]


class AnalysisCache:
    """Content-addressed store of per-row analysis results.

    Keyed by ``(row_hash, model_version, prompt_version)``. Entries are
    write-once while live and become invisible after ``ttl_days``. An insert
    over an expired entry replaces it. Backend errors are logged and treated
    as misses so the pipeline keeps running.
    """

    def __init__(self, engine: Engine, ttl_days: int = DEFAULT_TTL_DAYS) -> None:
        if ttl_days <= 0:
            raise ValueError("ttl_days must be > 0")
        self._engine = engine
        self._ttl_days = int(ttl_days)

    def lookup_many(
        self,
        fingerprints: Sequence[str],
        model_version: str,
        prompt_version: str,
    ) -> Dict[str, Dict[str, Any]]:
        hashes = sorted(set(fingerprints))
        if not hashes:
            return {}

        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    text(
                        """
                        SELECT row_hash, analysis_result
                        FROM analysis_cache
                        WHERE row_hash = ANY(:hashes)
                          AND model_version = :model_version
                          AND prompt_version = :prompt_version
                          AND created_at > now() - make_interval(days => CAST(:ttl_days AS int))
                        """
                    ),
                    {
                        "hashes": hashes,
                        "model_version": model_version,
                        "prompt_version": prompt_version,
                        "ttl_days": self._ttl_days,
                    },
                ).mappings()
                return {row["row_hash"]: row["analysis_result"] for row in rows}
        except SQLAlchemyError as exc:
            logger.warning(
                "analysis_cache.lookup_failed hashes=%s error=%s", len(hashes), str(exc)
            )
            return {}

    def insert_many(self, entries: Sequence[CacheEntry]) -> int:
        if not entries:
            return 0

        inserted = 0
        try:
            with self._engine.begin() as conn:
                for entry in entries:
                    result = conn.execute(
                        text(
                            """
                            INSERT INTO analysis_cache
                              (row_hash, model_version, prompt_version, analysis_result)
                            VALUES
                              (:row_hash, :model_version, :prompt_version,
                               CAST(:analysis_result AS jsonb))
                            ON CONFLICT (row_hash, model_version, prompt_version) DO UPDATE
                            SET analysis_result = EXCLUDED.analysis_result,
                                created_at = now()
                            WHERE analysis_cache.created_at
                                  <= now() - make_interval(days => CAST(:ttl_days AS int))
                            """
                        ),
                        {
                            "row_hash": entry.row_hash,
                            "model_version": entry.model_version,
                            "prompt_version": entry.prompt_version,
                            "analysis_result": json.dumps(entry.analysis_result),
                            "ttl_days": self._ttl_days,
                        },
                    )
                    inserted += max(0, result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.warning(
                "analysis_cache.insert_failed entries=%s error=%s", len(entries), str(exc)
            )
            return 0

        logger.info(
            "analysis_cache.inserted entries=%s inserted=%s", len(entries), inserted
        )
        return inserted

    def purge_expired(self) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    DELETE FROM analysis_cache
                    WHERE created_at <= now() - make_interval(days => CAST(:ttl_days AS int))
                    """
                ),
                {"ttl_days": self._ttl_days},
            )
            return max(0, result.rowcount or 0)


def entries_from_results(
    fingerprints_by_row: Dict[str, str],
    cacheable: Dict[str, Dict[str, Any]],
    *,
    model_version: str,
    prompt_version: str,
) -> List[CacheEntry]:
    entries: List[CacheEntry] = []
    seen: set[str] = set()
    for row_id, result in cacheable.items():
        row_hash = fingerprints_by_row.get(row_id)
        if row_hash is None or row_hash in seen:
            continue
        seen.add(row_hash)
        entries.append(
            CacheEntry(
                row_hash=row_hash,
                model_version=model_version,
                prompt_version=prompt_version,
                analysis_result=result,
            )
        )
    return entries
