from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping, Optional


def _as_clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_row(fields: Mapping[str, Any]) -> Dict[str, str]:
    return {str(key): _as_clean_str(fields[key]) for key in sorted(fields, key=str)}


def fingerprint(fields: Mapping[str, Any]) -> str:
    """SHA-256 over the canonical JSON of the normalized field map.

    Column order, surrounding whitespace and ``None`` vs ``""`` do not affect
    the digest. Callers pass field values only, never the row sequence id.
    """
    canonical = json.dumps(
        normalize_row(fields),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def trim_row_for_input(row_id: Optional[str], fields: Mapping[str, Any]) -> Dict[str, Any]:
    trimmed: Dict[str, Any] = {"id": row_id}
    for key, value in fields.items():
        if _as_clean_str(value):
            trimmed[key] = value
    return trimmed
