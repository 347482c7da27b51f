import re
from typing import Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine


_VERSION_RE = re.compile(r"^(\d+\.\d+)")


def create_db_engine(database_url: str) -> Engine:
    return create_engine(database_url, pool_pre_ping=True)


def _parse_pg_version(raw: str) -> str:
    match = _VERSION_RE.match(raw.strip())
    return match.group(1) if match else raw.strip()


def fetch_db_info(engine: Engine) -> Dict[str, object]:
    with engine.connect() as conn:
        server_version_raw = conn.execute(text("SHOW server_version")).scalar()
        table_rows = conn.execute(
            text(
                "SELECT table_name "
                "FROM information_schema.tables "
                "WHERE table_schema = current_schema() "
                "AND table_name IN ('analysis_jobs','analysis_cache','analysis_reports')"
            )
        ).fetchall()

    return {
        "server_version_raw": server_version_raw,
        "server_version": _parse_pg_version(server_version_raw),
        "tables": sorted(row[0] for row in table_rows),
    }
