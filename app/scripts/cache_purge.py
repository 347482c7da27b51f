from __future__ import annotations

import argparse
import time

from app.analysis_cache import AnalysisCache
from app.config import settings
from app.db import create_db_engine
from app.logging_utils import configure_logging, get_logger


def main() -> None:
    configure_logging(settings.log_level)
    logger = get_logger(__name__)
    parser = argparse.ArgumentParser(
        description="Delete analysis cache entries older than the retention window."
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one purge pass and exit.",
    )
    parser.add_argument(
        "--poll-seconds",
        type=int,
        default=settings.cache_purge_poll_seconds,
        help="Polling interval in seconds when not using --once.",
    )
    args = parser.parse_args()

    if args.poll_seconds <= 0:
        raise SystemExit("--poll-seconds must be > 0")

    engine = create_db_engine(settings.database_url)
    cache = AnalysisCache(engine, ttl_days=settings.cache_ttl_days)
    try:
        while True:
            try:
                deleted = cache.purge_expired()
                logger.info(
                    "cache_purge.pass deleted=%s ttl_days=%s", deleted, settings.cache_ttl_days
                )
            except Exception as exc:  # pragma: no cover - runtime hardening for service loop
                logger.exception("cache_purge.pass_failed error=%s", str(exc))
                if args.once:
                    raise
            if args.once:
                return
            time.sleep(args.poll_seconds)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
