from __future__ import annotations

from dataclasses import dataclass

from redis import Redis
from sqlalchemy.engine import Engine

from .analysis_cache import AnalysisCache
from .analysis_client import AnalysisClient
from .config import Settings
from .db import create_db_engine
from .dispatcher import BatchDispatcher
from .jobs import JobStore
from .logging_utils import get_logger
from .pipeline import CsvAnalysisPipeline
from .reports import ReportStore

logger = get_logger(__name__)


@dataclass
class Services:
    """Process-wide handles, opened at startup and closed at shutdown."""

    settings: Settings
    engine: Engine
    redis: Redis
    analysis_client: AnalysisClient
    jobs: JobStore
    cache: AnalysisCache
    reports: ReportStore

    def build_pipeline(self) -> CsvAnalysisPipeline:
        return CsvAnalysisPipeline(
            jobs=self.jobs,
            cache=self.cache,
            dispatcher=BatchDispatcher(
                self.analysis_client, batch_size=self.settings.analysis_batch_size
            ),
            reports=self.reports,
            model_version=self.settings.analysis_model,
            prompt_version=self.settings.analysis_prompt_version,
            window_size=self.settings.ingest_window_size,
        )

    def close(self) -> None:
        self.analysis_client.close()
        self.redis.close()
        self.engine.dispose()
        logger.info("services.closed")


def open_services(settings: Settings) -> Services:
    engine = create_db_engine(settings.database_url)
    services = Services(
        settings=settings,
        engine=engine,
        redis=Redis.from_url(settings.redis_url),
        analysis_client=AnalysisClient.from_settings(settings),
        jobs=JobStore(engine),
        cache=AnalysisCache(engine, ttl_days=settings.cache_ttl_days),
        reports=ReportStore(engine),
    )
    logger.info(
        "services.opened queue=%s model=%s prompt_version=%s",
        settings.analysis_queue_name,
        settings.analysis_model,
        settings.analysis_prompt_version,
    )
    return services
