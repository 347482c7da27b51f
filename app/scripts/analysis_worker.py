from __future__ import annotations

from rq import SimpleWorker

from app.config import settings
from app.logging_utils import configure_logging, get_logger
from app.services import open_services
from app.worker import bind_services, unbind_services


def main() -> None:
    configure_logging(settings.log_level)
    logger = get_logger(__name__)
    services = open_services(settings)
    bind_services(services)
    logger.info(
        "analysis_worker.start queue=%s redis=%s",
        settings.analysis_queue_name,
        settings.redis_url,
    )
    # Jobs run in this process so they share the bound engine and HTTP client.
    worker = SimpleWorker([settings.analysis_queue_name], connection=services.redis)
    try:
        worker.work(with_scheduler=True)
    finally:
        unbind_services()
        services.close()
        logger.info("analysis_worker.stop queue=%s", settings.analysis_queue_name)


if __name__ == "__main__":
    main()
