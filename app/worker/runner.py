"""
Reprocessing worker entry point.
Run with: python -m app.worker.runner [--burst]
"""

import os
import sys

import structlog
from redis import Redis
from rq import Worker

from app.config import settings
from app.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def main():
    """Start the RQ worker on the reprocessing queue."""
    setup_logging()

    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.rq import RqIntegration
        sentry_sdk.init(dsn=settings.SENTRY_DSN, integrations=[RqIntegration()])

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"reprocessing-worker-{settings.APP_VERSION}-{os.getpid()}",
    )

    burst = "--burst" in sys.argv[1:]
    logger.info("worker_starting", queue=settings.QUEUE_NAME, worker=worker.name, burst=burst,
                ai_configured=bool(settings.ANTHROPIC_API_KEY))
    worker.work(burst=burst, with_scheduler=False)


if __name__ == "__main__":
    main()
