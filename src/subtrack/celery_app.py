"""
Celery application configuration.

The daily scheduler pass is registered as a beat entry at the configured
local time.
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab

from subtrack.logging import setup_logging
from subtrack.settings import settings

setup_logging()
logger = structlog.get_logger(__name__)

# Create Celery application
celery_app = Celery(
    "subtrack",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["subtrack.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    task_default_queue="default",
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    # Task result settings
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the daily reminder and grace-period pass."""
    from subtrack.tasks import run_daily_pass_task

    sender.add_periodic_task(
        crontab(hour=settings.scheduler.run_hour, minute=settings.scheduler.run_minute),
        run_daily_pass_task.s(),
        name="scheduler-run-daily-pass",
    )
    logger.info(
        "celery.beat.registered",
        task="subtrack.scheduler.run_daily_pass",
        hour=settings.scheduler.run_hour,
        minute=settings.scheduler.run_minute,
    )


__all__ = ["celery_app"]
