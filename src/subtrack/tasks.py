"""
Celery task definitions.

Tasks are synchronous entry points that drive the async core with
``asyncio.run``.
"""

import asyncio
from typing import Any

import structlog

from subtrack.billing.service import SubscriptionService
from subtrack.celery_app import celery_app
from subtrack.db import dispose_engine
from subtrack.scheduler.models import RunSummary
from subtrack.scheduler.service import ReminderScheduler

logger = structlog.get_logger(__name__)


def build_scheduler() -> ReminderScheduler:
    """Wire a scheduler against the process-wide database and settings."""
    return ReminderScheduler(SubscriptionService())


async def run_daily_pass(scheduler: ReminderScheduler | None = None) -> RunSummary:
    scheduler = scheduler or build_scheduler()
    return await scheduler.run_daily_pass()


async def _run_and_dispose() -> RunSummary:
    # Each task gets a fresh event loop; pooled connections must not outlive it.
    try:
        return await run_daily_pass()
    finally:
        await dispose_engine()


@celery_app.task(name="subtrack.scheduler.run_daily_pass")
def run_daily_pass_task() -> dict[str, Any]:
    """Periodic task running the reminder and grace-period pass."""
    summary = asyncio.run(_run_and_dispose())
    logger.info(
        "task.run_daily_pass.finished",
        reminders_sent=summary.reminders_sent,
        deactivated_count=summary.deactivated_count,
        skipped=summary.skipped,
    )
    return summary.model_dump(mode="json")


__all__ = ["run_daily_pass", "run_daily_pass_task", "build_scheduler"]
