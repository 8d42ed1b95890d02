"""
FastAPI router for the external cron trigger.

An external scheduler calls ``/api/cron/reminders`` with
``Authorization: Bearer <SCHEDULER__CRON_SECRET>`` to start the daily pass.
"""

import hmac

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from subtrack.billing.service import SubscriptionService
from subtrack.scheduler.service import ReminderScheduler
from subtrack.settings import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Scheduler"])


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    """Scheduler from ``app.state.scheduler_factory`` or a default one."""
    factory = getattr(request.app.state, "scheduler_factory", None)
    if factory is not None:
        return factory()
    return ReminderScheduler(SubscriptionService())


def _authorized(authorization: str | None) -> bool:
    secret = get_settings().scheduler.cron_secret
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


@router.api_route("/api/cron/reminders", methods=["GET", "POST"])
async def trigger_reminders(
    authorization: str | None = Header(None),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
) -> JSONResponse:
    """Run the daily reminder and grace-period pass."""
    if not _authorized(authorization):
        logger.warning("cron.trigger.unauthorized")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    summary = await scheduler.run_daily_pass()
    logger.info(
        "cron.trigger.completed",
        skipped=summary.skipped,
        reminders_sent=summary.reminders_sent,
        deactivated_count=summary.deactivated_count,
    )
    content = {
        "success": not summary.skipped,
        "message": "Skipped: another run is in progress" if summary.skipped else "Cron completed",
        **summary.model_dump(mode="json"),
    }
    return JSONResponse(status_code=200, content=content)


__all__ = ["router", "get_reminder_scheduler"]
