"""
Daily reminder and grace-period pass.

One run reads every active subscriber, decides who is due a reminder today
and who has outlived the grace period, deactivates the latter through the
same per-subscriber serialization point interactive calls use, and sends one
aggregated notification per channel for each batch.

The reminder dispatch, the deactivation writes and the deactivation dispatch
are separate failure domains: a failure in one is recorded in the run summary
and never stops the others. A run carries no state into the next one.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from datetime import datetime

import structlog

from subtrack.audit.models import ActivityType
from subtrack.audit.service import AuditService
from subtrack.auth.context import SYSTEM_ACTOR
from subtrack.billing.models import Subscriber, SubscriberStatus
from subtrack.billing.service import SubscriptionService
from subtrack.billing.status import days_until_expiry
from subtrack.calendar.adapter import local_date
from subtrack.clock import Clock, system_clock
from subtrack.communications.dispatcher import ChannelDispatcher, NotificationDispatcher
from subtrack.communications.models import (
    BatchKind,
    DispatchResult,
    NotificationBatch,
    NotificationChannel,
    NotificationEntry,
)
from subtrack.db import ensure_aware
from subtrack.exceptions import SubTrackError
from subtrack.scheduler.models import PassPlan, RunError, RunSummary
from subtrack.settings import get_settings

logger = structlog.get_logger(__name__)

CHANNELS = (NotificationChannel.EMAIL, NotificationChannel.SMS)

# Shared by every scheduler in the process; not bound to an event loop.
_PROCESS_RUN_GUARD = threading.Lock()


def evaluate_subscribers(
    subscribers: Iterable[Subscriber],
    now: datetime,
    grace_period_days: int,
) -> PassPlan:
    """
    Decide today's reminders and deactivations without touching storage.

    Days are whole calendar days in the display timezone. A reminder fires
    only when the days left equal the subscriber's lead time exactly; a
    deactivation fires once the days overdue exceed ``grace_period_days``.
    """
    plan = PassPlan(today=local_date(now))

    for subscriber in subscribers:
        if subscriber.status != SubscriberStatus.ACTIVE.value:
            continue

        end_date = ensure_aware(subscriber.subscription_end_date)
        days_left = days_until_expiry(end_date, now)

        if days_left == subscriber.reminder_days_before:
            plan.reminders.append(
                NotificationEntry(
                    subscriber_id=subscriber.id,
                    name=subscriber.full_name,
                    contact=subscriber.email,
                    days=days_left,
                    end_date=end_date,
                )
            )

        days_overdue = -days_left
        if days_overdue > grace_period_days:
            plan.deactivations.append(
                NotificationEntry(
                    subscriber_id=subscriber.id,
                    name=subscriber.full_name,
                    contact=subscriber.email,
                    days=days_overdue,
                    end_date=end_date,
                )
            )

    return plan


class ReminderScheduler:
    """Runs the daily pass. ``run_daily_pass`` is the single entry point."""

    def __init__(
        self,
        subscriptions: SubscriptionService,
        dispatcher: NotificationDispatcher | None = None,
        audit: AuditService | None = None,
        clock: Clock = system_clock,
        grace_period_days: int | None = None,
        io_timeout: float | None = None,
        run_guard: threading.Lock | None = None,
    ) -> None:
        settings = get_settings()
        self.subscriptions = subscriptions
        self.audit = audit or subscriptions.audit
        self.dispatcher = dispatcher or ChannelDispatcher(audit=self.audit)
        self.clock = clock
        self.grace_period_days = (
            grace_period_days
            if grace_period_days is not None
            else settings.scheduler.grace_period_days
        )
        self.io_timeout = (
            io_timeout if io_timeout is not None else settings.scheduler.io_timeout_seconds
        )
        self._run_guard = run_guard or _PROCESS_RUN_GUARD

    async def run_daily_pass(self) -> RunSummary:
        """Run one pass; an overlapping call returns at once with ``skipped=True``."""
        if not self._run_guard.acquire(blocking=False):
            logger.warning("scheduler.run.skipped", reason="already_running")
            return RunSummary(skipped=True, ran_at=self.clock.now())
        try:
            return await self._run()
        finally:
            self._run_guard.release()

    async def _run(self) -> RunSummary:
        now = self.clock.now()
        summary = RunSummary(ran_at=now)
        logger.info("scheduler.run.started", ran_at=now.isoformat(), grace=self.grace_period_days)

        try:
            subscribers = await asyncio.wait_for(
                self.subscriptions.list_active_subscribers(), timeout=self.io_timeout
            )
        except (SubTrackError, TimeoutError) as e:
            self._record_error(summary, "load", e)
            await self._record_run(summary)
            return summary

        plan = evaluate_subscribers(subscribers, now, self.grace_period_days)
        logger.info(
            "scheduler.run.planned",
            active=len(subscribers),
            reminders=len(plan.reminders),
            deactivations=len(plan.deactivations),
        )

        # Reminders
        if plan.reminders:
            batch = NotificationBatch(kind=BatchKind.REMINDER, entries=plan.reminders)
            summary.reminder_batch = batch
            results = await self._dispatch(batch, summary)
            if any(r.success for r in results):
                summary.reminders_sent = len(batch.entries)

        # Deactivations
        deactivated: list[NotificationEntry] = []
        for entry in plan.deactivations:
            try:
                subscriber = await self.subscriptions.grace_expire(
                    SYSTEM_ACTOR,
                    entry.subscriber_id,
                    grace_period_days=self.grace_period_days,
                )
            except SubTrackError as e:
                self._record_error(summary, "deactivate", e, entry.subscriber_id)
                continue
            if subscriber is not None:
                deactivated.append(entry)

        summary.deactivated_count = len(deactivated)
        if deactivated:
            batch = NotificationBatch(kind=BatchKind.DEACTIVATION, entries=deactivated)
            summary.deactivation_batch = batch
            await self._dispatch(batch, summary)

        await self._record_run(summary)
        logger.info(
            "scheduler.run.completed",
            reminders_sent=summary.reminders_sent,
            deactivated_count=summary.deactivated_count,
            errors=len(summary.errors),
        )
        return summary

    async def _dispatch(self, batch: NotificationBatch, summary: RunSummary) -> list[DispatchResult]:
        """Send a batch on every channel; one channel's failure never affects another."""
        results = []
        for channel in CHANNELS:
            try:
                result = await asyncio.wait_for(
                    self.dispatcher.send(channel, batch), timeout=self.io_timeout
                )
            except TimeoutError:
                result = DispatchResult(
                    channel=channel,
                    success=False,
                    error=f"Dispatch timed out after {self.io_timeout}s",
                )
            except Exception as e:
                logger.exception(
                    "scheduler.dispatch.crashed", channel=channel.value, kind=batch.kind.value
                )
                result = DispatchResult(channel=channel, success=False, error=str(e))

            if not result.success:
                summary.errors.append(
                    RunError(
                        stage=f"dispatch.{batch.kind.value}",
                        message=f"{channel.value}: {result.error}",
                        error_code="DISPATCH_FAILURE",
                    )
                )
            results.append(result)
            summary.dispatch_results.append(result)
        return results

    def _record_error(
        self,
        summary: RunSummary,
        stage: str,
        error: Exception,
        subscriber_id: str | None = None,
    ) -> None:
        if isinstance(error, SubTrackError):
            message, code = error.message, error.error_code
        else:
            message, code = f"Timed out after {self.io_timeout}s", "TIMEOUT"
        logger.error(
            f"scheduler.{stage}.failed",
            subscriber_id=subscriber_id,
            error_code=code,
            error=message,
        )
        summary.errors.append(
            RunError(stage=stage, message=message, error_code=code, subscriber_id=subscriber_id)
        )

    async def _record_run(self, summary: RunSummary) -> None:
        emails = sum(
            1 for r in summary.dispatch_results
            if r.success and r.channel is NotificationChannel.EMAIL
        )
        sms = sum(
            1 for r in summary.dispatch_results
            if r.success and r.channel is NotificationChannel.SMS
        )
        try:
            await self.audit.log_activity(
                ActivityType.CRON_TRIGGERED,
                f"Reminder cron executed: {emails} emails, {sms} SMS sent",
                details={
                    "reminders_sent": summary.reminders_sent,
                    "deactivated_count": summary.deactivated_count,
                    "errors": len(summary.errors),
                },
            )
        except SubTrackError as e:
            self._record_error(summary, "audit", e)


__all__ = ["ReminderScheduler", "evaluate_subscribers"]
