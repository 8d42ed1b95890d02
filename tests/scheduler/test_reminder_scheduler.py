"""Tests for the daily reminder and grace-period pass."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from subtrack.audit.models import ActivityType, AuditFilterParams
from subtrack.auth.context import SYSTEM_ACTOR
from subtrack.billing.models import Subscriber
from subtrack.billing.service import SubscriptionService
from subtrack.calendar.adapter import day_start, local_date
from subtrack.communications.models import BatchKind, DispatchResult, NotificationChannel
from subtrack.exceptions import PersistenceFailure
from subtrack.scheduler.service import ReminderScheduler, evaluate_subscribers

NOW = datetime(2025, 6, 15, 6, 0, tzinfo=UTC)


def _subscriber(name: str, days_left: int, *, lead: int = 7, status: str = "active") -> Subscriber:
    return Subscriber(
        id=name.lower(),
        full_name=name,
        email=f"{name.lower()}@example.com",
        frequency="monthly",
        rate=1000,
        reminder_days_before=lead,
        subscription_end_date=day_start(local_date(NOW) + timedelta(days=days_left)),
        status=status,
    )


@pytest.fixture
def scheduler(subscriptions, dispatcher, clock, run_guard) -> ReminderScheduler:
    return ReminderScheduler(
        subscriptions,
        dispatcher=dispatcher,
        clock=clock,
        grace_period_days=3,
        io_timeout=5,
        run_guard=run_guard,
    )


async def _cron_rows(audit, actors):
    page = await audit.get_activities(
        actors["super_admin"], AuditFilterParams(activity_type=ActivityType.CRON_TRIGGERED)
    )
    return page.activities


class TestConstruction:
    pytestmark = pytest.mark.unit

    @pytest.fixture
    def offline(self) -> SubscriptionService:
        return SubscriptionService(MagicMock())

    def test_schedulers_share_the_process_guard_by_default(self, offline, dispatcher):
        first = ReminderScheduler(offline, dispatcher=dispatcher)
        second = ReminderScheduler(offline, dispatcher=dispatcher)
        assert first._run_guard is second._run_guard

    def test_defaults_come_from_settings(self, offline, dispatcher):
        scheduler = ReminderScheduler(offline, dispatcher=dispatcher)
        assert scheduler.grace_period_days == 3
        assert scheduler.io_timeout == 30.0

    def test_explicit_guard_is_used(self, offline, dispatcher, run_guard):
        scheduler = ReminderScheduler(offline, dispatcher=dispatcher, run_guard=run_guard)
        assert scheduler._run_guard is run_guard


class TestEvaluateSubscribers:
    pytestmark = pytest.mark.unit

    def test_reminder_fires_on_exact_lead_time_only(self):
        plan = evaluate_subscribers(
            [_subscriber("Six", 6), _subscriber("Seven", 7), _subscriber("Eight", 8)], NOW, 3
        )
        assert [e.name for e in plan.reminders] == ["Seven"]
        assert plan.reminders[0].days == 7
        assert plan.deactivations == []

    def test_lead_time_is_per_subscriber(self):
        plan = evaluate_subscribers([_subscriber("Short", 3, lead=3)], NOW, 3)
        assert [e.name for e in plan.reminders] == ["Short"]

    def test_grace_boundary(self):
        plan = evaluate_subscribers(
            [_subscriber("Three", -3), _subscriber("Four", -4)], NOW, 3
        )
        assert [e.name for e in plan.deactivations] == ["Four"]
        assert plan.deactivations[0].days == 4

    def test_only_active_subscribers_are_considered(self):
        plan = evaluate_subscribers(
            [
                _subscriber("Paused", 7, status="inactive"),
                _subscriber("Gone", -10, status="cancelled"),
            ],
            NOW,
            3,
        )
        assert plan.reminders == []
        assert plan.deactivations == []

    def test_today_is_the_display_calendar_day(self):
        assert evaluate_subscribers([], NOW, 3).today == local_date(NOW)


class TestDailyPass:
    pytestmark = pytest.mark.integration

    @pytest.mark.asyncio
    async def test_reminders_and_deactivations(
        self, scheduler, subscriptions, dispatcher, make_subscriber, audit, actors
    ):
        due = await make_subscriber("Alice", days_left=7)
        await make_subscriber("Bob", days_left=8)
        overdue = await make_subscriber("Carol", days_left=-4)

        summary = await scheduler.run_daily_pass()

        assert summary.reminders_sent == 1
        assert summary.deactivated_count == 1
        assert summary.errors == []
        assert summary.ok
        assert [e.subscriber_id for e in summary.reminder_batch.entries] == [due.id]
        assert [e.subscriber_id for e in summary.deactivation_batch.entries] == [overdue.id]

        # one aggregated message per channel per batch
        kinds = [(channel, batch.kind) for channel, batch in dispatcher.calls]
        assert kinds == [
            (NotificationChannel.EMAIL, BatchKind.REMINDER),
            (NotificationChannel.SMS, BatchKind.REMINDER),
            (NotificationChannel.EMAIL, BatchKind.DEACTIVATION),
            (NotificationChannel.SMS, BatchKind.DEACTIVATION),
        ]

        carol = await subscriptions.get_subscriber(actors["super_admin"], overdue.id)
        assert carol.status == "inactive"

        rows = await _cron_rows(audit, actors)
        assert rows[0].description == "Reminder cron executed: 2 emails, 2 SMS sent"
        assert rows[0].user_id is None

    @pytest.mark.asyncio
    async def test_nothing_due(self, scheduler, dispatcher, make_subscriber, audit, actors):
        await make_subscriber("Alice", days_left=20)

        summary = await scheduler.run_daily_pass()

        assert summary.reminders_sent == 0
        assert summary.deactivated_count == 0
        assert summary.reminder_batch is None
        assert dispatcher.calls == []
        rows = await _cron_rows(audit, actors)
        assert rows[0].description == "Reminder cron executed: 0 emails, 0 SMS sent"

    @pytest.mark.asyncio
    async def test_second_pass_on_the_same_day_deactivates_nobody(
        self, scheduler, make_subscriber
    ):
        await make_subscriber("Carol", days_left=-5)

        first = await scheduler.run_daily_pass()
        second = await scheduler.run_daily_pass()

        assert first.deactivated_count == 1
        assert second.deactivated_count == 0
        assert second.deactivation_batch is None


class TestFaultIsolation:
    pytestmark = pytest.mark.integration

    @pytest.mark.asyncio
    async def test_one_failed_deactivation_does_not_stop_the_others(
        self, scheduler, subscriptions, make_subscriber, monkeypatch, actors
    ):
        broken = await make_subscriber("Dave", days_left=-6)
        healthy = await make_subscriber("Erin", days_left=-6)
        original = subscriptions.grace_expire

        async def flaky(actor, subscriber_id, **kwargs):
            if subscriber_id == broken.id:
                raise PersistenceFailure("disk full")
            return await original(actor, subscriber_id, **kwargs)

        monkeypatch.setattr(subscriptions, "grace_expire", flaky)

        summary = await scheduler.run_daily_pass()

        assert summary.deactivated_count == 1
        assert [e.subscriber_id for e in summary.deactivation_batch.entries] == [healthy.id]
        assert len(summary.errors) == 1
        error = summary.errors[0]
        assert error.stage == "deactivate"
        assert error.subscriber_id == broken.id
        assert error.error_code == "PERSISTENCE_FAILURE"

        dave = await subscriptions.get_subscriber(actors["super_admin"], broken.id)
        assert dave.status == "active"

    @pytest.mark.asyncio
    async def test_failed_channel_does_not_block_the_other(
        self, scheduler, dispatcher, make_subscriber
    ):
        dispatcher.failing = {NotificationChannel.EMAIL}
        await make_subscriber("Alice", days_left=7)
        await make_subscriber("Carol", days_left=-4)

        summary = await scheduler.run_daily_pass()

        # SMS still went out, and the deactivation still happened
        assert summary.reminders_sent == 1
        assert summary.deactivated_count == 1
        assert {e.stage for e in summary.errors} == {"dispatch.reminder", "dispatch.deactivation"}
        assert all(e.message == "email: email down" for e in summary.errors)
        assert not summary.ok

    @pytest.mark.asyncio
    async def test_all_channels_failing_counts_no_reminders(
        self, scheduler, dispatcher, make_subscriber
    ):
        dispatcher.failing = {NotificationChannel.EMAIL, NotificationChannel.SMS}
        await make_subscriber("Alice", days_left=7)

        summary = await scheduler.run_daily_pass()

        assert summary.reminders_sent == 0
        assert len(summary.errors) == 2

    @pytest.mark.asyncio
    async def test_slow_dispatch_times_out(self, subscriptions, clock, run_guard, make_subscriber):
        class SlowDispatcher:
            async def send(self, channel, batch):
                await asyncio.sleep(5)

        scheduler = ReminderScheduler(
            subscriptions,
            dispatcher=SlowDispatcher(),
            clock=clock,
            grace_period_days=3,
            io_timeout=0.5,
            run_guard=run_guard,
        )
        await make_subscriber("Alice", days_left=7)

        summary = await scheduler.run_daily_pass()

        assert summary.reminders_sent == 0
        assert all("timed out" in e.message for e in summary.errors)

    @pytest.mark.asyncio
    async def test_load_failure_is_recorded(
        self, scheduler, subscriptions, dispatcher, monkeypatch, audit, actors
    ):
        async def broken():
            raise PersistenceFailure("database unavailable")

        monkeypatch.setattr(subscriptions, "list_active_subscribers", broken)

        summary = await scheduler.run_daily_pass()

        assert [e.stage for e in summary.errors] == ["load"]
        assert dispatcher.calls == []
        assert len(await _cron_rows(audit, actors)) == 1


class TestSingleFlight:
    pytestmark = pytest.mark.integration

    @pytest.mark.asyncio
    async def test_held_guard_skips(self, scheduler, run_guard, dispatcher, make_subscriber):
        await make_subscriber("Alice", days_left=7)
        run_guard.acquire()
        try:
            summary = await scheduler.run_daily_pass()
        finally:
            run_guard.release()

        assert summary.skipped is True
        assert summary.reminders_sent == 0
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_overlapping_runs(self, subscriptions, clock, run_guard, make_subscriber):
        started = asyncio.Event()
        release = asyncio.Event()

        class GatedDispatcher:
            def __init__(self):
                self.calls = 0

            async def send(self, channel, batch):
                self.calls += 1
                started.set()
                await release.wait()
                return DispatchResult(channel=channel, success=True)

        gated = GatedDispatcher()
        scheduler = ReminderScheduler(
            subscriptions,
            dispatcher=gated,
            clock=clock,
            grace_period_days=3,
            io_timeout=5,
            run_guard=run_guard,
        )
        await make_subscriber("Alice", days_left=7)

        first = asyncio.create_task(scheduler.run_daily_pass())
        await started.wait()
        overlapping = await scheduler.run_daily_pass()
        release.set()
        completed = await first

        assert overlapping.skipped is True
        assert completed.skipped is False
        assert completed.reminders_sent == 1
        assert gated.calls == 2

        # the guard is free again once the first run finishes
        again = await scheduler.run_daily_pass()
        assert again.skipped is False

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(
        self, scheduler, subscriptions, run_guard, monkeypatch
    ):
        async def crash():
            raise RuntimeError("unexpected")

        monkeypatch.setattr(subscriptions, "list_active_subscribers", crash)
        with pytest.raises(RuntimeError):
            await scheduler.run_daily_pass()
        assert run_guard.acquire(blocking=False)
        run_guard.release()


class TestGraceExpireGuard:
    pytestmark = pytest.mark.integration

    @pytest.mark.asyncio
    async def test_system_actor_deactivates_through_service(self, subscriptions, make_subscriber):
        overdue = await make_subscriber("Carol", days_left=-4)
        result = await subscriptions.grace_expire(SYSTEM_ACTOR, overdue.id, grace_period_days=3)
        assert result is not None
        assert result.status == "inactive"
