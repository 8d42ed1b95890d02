"""
Global pytest configuration and fixtures for SubTrack tests.

Every test gets its own file-backed SQLite database so separate sessions see
the same schema, a fixed clock, and fresh lock registries.
"""

import os
import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "console")
os.environ.setdefault("SCHEDULER__CRON_SECRET", "")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from subtrack.audit.service import AuditService
from subtrack.auth.context import SYSTEM_ACTOR, ActorContext
from subtrack.auth.user_service import UserService
from subtrack.billing.locks import SubscriberLocks
from subtrack.billing.models import Subscriber
from subtrack.billing.service import SubscriptionService
from subtrack.calendar.adapter import day_start, local_date
from subtrack.clock import FixedClock
from subtrack.communications.models import DispatchResult, NotificationChannel
from subtrack.db import create_all_tables_async, drop_all_tables_async

# 2025-06-15 11:45 in Kathmandu
NOW = datetime(2025, 6, 15, 6, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine bound to a per-test SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'subtrack.db'}")
    await create_all_tables_async(engine)
    yield engine
    await drop_all_tables_async(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def audit(session_factory, clock) -> AuditService:
    return AuditService(session_factory, clock=clock)


@pytest.fixture
def subscriptions(session_factory, audit, clock) -> SubscriptionService:
    return SubscriptionService(
        session_factory, audit=audit, clock=clock, locks=SubscriberLocks(), io_timeout=5
    )


@pytest.fixture
def user_service(session_factory, audit, clock) -> UserService:
    return UserService(session_factory, audit=audit, clock=clock)


@pytest_asyncio.fixture
async def actors(user_service) -> dict[str, ActorContext]:
    """One persisted operator per role, keyed by role name."""
    super_admin = await user_service.create_user(
        SYSTEM_ACTOR, "owner@example.com", "super_admin", "Owner"
    )
    admin = await user_service.create_user(SYSTEM_ACTOR, "manager@example.com", "admin", "Manager")
    staff = await user_service.create_user(SYSTEM_ACTOR, "clerk@example.com", "staff", "Clerk")
    return {
        "super_admin": ActorContext.for_user(super_admin),
        "admin": ActorContext.for_user(admin),
        "staff": ActorContext.for_user(staff),
    }


@pytest.fixture
def make_subscriber(session_factory, clock):
    """Insert a subscriber whose end date is ``days_left`` calendar days away."""

    async def _make(
        name: str = "Alice",
        *,
        days_left: int = 30,
        status: str = "active",
        frequency: str = "monthly",
        rate: str = "1000",
        reminder_days_before: int = 7,
        phone: str | None = None,
    ) -> Subscriber:
        today = local_date(clock.now())
        subscriber = Subscriber(
            full_name=name,
            email=f"{name.lower()}@example.com",
            phone=phone,
            frequency=frequency,
            rate=Decimal(rate),
            reminder_days_before=reminder_days_before,
            subscription_end_date=day_start(today + timedelta(days=days_left)),
            status=status,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(subscriber)
        return subscriber

    return _make


class RecordingDispatcher:
    """Dispatcher double that records batches and returns canned results."""

    def __init__(self, failing: set[NotificationChannel] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[NotificationChannel, object]] = []

    async def send(self, channel, batch):
        self.calls.append((channel, batch))
        if channel in self.failing:
            return DispatchResult(channel=channel, success=False, error=f"{channel.value} down")
        return DispatchResult(channel=channel, success=True, recipient="admin")


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def run_guard() -> threading.Lock:
    return threading.Lock()
