"""
Subscription service.

Owns every write to a subscriber's ``(status, subscription_end_date)`` pair.
Each transition takes the per-subscriber lock, opens one transaction, re-reads
the row with ``FOR UPDATE``, applies the change and stages its audit row, so
the payment, the subscriber update and the activity log commit or roll back
together.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from subtrack.audit.models import ActivityType
from subtrack.audit.service import AuditService
from subtrack.auth.context import ActorContext
from subtrack.auth.permissions import Permission, require_permission
from subtrack.billing.locks import SubscriberLocks, subscriber_locks
from subtrack.billing.models import (
    Payment,
    PaymentPeriod,
    Subscriber,
    SubscriberStatus,
    SubscriptionFrequency,
)
from subtrack.billing.periods import (
    BillingPeriod,
    PeriodResolution,
    add_billing_unit,
    resolve_payment,
)
from subtrack.billing.schemas import (
    PaymentInput,
    PaymentUpdate,
    SubscriberCreate,
    SubscriberUpdate,
)
from subtrack.billing.status import (
    check_grace_expire,
    check_manual_toggle,
    days_until_expiry,
    grace_expiry_note,
)
from subtrack.clock import Clock, system_clock
from subtrack.db import ensure_aware, get_session_factory, to_storage
from subtrack.exceptions import (
    PaymentNotFound,
    PersistenceFailure,
    SubscriberNotFound,
    SubTrackError,
    Unauthorized,
)
from subtrack.settings import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def format_amount(amount: Decimal) -> str:
    """Render an amount without trailing zeros for whole numbers."""
    if amount == amount.to_integral_value():
        return f"{amount:.0f}"
    return f"{amount:.2f}"


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return _column_value(value)


class SubscriptionService:
    """Subscriber lifecycle, payments and their audit trail."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        audit: AuditService | None = None,
        clock: Clock = system_clock,
        locks: SubscriberLocks = subscriber_locks,
        io_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.clock = clock
        self.audit = audit or AuditService(session_factory, clock=clock)
        self.locks = locks
        self.io_timeout = (
            io_timeout if io_timeout is not None else get_settings().scheduler.io_timeout_seconds
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _guard(self, operation: str, awaitable: Awaitable[T], **context: Any) -> T:
        """Apply the I/O timeout and map storage errors to ``PersistenceFailure``."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.io_timeout)
        except SubTrackError:
            raise
        except TimeoutError as e:
            logger.error(f"{operation}.timeout", timeout=self.io_timeout, **context)
            raise PersistenceFailure(f"{operation} timed out", context=context) from e
        except SQLAlchemyError as e:
            logger.error(f"{operation}.failed", error=str(e), **context)
            raise PersistenceFailure(f"{operation} failed", context=context) from e

    async def _load_for_update(self, session: AsyncSession, subscriber_id: str) -> Subscriber:
        result = await session.execute(
            select(Subscriber).where(Subscriber.id == subscriber_id).with_for_update()
        )
        subscriber = result.scalar_one_or_none()
        if subscriber is None:
            raise SubscriberNotFound(subscriber_id)
        return subscriber

    async def _load_payment(self, session: AsyncSession, payment_id: str) -> Payment:
        result = await session.execute(
            select(Payment).where(Payment.id == payment_id).with_for_update()
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_subscriber(self, actor: ActorContext, subscriber_id: str) -> Subscriber:
        require_permission(actor, Permission.VIEW_SUBSCRIBERS)

        async def _get() -> Subscriber:
            async with self.session_factory() as session:
                subscriber = await session.get(Subscriber, subscriber_id)
                if subscriber is None:
                    raise SubscriberNotFound(subscriber_id)
                return subscriber

        return await self._guard("subscriber.get", _get(), subscriber_id=subscriber_id)

    async def list_subscribers(
        self,
        actor: ActorContext,
        *,
        status: SubscriberStatus | str | None = None,
        frequency: SubscriptionFrequency | str | None = None,
        search: str | None = None,
    ) -> list[Subscriber]:
        """List subscribers by stored status, frequency and a name/e-mail search."""
        require_permission(actor, Permission.VIEW_SUBSCRIBERS)

        query = select(Subscriber)
        if status:
            query = query.where(Subscriber.status == SubscriberStatus(status).value)
        if frequency:
            query = query.where(Subscriber.frequency == SubscriptionFrequency(frequency).value)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(Subscriber.full_name.ilike(pattern), Subscriber.email.ilike(pattern))
            )
        query = query.order_by(Subscriber.created_at.desc())

        async def _list() -> list[Subscriber]:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())

        return await self._guard("subscriber.list", _list())

    async def list_active_subscribers(self) -> list[Subscriber]:
        """All subscribers whose stored status is ``active``. Used by the scheduler."""

        async def _list() -> list[Subscriber]:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Subscriber).where(Subscriber.status == SubscriberStatus.ACTIVE.value)
                )
                return list(result.scalars().all())

        return await self._guard("subscriber.list_active", _list())

    async def list_payments(self, actor: ActorContext, subscriber_id: str) -> list[Payment]:
        require_permission(actor, Permission.VIEW_PAYMENTS)

        async def _list() -> list[Payment]:
            async with self.session_factory() as session:
                if await session.get(Subscriber, subscriber_id) is None:
                    raise SubscriberNotFound(subscriber_id)
                result = await session.execute(
                    select(Payment)
                    .where(Payment.subscriber_id == subscriber_id)
                    .order_by(Payment.payment_date.desc())
                )
                return list(result.scalars().all())

        return await self._guard("payment.list", _list(), subscriber_id=subscriber_id)

    async def paid_periods(self, actor: ActorContext, subscriber_id: str) -> set[BillingPeriod]:
        """Every display-calendar period covered by the subscriber's payments."""
        require_permission(actor, Permission.VIEW_PAYMENTS)

        async def _periods() -> set[BillingPeriod]:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(PaymentPeriod.year, PaymentPeriod.month)
                    .join(Payment, Payment.id == PaymentPeriod.payment_id)
                    .where(Payment.subscriber_id == subscriber_id)
                )
                return {BillingPeriod(year, month) for year, month in result.all()}

        return await self._guard("payment.periods", _periods(), subscriber_id=subscriber_id)

    # ------------------------------------------------------------------
    # Subscriber maintenance
    # ------------------------------------------------------------------

    async def create_subscriber(self, actor: ActorContext, data: SubscriberCreate) -> Subscriber:
        """Create an active subscriber paid through one billing unit from now."""
        require_permission(actor, Permission.CREATE_SUBSCRIBER)
        now = self.clock.now()

        async def _create() -> Subscriber:
            async with self.session_factory() as session:
                async with session.begin():
                    subscriber = Subscriber(
                        full_name=data.full_name,
                        email=str(data.email),
                        phone=data.phone,
                        frequency=data.frequency.value,
                        rate=data.rate,
                        reminder_days_before=data.reminder_days_before,
                        subscription_end_date=to_storage(add_billing_unit(now, data.frequency)),
                        status=SubscriberStatus.ACTIVE.value,
                    )
                    session.add(subscriber)
                    await session.flush()
                    self.audit.add_activity(
                        session,
                        ActivityType.SUBSCRIBER_CREATED,
                        f"Created subscriber: {subscriber.full_name}",
                        user_id=actor.user_id,
                        target_table="subscribers",
                        target_id=subscriber.id,
                        details={"email": subscriber.email},
                    )
            return subscriber

        subscriber = await self._guard("subscriber.create", _create())
        logger.info(
            "subscriber.created",
            subscriber_id=subscriber.id,
            frequency=subscriber.frequency,
            actor_id=actor.user_id,
        )
        return subscriber

    async def update_subscriber(
        self, actor: ActorContext, subscriber_id: str, changes: SubscriberUpdate
    ) -> Subscriber:
        """Edit subscriber details. Status and end date have their own transitions."""
        require_permission(actor, Permission.UPDATE_SUBSCRIBER)
        updates = changes.model_dump(exclude_unset=True)

        async def _update() -> Subscriber:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        subscriber = await self._load_for_update(session, subscriber_id)
                        for field, value in updates.items():
                            if field == "email" and value is not None:
                                value = str(value)
                            setattr(subscriber, field, _column_value(value))
                        self.audit.add_activity(
                            session,
                            ActivityType.SUBSCRIBER_UPDATED,
                            f"Updated subscriber: {subscriber.full_name}",
                            user_id=actor.user_id,
                            target_table="subscribers",
                            target_id=subscriber.id,
                            details={k: _jsonable(v) for k, v in updates.items()},
                        )
                return subscriber

        subscriber = await self._guard("subscriber.update", _update(), subscriber_id=subscriber_id)
        logger.info("subscriber.updated", subscriber_id=subscriber_id, fields=sorted(updates))
        return subscriber

    async def delete_subscriber(self, actor: ActorContext, subscriber_id: str) -> None:
        """Delete a subscriber together with its payments."""
        require_permission(actor, Permission.DELETE_SUBSCRIBER)

        async def _delete() -> None:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(Subscriber)
                            .where(Subscriber.id == subscriber_id)
                            .options(selectinload(Subscriber.payments))
                            .with_for_update()
                        )
                        subscriber = result.scalar_one_or_none()
                        if subscriber is None:
                            raise SubscriberNotFound(subscriber_id)
                        name = subscriber.full_name
                        await session.delete(subscriber)
                        self.audit.add_activity(
                            session,
                            ActivityType.SUBSCRIBER_DELETED,
                            f"Deleted subscriber: {name}",
                            user_id=actor.user_id,
                            target_table="subscribers",
                            target_id=subscriber_id,
                        )

        await self._guard("subscriber.delete", _delete(), subscriber_id=subscriber_id)
        logger.info("subscriber.deleted", subscriber_id=subscriber_id, actor_id=actor.user_id)

    # ------------------------------------------------------------------
    # State machine transitions
    # ------------------------------------------------------------------

    async def record_payment(
        self, actor: ActorContext, subscriber_id: str, payment_input: PaymentInput
    ) -> Payment:
        """
        Record a payment and renew the subscription.

        Resolves the selected periods, inserts the payment with its covered
        periods, moves the end date, reactivates the subscriber and clears its
        status notes, all in one transaction.
        """
        require_permission(actor, Permission.CREATE_PAYMENT)
        now = self.clock.now()

        async def _record() -> tuple[Payment, PeriodResolution]:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        subscriber = await self._load_for_update(session, subscriber_id)
                        resolution = resolve_payment(
                            subscriber.frequency,
                            subscriber.rate,
                            subscriber.subscription_end_date,
                            payment_input.periods,
                        )
                        amount = payment_input.amount_paid or resolution.amount_due
                        payment = Payment(
                            subscriber_id=subscriber.id,
                            amount_paid=amount,
                            payment_date=to_storage(payment_input.payment_date or now),
                            receipt_number=payment_input.receipt_number,
                            payment_mode=(
                                payment_input.payment_mode.value
                                if payment_input.payment_mode
                                else None
                            ),
                            proof_url=payment_input.proof_url,
                            notes=payment_input.notes,
                            periods=[
                                PaymentPeriod(year=p.year, month=p.month)
                                for p in resolution.periods
                            ],
                        )
                        session.add(payment)

                        previous_status = subscriber.status
                        subscriber.subscription_end_date = to_storage(resolution.new_end_instant)
                        subscriber.status = SubscriberStatus.ACTIVE.value
                        subscriber.status_notes = None
                        await session.flush()

                        self.audit.add_activity(
                            session,
                            ActivityType.PAYMENT_CREATED,
                            f"Recorded payment of NRS {format_amount(amount)} "
                            f"for {subscriber.full_name}",
                            user_id=actor.user_id,
                            target_table="payments",
                            target_id=payment.id,
                            details={
                                "subscriber_id": subscriber.id,
                                "amount": str(amount),
                                "periods": [p.label for p in resolution.periods],
                                "new_end_date": resolution.new_end_instant.isoformat(),
                                "previous_status": previous_status,
                            },
                        )
                return payment, resolution

        payment, resolution = await self._guard(
            "payment.record", _record(), subscriber_id=subscriber_id
        )
        logger.info(
            "payment.recorded",
            subscriber_id=subscriber_id,
            payment_id=payment.id,
            amount=str(payment.amount_paid),
            periods=len(resolution.periods),
            new_end_date=resolution.new_end_instant.isoformat(),
        )
        return payment

    async def manual_toggle(
        self, actor: ActorContext, subscriber_id: str, desired_status: SubscriberStatus | str
    ) -> Subscriber:
        """Operator override between active and inactive. End date is untouched."""
        require_permission(actor, Permission.UPDATE_SUBSCRIBER)

        async def _toggle() -> Subscriber:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        subscriber = await self._load_for_update(session, subscriber_id)
                        target = check_manual_toggle(subscriber.status, desired_status)
                        subscriber.status = target.value
                        self.audit.add_activity(
                            session,
                            ActivityType.SUBSCRIBER_UPDATED,
                            f"Updated subscriber: {subscriber.full_name}",
                            user_id=actor.user_id,
                            target_table="subscribers",
                            target_id=subscriber.id,
                            details={"status": target.value},
                        )
                return subscriber

        subscriber = await self._guard(
            "subscriber.toggle", _toggle(), subscriber_id=subscriber_id
        )
        logger.info("subscriber.status_toggled", subscriber_id=subscriber_id, status=subscriber.status)
        return subscriber

    async def update_end_date(
        self, actor: ActorContext, subscriber_id: str, new_instant: datetime
    ) -> Subscriber:
        """Direct correction of the renewal date, bypassing the resolver."""
        require_permission(actor, Permission.UPDATE_SUBSCRIBER)
        new_end = to_storage(new_instant)

        async def _update() -> Subscriber:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        subscriber = await self._load_for_update(session, subscriber_id)
                        subscriber.subscription_end_date = new_end
                        self.audit.add_activity(
                            session,
                            ActivityType.SUBSCRIBER_UPDATED,
                            f"Updated subscriber: {subscriber.full_name}",
                            user_id=actor.user_id,
                            target_table="subscribers",
                            target_id=subscriber.id,
                            details={"subscription_end_date": new_end.isoformat()},
                        )
                return subscriber

        subscriber = await self._guard(
            "subscriber.end_date", _update(), subscriber_id=subscriber_id
        )
        logger.info("subscriber.end_date_updated", subscriber_id=subscriber_id, end_date=new_end.isoformat())
        return subscriber

    async def grace_expire(
        self,
        actor: ActorContext,
        subscriber_id: str,
        *,
        grace_period_days: int | None = None,
    ) -> Subscriber | None:
        """
        Deactivate a subscriber whose grace period has run out.

        System actors only. The row is re-read under the lock and the overdue
        condition re-checked, so a payment that landed after the scheduler's
        decision wins. Returns None when nothing was changed, including for a
        subscriber that is already inactive.
        """
        if not actor.is_system:
            raise Unauthorized("Grace-period expiry can only be run by the scheduler")
        grace = (
            grace_period_days
            if grace_period_days is not None
            else get_settings().scheduler.grace_period_days
        )
        now = self.clock.now()

        async def _expire() -> Subscriber | None:
            async with self.locks.hold(subscriber_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        subscriber = await self._load_for_update(session, subscriber_id)
                        if not check_grace_expire(subscriber.status):
                            return None

                        days_overdue = -days_until_expiry(subscriber.subscription_end_date, now)
                        if days_overdue <= grace:
                            return None

                        subscriber.status = SubscriberStatus.INACTIVE.value
                        subscriber.status_notes = grace_expiry_note(now, grace)
                        self.audit.add_activity(
                            session,
                            ActivityType.SUBSCRIBER_DEACTIVATED,
                            f"Deactivated subscriber: {subscriber.full_name} "
                            f"({days_overdue} days overdue)",
                            target_table="subscribers",
                            target_id=subscriber.id,
                            details={
                                "days_overdue": days_overdue,
                                "grace_period_days": grace,
                                "subscription_end_date": ensure_aware(
                                    subscriber.subscription_end_date
                                ).isoformat(),
                            },
                        )
                return subscriber

        subscriber = await self._guard("subscriber.grace_expire", _expire(), subscriber_id=subscriber_id)
        if subscriber is None:
            logger.debug("subscriber.grace_expire_skipped", subscriber_id=subscriber_id)
        else:
            logger.info("subscriber.deactivated", subscriber_id=subscriber_id, grace_period_days=grace)
        return subscriber

    # ------------------------------------------------------------------
    # Payment maintenance
    # ------------------------------------------------------------------

    async def update_payment(
        self, actor: ActorContext, payment_id: str, changes: PaymentUpdate
    ) -> Payment:
        """Edit payment metadata. The subscriber's end date is not recomputed."""
        require_permission(actor, Permission.UPDATE_PAYMENT)
        updates = changes.model_dump(exclude_unset=True)

        async def _update() -> Payment:
            async with self.session_factory() as session:
                async with session.begin():
                    payment = await self._load_payment(session, payment_id)
                    subscriber = await session.get(Subscriber, payment.subscriber_id)
                    for field, value in updates.items():
                        if field == "payment_date" and value is not None:
                            value = to_storage(value)
                        setattr(payment, field, _column_value(value))
                    self.audit.add_activity(
                        session,
                        ActivityType.PAYMENT_UPDATED,
                        f"Updated payment for {subscriber.full_name}",
                        user_id=actor.user_id,
                        target_table="payments",
                        target_id=payment.id,
                        details={k: _jsonable(v) for k, v in updates.items()},
                    )
            return payment

        payment = await self._guard("payment.update", _update(), payment_id=payment_id)
        logger.info("payment.updated", payment_id=payment_id, fields=sorted(updates))
        return payment

    async def delete_payment(self, actor: ActorContext, payment_id: str) -> None:
        """Delete a payment. The subscriber's end date is not rolled back."""
        require_permission(actor, Permission.DELETE_PAYMENT)

        async def _delete() -> None:
            async with self.session_factory() as session:
                async with session.begin():
                    payment = await self._load_payment(session, payment_id)
                    subscriber = await session.get(Subscriber, payment.subscriber_id)
                    amount = payment.amount_paid
                    await session.delete(payment)
                    self.audit.add_activity(
                        session,
                        ActivityType.PAYMENT_DELETED,
                        f"Deleted payment of NRS {format_amount(amount)} for {subscriber.full_name}",
                        user_id=actor.user_id,
                        target_table="payments",
                        target_id=payment_id,
                        details={"subscriber_id": subscriber.id, "amount": str(amount)},
                    )

        await self._guard("payment.delete", _delete(), payment_id=payment_id)
        logger.info("payment.deleted", payment_id=payment_id, actor_id=actor.user_id)


__all__ = ["SubscriptionService", "format_amount"]
