"""
Stripe Webhook Reconciliation

Maps verified Stripe events onto reservation transitions:

    payment_intent.succeeded      -> confirm (PENDING_PAYMENT -> CONFIRMED) + confirmation email
    payment_intent.payment_failed -> expire  (PENDING_PAYMENT -> EXPIRED)   + failure email

and operator plan events onto OperatorSubscription rows (services/subscriptions.py):

    checkout.session.completed    -> ACTIVE, Stripe customer and subscription ids stored
    customer.subscription.updated -> status and billing period synced
    customer.subscription.deleted -> CANCELED

Linkage: the intent's metadata must carry reservation_id, the reservation
must exist, and a stored payment_intent_id must match the event's intent.
A reservation already in the target state is left alone, so a redelivered
event never moves availability twice or sends a second email.

Nothing in here raises for a bad event; the outcome is returned and logged
so the route can acknowledge it. When the handler is given the request's
BackgroundTasks, emails are sent after the response instead of inline.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Awaitable, Callable, Optional

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.exceptions import InvalidStateError, NotFoundError
from parcin.core.utils import utcnow
from parcin.models import ReservationState, User
from parcin.services import lifecycle
from parcin.services.notifications import ReservationEmailDetails, ReservationNotifier
from parcin.services.reservation_service import ReservationService, log_metric
from parcin.services.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Outcomes
PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"
IGNORED = "ignored"
REJECTED = "rejected"

MAX_TRACKED_EVENTS = 10000

SUBSCRIPTION_HANDLERS = {
    CHECKOUT_COMPLETED: SubscriptionService.apply_checkout_completed,
    SUBSCRIPTION_UPDATED: SubscriptionService.apply_subscription_updated,
    SUBSCRIPTION_DELETED: SubscriptionService.apply_subscription_deleted,
}


class ProcessedEventTracker:
    """Bounded in-memory record of handled Stripe event ids."""

    def __init__(self, max_size: int = MAX_TRACKED_EVENTS):
        self.max_size = max_size
        self._events: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, event_id) -> bool:
        return event_id in self._events

    def add(self, event_id: Optional[str]) -> None:
        if not event_id:
            return
        self._events[event_id] = None
        self._events.move_to_end(event_id)
        while len(self._events) > self.max_size:
            self._events.popitem(last=False)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


processed_events = ProcessedEventTracker()


class PaymentWebhookHandler:
    """Applies Stripe payment events to reservations."""

    def __init__(
        self,
        notifier: ReservationNotifier,
        tracker: Optional[ProcessedEventTracker] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ):
        self.notifier = notifier
        self.tracker = tracker if tracker is not None else processed_events
        self.background_tasks = background_tasks

    async def handle_event(self, db: AsyncSession, event: dict, now: Optional[datetime] = None) -> str:
        event_id = event.get("id")
        event_type = event.get("type")

        if event_id and event_id in self.tracker:
            logger.info(f"Stripe webhook event {event_id} already processed, skipping")
            return ALREADY_PROCESSED

        logger.info(f"Stripe webhook received: {event_type} (event_id={event_id})")

        stripe_object = (event.get("data") or {}).get("object") or {}
        if event_type == PAYMENT_SUCCEEDED:
            outcome = await self.handle_payment_succeeded(db, stripe_object, now=now)
        elif event_type == PAYMENT_FAILED:
            outcome = await self.handle_payment_failed(db, stripe_object, now=now)
        elif event_type in SUBSCRIPTION_HANDLERS:
            subscription = await SUBSCRIPTION_HANDLERS[event_type](db, stripe_object)
            outcome = PROCESSED if subscription is not None else IGNORED
        else:
            logger.info(f"Unhandled webhook event type: {event_type}")
            outcome = IGNORED

        self.tracker.add(event_id)
        return outcome

    async def _load_linked_reservation(self, db: AsyncSession, payment_intent: dict):
        intent_id = payment_intent.get("id")
        reservation_id = (payment_intent.get("metadata") or {}).get("reservation_id")

        if not reservation_id:
            logger.warning(f"Payment {intent_id} missing reservation_id in metadata")
            return None, None

        try:
            reservation, lot = await ReservationService.lock_reservation(db, reservation_id)
        except NotFoundError:
            logger.warning(f"Payment {intent_id} references unknown reservation {reservation_id}")
            return None, None

        if reservation.payment_intent_id and reservation.payment_intent_id != intent_id:
            logger.warning(
                f"Payment {intent_id} does not match reservation {reservation_id} "
                f"(stored intent {reservation.payment_intent_id})"
            )
            return None, None

        return reservation, lot

    async def _email_details(self, db: AsyncSession, reservation, lot) -> Optional[ReservationEmailDetails]:
        result = await db.execute(select(User).where(User.id == reservation.user_id))
        user = result.scalar_one_or_none()
        if not user:
            logger.warning(f"No user {reservation.user_id} for reservation {reservation.id}; email skipped")
            return None
        return ReservationEmailDetails.from_models(reservation, lot, user)

    async def _deliver(self, send: Callable[[ReservationEmailDetails], Awaitable], details: ReservationEmailDetails):
        if self.background_tasks is not None:
            self.background_tasks.add_task(send, details)
        else:
            await send(details)

    async def handle_payment_succeeded(
        self,
        db: AsyncSession,
        payment_intent: dict,
        now: Optional[datetime] = None,
    ) -> str:
        reservation, lot = await self._load_linked_reservation(db, payment_intent)
        if reservation is None:
            return IGNORED

        if reservation.state == ReservationState.CONFIRMED:
            logger.info(f"Reservation {reservation.id} already confirmed")
            return ALREADY_PROCESSED

        try:
            lifecycle.confirm(reservation, lot, now or utcnow())
        except InvalidStateError as e:
            logger.error(f"Payment {payment_intent.get('id')} succeeded but was not applied: {e.message}")
            return REJECTED

        if not reservation.payment_intent_id:
            reservation.payment_intent_id = payment_intent.get("id")
        await db.commit()

        log_metric(
            "confirmed",
            reservation_id=reservation.id,
            lot_id=lot.id,
            availability=lot.availability_manual,
            source="webhook",
        )

        details = await self._email_details(db, reservation, lot)
        if details:
            await self._deliver(self.notifier.send_reservation_confirmation, details)
        return PROCESSED

    async def handle_payment_failed(
        self,
        db: AsyncSession,
        payment_intent: dict,
        now: Optional[datetime] = None,
    ) -> str:
        reservation, lot = await self._load_linked_reservation(db, payment_intent)
        if reservation is None:
            return IGNORED

        if reservation.state == ReservationState.EXPIRED:
            logger.info(f"Reservation {reservation.id} already expired")
            return ALREADY_PROCESSED

        try:
            lifecycle.expire_for_payment_failure(reservation, now or utcnow())
        except InvalidStateError as e:
            logger.error(f"Payment {payment_intent.get('id')} failed but was not applied: {e.message}")
            return REJECTED

        if not reservation.payment_intent_id:
            reservation.payment_intent_id = payment_intent.get("id")
        await db.commit()

        log_metric("payment_failed", reservation_id=reservation.id, lot_id=lot.id, source="webhook")

        details = await self._email_details(db, reservation, lot)
        if details:
            await self._deliver(self.notifier.send_payment_failure, details)
        return PROCESSED
