"""
Operator Subscriptions

Operators need a live plan (ACTIVE inside its billing period, or TRIALING
before the trial ends) to add lots, and the plan caps how many lots they
may own. Admins are never gated.

Checkout flow:
1. start_checkout creates an INCOMPLETE OperatorSubscription and a Stripe
   Checkout session carrying its id in metadata
2. checkout.session.completed activates it and stores the Stripe ids
3. customer.subscription.updated / .deleted keep status and period in sync
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.config import settings
from parcin.core.exceptions import NotFoundError, PlanLimitReached, ValidationError
from parcin.core.utils import ensure_aware, utcnow
from parcin.models import (
    LIVE_SUBSCRIPTION_STATES,
    OperatorSubscription,
    ParkingLot,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserRole,
)
from parcin.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

# Access statuses reported by SubscriptionCheck
ACCESS_ACTIVE = "active"
ACCESS_TRIAL = "trial"
ACCESS_INACTIVE = "inactive"
ACCESS_PAST_DUE = "past_due"
ACCESS_ADMIN = "admin"

STRIPE_STATUSES = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.UNPAID,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAST_DUE,
}


@dataclass
class SubscriptionCheck:
    has_access: bool
    status: str
    message: Optional[str] = None
    subscription: Optional[OperatorSubscription] = None
    plan: Optional[SubscriptionPlan] = None


def evaluate_subscription(
    subscription: Optional[OperatorSubscription],
    now: datetime,
    plan: Optional[SubscriptionPlan] = None,
) -> SubscriptionCheck:
    """Whether a live subscription row still grants access at `now`."""
    if subscription is None or subscription.status not in LIVE_SUBSCRIPTION_STATES:
        return SubscriptionCheck(False, ACCESS_INACTIVE, "No active subscription found")

    if subscription.status == SubscriptionStatus.TRIALING:
        if subscription.trial_end and ensure_aware(subscription.trial_end) < now:
            return SubscriptionCheck(False, ACCESS_INACTIVE, "Trial period has expired", subscription, plan)
        return SubscriptionCheck(True, ACCESS_TRIAL, None, subscription, plan)

    if subscription.current_period_end and ensure_aware(subscription.current_period_end) < now:
        return SubscriptionCheck(False, ACCESS_PAST_DUE, "Subscription period has expired", subscription, plan)
    return SubscriptionCheck(True, ACCESS_ACTIVE, None, subscription, plan)


def from_unix(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period_bounds(stripe_subscription: dict) -> Tuple[Any, Any]:
    # Newer API versions only report the period on subscription items
    start = stripe_subscription.get("current_period_start")
    end = stripe_subscription.get("current_period_end")
    if start is None or end is None:
        items = (stripe_subscription.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start", start)
            end = items[0].get("current_period_end", end)
    return start, end


class SubscriptionService:
    """Operator plan lookups, access checks and Stripe sync."""

    @staticmethod
    async def list_plans(db: AsyncSession) -> List[SubscriptionPlan]:
        result = await db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.price_cents)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_live_subscription(
        db: AsyncSession,
        operator_user_id: int,
    ) -> Tuple[Optional[OperatorSubscription], Optional[SubscriptionPlan]]:
        result = await db.execute(
            select(OperatorSubscription, SubscriptionPlan)
            .join(SubscriptionPlan, SubscriptionPlan.id == OperatorSubscription.plan_id)
            .where(OperatorSubscription.operator_user_id == operator_user_id)
            .where(OperatorSubscription.status.in_(LIVE_SUBSCRIPTION_STATES))
            .order_by(OperatorSubscription.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if not row:
            return None, None
        return row[0], row[1]

    @staticmethod
    async def get_operator_subscription(
        db: AsyncSession,
        operator_user_id: int,
    ) -> Tuple[OperatorSubscription, SubscriptionPlan]:
        """Most recent subscription of any status, with its plan."""
        result = await db.execute(
            select(OperatorSubscription, SubscriptionPlan)
            .join(SubscriptionPlan, SubscriptionPlan.id == OperatorSubscription.plan_id)
            .where(OperatorSubscription.operator_user_id == operator_user_id)
            .order_by(OperatorSubscription.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if not row:
            raise NotFoundError("No subscription found")
        return row[0], row[1]

    @staticmethod
    async def check_access(db: AsyncSession, user: User, now: Optional[datetime] = None) -> SubscriptionCheck:
        if user.role == UserRole.ADMIN:
            return SubscriptionCheck(True, ACCESS_ADMIN)
        if user.role != UserRole.OPERATOR:
            return SubscriptionCheck(False, ACCESS_INACTIVE, "Only operators hold subscriptions")

        subscription, plan = await SubscriptionService.get_live_subscription(db, user.id)
        check = evaluate_subscription(subscription, now or utcnow(), plan)
        if not check.has_access:
            logger.info(f"Operator {user.id} has no subscription access: {check.status} ({check.message})")
        return check

    @staticmethod
    async def ensure_lot_allowance(db: AsyncSession, user: User, plan: Optional[SubscriptionPlan]) -> None:
        """
        Raises:
            PlanLimitReached: The plan's lot cap is already used up
        """
        if plan is None:
            return

        owned = await db.scalar(
            select(func.count(ParkingLot.id)).where(ParkingLot.operator_user_id == user.id)
        ) or 0
        if not plan.allows_more_lots(owned):
            raise PlanLimitReached(
                f"The {plan.name} plan allows {plan.max_parking_lots} parking lots",
                subscription_status=ACCESS_ACTIVE,
                details={"max_parking_lots": plan.max_parking_lots, "current_parking_lots": owned},
            )

    @staticmethod
    async def start_checkout(
        db: AsyncSession,
        user: User,
        plan_id: int,
        gateway: PaymentGateway,
    ) -> Dict[str, Any]:
        """
        Open a Stripe Checkout session for `plan_id`.

        Raises:
            NotFoundError: Unknown or retired plan
            ValidationError: The operator already has a live subscription
            PaymentProviderError: Stripe rejected the session
        """
        result = await db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.id == plan_id)
            .where(SubscriptionPlan.is_active.is_(True))
        )
        plan = result.scalar_one_or_none()
        if not plan:
            raise NotFoundError(f"Subscription plan {plan_id} not found")

        current, _ = await SubscriptionService.get_live_subscription(db, user.id)
        if current is not None:
            raise ValidationError(
                "Operator already has an active subscription",
                details={"subscription_id": current.id, "status": current.status.value},
            )

        subscription = OperatorSubscription(
            operator_user_id=user.id,
            plan_id=plan.id,
            status=SubscriptionStatus.INCOMPLETE,
            cancel_at_period_end=False,
        )
        db.add(subscription)
        await db.flush()

        checkout = gateway.create_subscription_checkout(
            customer_email=user.email,
            customer_name=user.name,
            product_name=plan.name,
            product_description=plan.description or plan.name,
            amount_cents=plan.price_cents,
            currency=plan.currency,
            metadata={
                "subscription_id": subscription.id,
                "plan_id": plan.id,
                "operator_user_id": user.id,
            },
            success_url=f"{settings.APP_URL}{settings.SUBSCRIPTION_SUCCESS_PATH}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.APP_URL}{settings.SUBSCRIPTION_CANCEL_PATH}?subscription_id={subscription.id}",
        )

        subscription.stripe_customer_id = checkout.customer_id
        subscription.stripe_checkout_session_id = checkout.session_id
        await db.commit()

        logger.info(
            f"Operator {user.id} started checkout for plan {plan.name} "
            f"(subscription {subscription.id}, session {checkout.session_id})"
        )
        return {
            "subscription_id": subscription.id,
            "session_id": checkout.session_id,
            "url": checkout.url,
        }

    # =========================================================================
    # STRIPE WEBHOOK SYNC
    # =========================================================================

    @staticmethod
    async def _lock_linked(db: AsyncSession, stripe_object: dict) -> Optional[OperatorSubscription]:
        subscription_id = (stripe_object.get("metadata") or {}).get("subscription_id")
        query = select(OperatorSubscription).with_for_update()
        if subscription_id:
            try:
                query = query.where(OperatorSubscription.id == int(subscription_id))
            except (TypeError, ValueError):
                logger.warning(f"Stripe object {stripe_object.get('id')} has malformed subscription_id {subscription_id!r}")
                return None
        elif stripe_object.get("object") == "subscription" and stripe_object.get("id"):
            query = query.where(OperatorSubscription.stripe_subscription_id == stripe_object["id"])
        else:
            logger.warning(f"Stripe object {stripe_object.get('id')} missing subscription_id in metadata")
            return None

        result = await db.execute(query)
        subscription = result.scalar_one_or_none()
        if not subscription:
            logger.warning(f"Stripe object {stripe_object.get('id')} references unknown subscription")
        return subscription

    @staticmethod
    async def apply_checkout_completed(db: AsyncSession, session: dict) -> Optional[OperatorSubscription]:
        subscription = await SubscriptionService._lock_linked(db, session)
        if subscription is None:
            return None

        subscription.stripe_customer_id = session.get("customer") or subscription.stripe_customer_id
        subscription.stripe_subscription_id = session.get("subscription") or subscription.stripe_subscription_id
        if subscription.status not in LIVE_SUBSCRIPTION_STATES:
            subscription.status = SubscriptionStatus.ACTIVE
        await db.commit()

        logger.info(f"Subscription {subscription.id} activated by checkout {session.get('id')}")
        return subscription

    @staticmethod
    async def apply_subscription_updated(db: AsyncSession, stripe_subscription: dict) -> Optional[OperatorSubscription]:
        subscription = await SubscriptionService._lock_linked(db, stripe_subscription)
        if subscription is None:
            return None

        stripe_status = stripe_subscription.get("status")
        subscription.status = STRIPE_STATUSES.get(stripe_status, SubscriptionStatus.CANCELED)
        start, end = _period_bounds(stripe_subscription)
        if start is not None:
            subscription.current_period_start = from_unix(start)
        if end is not None:
            subscription.current_period_end = from_unix(end)
        subscription.cancel_at_period_end = bool(stripe_subscription.get("cancel_at_period_end"))
        subscription.trial_end = from_unix(stripe_subscription.get("trial_end"))
        if stripe_subscription.get("id"):
            subscription.stripe_subscription_id = stripe_subscription["id"]
        await db.commit()

        logger.info(f"Subscription {subscription.id} synced: stripe status {stripe_status} -> {subscription.status.value}")
        return subscription

    @staticmethod
    async def apply_subscription_deleted(db: AsyncSession, stripe_subscription: dict) -> Optional[OperatorSubscription]:
        subscription = await SubscriptionService._lock_linked(db, stripe_subscription)
        if subscription is None:
            return None

        subscription.status = SubscriptionStatus.CANCELED
        subscription.cancel_at_period_end = False
        await db.commit()

        logger.info(f"Subscription {subscription.id} canceled")
        return subscription
