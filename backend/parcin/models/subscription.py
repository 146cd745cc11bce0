"""
Operator billing models

Operators pay a monthly plan through a Stripe Checkout subscription. The
OperatorSubscription row is created INCOMPLETE when checkout starts and the
Stripe webhook moves it from there.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship

from parcin.core.database import Base

UNLIMITED = -1


class SubscriptionStatus(str, PyEnum):
    INCOMPLETE = "INCOMPLETE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    UNPAID = "UNPAID"
    CANCELED = "CANCELED"


# Rows an operator can be billed under; anything else is history
LIVE_SUBSCRIPTION_STATES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_plan_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500), nullable=False, default="")

    # Monthly price
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="brl")

    features = Column(JSON, default=list)
    max_parking_lots = Column(Integer, nullable=False, default=UNLIMITED)
    max_reservations_per_month = Column(Integer, nullable=False, default=UNLIMITED)

    stripe_price_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    subscriptions = relationship("OperatorSubscription", back_populates="plan")

    def allows_more_lots(self, current_count: int) -> bool:
        return self.max_parking_lots == UNLIMITED or current_count < self.max_parking_lots

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, name={self.name!r}, price_cents={self.price_cents})>"


class OperatorSubscription(Base):
    __tablename__ = "operator_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    operator_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False)

    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    stripe_checkout_session_id = Column(String(255), nullable=True)

    status = Column(
        Enum(SubscriptionStatus, name="subscription_status"),
        default=SubscriptionStatus.INCOMPLETE,
        nullable=False,
        index=True,
    )
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    trial_end = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    operator = relationship("User")
    plan = relationship("SubscriptionPlan", back_populates="subscriptions")

    def __repr__(self):
        return (
            f"<OperatorSubscription(id={self.id}, operator_user_id={self.operator_user_id}, "
            f"status={self.status})>"
        )
