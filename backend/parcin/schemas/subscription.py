from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field

from parcin.models import SubscriptionStatus


# ============================================================================
# PLAN SCHEMAS
# ============================================================================
class PlanResponse(BaseModel):
    id: int
    name: str
    description: str = ""
    price_cents: int
    price: Decimal
    currency: str
    features: List[str] = []
    max_parking_lots: int
    max_reservations_per_month: int

    @classmethod
    def from_plan(cls, plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description or "",
            price_cents=plan.price_cents,
            price=(Decimal(plan.price_cents) / 100).quantize(Decimal("0.01")),
            currency=plan.currency,
            features=list(plan.features or []),
            max_parking_lots=plan.max_parking_lots,
            max_reservations_per_month=plan.max_reservations_per_month,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


# ============================================================================
# OPERATOR SUBSCRIPTION SCHEMAS
# ============================================================================
class SubscriptionResponse(BaseModel):
    id: int
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    plan: PlanResponse

    @classmethod
    def from_models(cls, subscription, plan) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            status=subscription.status,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            trial_end=subscription.trial_end,
            cancel_at_period_end=bool(subscription.cancel_at_period_end),
            plan=PlanResponse.from_plan(plan),
        )


class OperatorSubscriptionResponse(BaseModel):
    subscription: SubscriptionResponse
    has_access: bool
    access_status: str


class CheckoutRequest(BaseModel):
    plan_id: int = Field(gt=0)


class CheckoutResponse(BaseModel):
    success: bool = True
    subscription_id: int
    session_id: str
    url: Optional[str] = None
