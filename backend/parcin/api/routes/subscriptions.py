"""
Subscription plan catalogue (public)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.database import get_db
from parcin.schemas.subscription import PlanListResponse, PlanResponse
from parcin.services.subscriptions import SubscriptionService

router = APIRouter(prefix="/subscription-plans", tags=["subscriptions"])


@router.get("", response_model=PlanListResponse)
async def list_subscription_plans(db: AsyncSession = Depends(get_db)):
    """Active plans, cheapest first."""
    plans = await SubscriptionService.list_plans(db)
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in plans])
