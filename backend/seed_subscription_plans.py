#!/usr/bin/env python3
"""
Parcin - Seed Operator Subscription Plans

Creates the Starter, Professional and Enterprise plans, or updates them in
place when they already exist (matched by name). Existing operator
subscriptions keep pointing at the same plan rows.

    python seed_subscription_plans.py

Requires DATABASE_URL and SECRET_KEY env vars, like the API.
"""
import asyncio
import logging
import os
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

REQUIRED_VARS = ["DATABASE_URL", "SECRET_KEY"]
missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
if missing:
    logger.error(f"Missing required environment variables: {missing}")
    sys.exit(1)

from sqlalchemy import select

from parcin.core.database import AsyncSessionLocal
from parcin.models import SubscriptionPlan, UNLIMITED

PLANS = [
    {
        "name": "Starter",
        "description": "Perfect for small parking lots",
        "price_cents": 2990,
        "features": ["Up to 2 parking lots", "100 reservations per month", "Basic analytics", "Email support"],
        "max_parking_lots": 2,
        "max_reservations_per_month": 100,
        "stripe_price_id": "price_starter_monthly",
    },
    {
        "name": "Professional",
        "description": "Ideal for growing businesses",
        "price_cents": 5990,
        "features": [
            "Up to 10 parking lots",
            "1,000 reservations per month",
            "Advanced analytics",
            "Priority support",
            "Custom branding",
        ],
        "max_parking_lots": 10,
        "max_reservations_per_month": 1000,
        "stripe_price_id": "price_pro_monthly",
    },
    {
        "name": "Enterprise",
        "description": "For large parking operations",
        "price_cents": 9990,
        "features": [
            "Unlimited parking lots",
            "Unlimited reservations",
            "Full analytics suite",
            "24/7 phone support",
            "Custom integrations",
            "Dedicated account manager",
        ],
        "max_parking_lots": UNLIMITED,
        "max_reservations_per_month": UNLIMITED,
        "stripe_price_id": "price_enterprise_monthly",
    },
]


async def seed_plans() -> int:
    async with AsyncSessionLocal() as db:
        for fields in PLANS:
            result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == fields["name"]))
            plan = result.scalar_one_or_none()
            if plan is None:
                plan = SubscriptionPlan(currency="brl", is_active=True)
                db.add(plan)
                logger.info(f"Creating plan {fields['name']}")
            else:
                logger.info(f"Updating plan {fields['name']} (id {plan.id})")
            for key, value in fields.items():
                setattr(plan, key, value)
        await db.commit()

    for fields in PLANS:
        logger.info(f"- {fields['name']}: R$ {fields['price_cents'] / 100:.2f}/month")
    return len(PLANS)


if __name__ == "__main__":
    count = asyncio.run(seed_plans())
    logger.info(f"Seeded {count} subscription plans")
