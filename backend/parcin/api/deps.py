"""
API dependencies
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from parcin.core.database import get_db
from parcin.core.exceptions import SubscriptionRequiredError
from parcin.core.security import access_subject, decode_token
from parcin.models.user import User
from parcin.services.notifications import ReservationNotifier
from parcin.services.payment_gateway import PaymentGateway
from parcin.services.subscriptions import SubscriptionCheck, SubscriptionService
from parcin.services.vehicle_catalog import VehicleCatalogClient

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """User behind the bearer access token; 401 for anything else."""
    user_id = access_subject(decode_token(credentials.credentials))
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled"
        )

    return user


async def get_current_operator(user: User = Depends(get_current_user)) -> User:
    """Require operator or admin user"""
    if not user.is_operator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Operator role required."
        )
    return user


async def require_active_subscription(
    user: User = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionCheck:
    """Operator with a live plan (admins pass); 403 SUBSCRIPTION_REQUIRED otherwise."""
    check = await SubscriptionService.check_access(db, user)
    if not check.has_access:
        raise SubscriptionRequiredError(
            check.message or "An active subscription is required",
            subscription_status=check.status,
        )
    return check


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()


def get_notifier(request: Request) -> ReservationNotifier:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = request.app.state.notifier = ReservationNotifier()
    return notifier


def get_vehicle_catalog(request: Request) -> VehicleCatalogClient:
    catalog = getattr(request.app.state, "vehicle_catalog", None)
    if catalog is None:
        catalog = request.app.state.vehicle_catalog = VehicleCatalogClient()
    return catalog
