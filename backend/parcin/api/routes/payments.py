"""
Payment routes

1. create-intent: Stripe PaymentIntent for a PENDING_PAYMENT reservation
2. refund: operator/admin refund of a paid reservation fee
3. webhook: Stripe tells us directly when a payment succeeds or fails

Once the webhook signature checks out the response is always 200, even if
the event could not be applied, so Stripe does not retry events that will
never succeed.
"""
import logging

import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from parcin.core.config import settings
from parcin.core.database import get_db
from parcin.core.rate_limit import limiter
from parcin.api.deps import (
    get_current_user,
    get_current_operator,
    get_notifier,
    get_payment_gateway,
)
from parcin.models import User
from parcin.schemas.payment import (
    CreateIntentRequest,
    CreateIntentResponse,
    RefundRequest,
    RefundResponse,
    RefundInfo,
    WebhookAck,
)
from parcin.services.notifications import ReservationNotifier
from parcin.services.payment_gateway import PaymentGateway
from parcin.services.payment_webhooks import PaymentWebhookHandler
from parcin.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-intent", response_model=CreateIntentResponse)
@limiter.limit(settings.RATE_LIMIT_BOOKING)
async def create_payment_intent(
    request: Request,
    payload: CreateIntentRequest,
    current_user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    result = await ReservationService.create_payment_intent(
        db, payload.reservation_id, user=current_user, gateway=gateway
    )
    return CreateIntentResponse(**result)


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    payload: RefundRequest,
    current_user: User = Depends(get_current_operator),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """Refund a paid reservation fee, fully unless an amount is given."""
    reservation, lot = await ReservationService.get_reservation_with_lot(db, payload.reservation_id)
    ReservationService.ensure_access(reservation, lot, current_user)

    refund = await ReservationService.manual_refund(
        db, payload.reservation_id, gateway=gateway, amount=payload.amount
    )
    logger.info(f"Refund {refund['id']} issued by user {current_user.id} for reservation {payload.reservation_id}")
    return RefundResponse(refund=RefundInfo(**refund))


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: ReservationNotifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Stripe webhook events.

    Events handled:
    - payment_intent.succeeded: confirm the reservation
    - payment_intent.payment_failed: expire the reservation
    - checkout.session.completed, customer.subscription.updated/deleted:
      sync the operator's plan subscription

    Emails are queued on background_tasks and sent after the 200.
    """
    if not gateway.webhook_secret:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.warning("Stripe webhook missing signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    try:
        event = gateway.construct_event(payload, sig_header)
    except ValueError as e:
        logger.warning(f"Stripe webhook invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    handler = PaymentWebhookHandler(notifier, background_tasks=background_tasks)
    try:
        outcome = await handler.handle_event(db, event)
    except Exception:
        logger.exception(f"Stripe webhook {event.get('id')} could not be reconciled")
        await db.rollback()
        return WebhookAck()

    logger.info(f"Stripe webhook {event.get('id')} ({event.get('type')}): {outcome}")
    return WebhookAck()
