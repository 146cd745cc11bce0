"""
Payment Gateway (Stripe)

Thin wrapper over the Stripe calls Parcin needs: PaymentIntent creation,
refunds, operator subscription checkout and webhook signature verification.
Routes receive it through api/deps.get_payment_gateway so tests can swap
in a fake.
"""
import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import stripe

from parcin.core.config import settings
from parcin.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntentResult:
    intent_id: str
    client_secret: Optional[str]


@dataclass
class RefundResult:
    refund_id: str
    status: str


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: Optional[str]
    customer_id: str


class PaymentGateway:
    """Stripe-backed payment gateway."""

    provider = "stripe"

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
    ) -> PaymentIntentResult:
        """
        Create a PaymentIntent for the reservation fee.

        Raises:
            PaymentProviderError: If Stripe rejects the request
        """
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata={key: str(value) for key, value in metadata.items()},
                automatic_payment_methods={"enabled": True},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent creation failed: {e}")
            raise PaymentProviderError(
                f"Payment provider error: {e.user_message or str(e)}",
                provider_code=getattr(e, "code", None),
            )

        logger.info(f"Stripe PaymentIntent created: {intent.id} ({amount_cents} {currency})")
        return PaymentIntentResult(intent_id=intent.id, client_secret=intent.client_secret)

    def refund(
        self,
        intent_id: str,
        amount_cents: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundResult:
        """
        Refund a PaymentIntent, fully when amount_cents is None.

        Raises:
            PaymentProviderError: If Stripe rejects the refund
        """
        params = {
            "payment_intent": intent_id,
            "metadata": {key: str(value) for key, value in (metadata or {}).items()},
            "api_key": self.api_key,
        }
        if amount_cents is not None:
            params["amount"] = amount_cents

        try:
            refund = stripe.Refund.create(**params)
        except stripe.InvalidRequestError as e:
            logger.error(f"Stripe InvalidRequestError: {e}")
            raise PaymentProviderError(f"Invalid refund request: {str(e)}", provider_code=e.code)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {e}")
            raise PaymentProviderError(f"Stripe error: {str(e)}", provider_code=getattr(e, "code", None))

        logger.info(f"Stripe refund created: {refund.id} (payment_intent: {intent_id})")
        return RefundResult(refund_id=refund.id, status=refund.status)

    def find_or_create_customer(self, email: str, name: str, metadata: Dict[str, str]) -> str:
        """Id of the Stripe customer for `email`, created on first use."""
        existing = stripe.Customer.list(email=email, limit=1, api_key=self.api_key)
        if existing.data:
            return existing.data[0].id

        customer = stripe.Customer.create(
            email=email,
            name=name,
            metadata={key: str(value) for key, value in metadata.items()},
            api_key=self.api_key,
        )
        logger.info(f"Stripe customer created: {customer.id}")
        return customer.id

    def create_subscription_checkout(
        self,
        customer_email: str,
        customer_name: str,
        product_name: str,
        product_description: str,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        """
        Start a monthly subscription through Stripe Checkout.

        `metadata` is stored on both the session and the subscription so
        later subscription events can be matched back.

        Raises:
            PaymentProviderError: If Stripe rejects the request
        """
        metadata = {key: str(value) for key, value in metadata.items()}
        try:
            customer_id = self.find_or_create_customer(customer_email, customer_name, metadata)
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {
                                "name": product_name,
                                "description": product_description,
                            },
                            "unit_amount": amount_cents,
                            "recurring": {"interval": "month"},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise PaymentProviderError(
                f"Payment provider error: {e.user_message or str(e)}",
                provider_code=getattr(e, "code", None),
            )

        logger.info(f"Stripe checkout session created: {session.id} (customer {customer_id})")
        return CheckoutSessionResult(session_id=session.id, url=session.url, customer_id=customer_id)

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """
        Verify a webhook signature and return the event as a plain dict.

        Raises:
            ValueError: Malformed payload
            stripe.SignatureVerificationError: Signature does not match
        """
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)
