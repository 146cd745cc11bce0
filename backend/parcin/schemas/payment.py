from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================
class CreateIntentRequest(BaseModel):
    reservation_id: str


class CreateIntentResponse(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    amount: int
    currency: str


class RefundRequest(BaseModel):
    reservation_id: str
    amount: Optional[Decimal] = Field(default=None, gt=0)


class RefundInfo(BaseModel):
    id: str
    amount: Decimal
    status: str


class RefundResponse(BaseModel):
    success: bool = True
    refund: RefundInfo


class WebhookAck(BaseModel):
    received: bool = True
