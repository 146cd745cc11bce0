from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from parcin.models import ParkingLot, Reservation, ReservationState, PaymentStatus
from parcin.services.lifecycle import CheckoutCharge


# ============================================================================
# REQUESTS
# ============================================================================
class ReservationCreate(BaseModel):
    lot_id: int
    car_plate: str = Field(min_length=1, max_length=20)
    expected_hours: Optional[int] = Field(default=None, ge=1, le=24)
    arrival_time: Optional[datetime] = None

    @field_validator("car_plate")
    @classmethod
    def plate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("car_plate must not be blank")
        return v


# ============================================================================
# RESPONSES
# ============================================================================
class LotSnapshot(BaseModel):
    id: int
    name: str
    address: str
    hourly_rate: Decimal

    @classmethod
    def from_lot(cls, lot: Optional[ParkingLot]) -> Optional["LotSnapshot"]:
        if lot is None:
            return None
        return cls(id=lot.id, name=lot.name, address=lot.address, hourly_rate=lot.pricing_hourly)


class ArrivalWindow(BaseModel):
    start: datetime
    end: datetime


class FeesResponse(BaseModel):
    reservation_pct: Decimal
    reservation_fee_amount: Decimal


class PaymentInfo(BaseModel):
    provider: str
    status: PaymentStatus
    amount: Decimal
    intent_id: Optional[str] = None
    refund_amount: Decimal = Decimal("0")


class ReservationSummary(BaseModel):
    id: str
    state: ReservationState
    lot: Optional[LotSnapshot] = None
    arrival_window: ArrivalWindow
    car_plate: str
    fees: FeesResponse
    payment: PaymentInfo

    @classmethod
    def _base_fields(cls, reservation: Reservation, lot: Optional[ParkingLot]) -> dict:
        return {
            "id": reservation.id,
            "state": reservation.state,
            "lot": LotSnapshot.from_lot(lot),
            "arrival_window": ArrivalWindow(
                start=reservation.arrival_window_start,
                end=reservation.arrival_window_end,
            ),
            "car_plate": reservation.car_plate,
            "fees": FeesResponse(
                reservation_pct=reservation.reservation_pct,
                reservation_fee_amount=reservation.reservation_fee_amount,
            ),
            "payment": PaymentInfo(
                provider=reservation.payment_provider or "stripe",
                status=reservation.payment_status,
                amount=reservation.reservation_fee_amount,
                intent_id=reservation.payment_intent_id,
                refund_amount=reservation.refund_amount or Decimal("0"),
            ),
        }

    @classmethod
    def from_models(cls, reservation: Reservation, lot: Optional[ParkingLot]) -> "ReservationSummary":
        return cls(**cls._base_fields(reservation, lot))


class PriceEstimate(BaseModel):
    hourly: Decimal
    expected_hours: Optional[int] = None


class ReservationDetail(ReservationSummary):
    price_estimate: PriceEstimate
    checkin_at: Optional[datetime] = None
    checkout_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_models(cls, reservation: Reservation, lot: Optional[ParkingLot]) -> "ReservationDetail":
        return cls(
            **cls._base_fields(reservation, lot),
            price_estimate=PriceEstimate(
                hourly=reservation.price_hourly,
                expected_hours=reservation.expected_hours,
            ),
            checkin_at=reservation.checkin_at,
            checkout_at=reservation.checkout_at,
            created_at=reservation.created_at,
            updated_at=reservation.updated_at,
        )


class ReservationListResponse(BaseModel):
    reservations: List[ReservationDetail]


class TransitionResponse(BaseModel):
    success: bool = True
    reservation: ReservationDetail


class CancelResponse(TransitionResponse):
    refund_amount: Decimal


class CheckoutBreakdown(BaseModel):
    parking_hours: int
    hourly_rate: Decimal
    total_amount: Decimal
    reservation_fee_paid: Decimal
    remaining_amount: Decimal

    @classmethod
    def from_charge(cls, charge: CheckoutCharge, hourly_rate) -> "CheckoutBreakdown":
        return cls(
            parking_hours=charge.parking_hours,
            hourly_rate=hourly_rate,
            total_amount=charge.total_amount,
            reservation_fee_paid=charge.reservation_fee_paid,
            remaining_amount=charge.remaining_amount,
        )


class CheckoutResponse(TransitionResponse):
    checkout: CheckoutBreakdown


# ============================================================================
# OPERATOR LISTING
# ============================================================================
class CustomerInfo(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None


class OperatorReservation(ReservationDetail):
    user: Optional[CustomerInfo] = None

    @classmethod
    def from_rows(cls, reservation: Reservation, lot: Optional[ParkingLot], user) -> "OperatorReservation":
        detail = ReservationDetail.from_models(reservation, lot)
        customer = None
        if user is not None:
            customer = CustomerInfo(id=user.id, name=user.name, email=user.email, phone=user.phone)
        return cls(**dict(detail), user=customer)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class OperatorReservationList(BaseModel):
    success: bool = True
    reservations: List[OperatorReservation]
    pagination: Pagination
