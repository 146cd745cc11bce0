from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from parcin.models import LotStatus


# ============================================================================
# PUBLIC LOT SCHEMAS
# ============================================================================
class LotPricing(BaseModel):
    hourly: Decimal
    daily_max: Optional[Decimal] = None


class LotResponse(BaseModel):
    id: int
    name: str
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    pricing: LotPricing
    capacity: int
    availability: int
    amenities: List[str] = []
    status: LotStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_lot(cls, lot) -> "LotResponse":
        return cls(
            id=lot.id,
            name=lot.name,
            address=lot.address,
            latitude=lot.latitude,
            longitude=lot.longitude,
            pricing=LotPricing(hourly=lot.pricing_hourly, daily_max=lot.pricing_daily_max),
            capacity=lot.capacity,
            availability=lot.availability_manual,
            amenities=list(lot.amenities or []),
            status=lot.status,
            created_at=lot.created_at,
            updated_at=lot.updated_at,
        )


class LotAvailabilityRequest(BaseModel):
    lot_ids: List[int]


class LotAvailabilityResponse(BaseModel):
    success: bool = True
    availability: Dict[str, int]
    timestamp: Optional[datetime] = None


# ============================================================================
# OPERATOR LOT SCHEMAS
# ============================================================================
class LotCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=500)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    hourly_rate: Decimal = Field(gt=0)
    daily_max: Optional[Decimal] = Field(default=None, gt=0)
    capacity: int = Field(gt=0)
    amenities: List[str] = []


class LotUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    hourly_rate: Optional[Decimal] = Field(default=None, gt=0)
    daily_max: Optional[Decimal] = Field(default=None, gt=0)
    capacity: Optional[int] = Field(default=None, gt=0)
    amenities: Optional[List[str]] = None
    status: Optional[LotStatus] = None


class AvailabilityUpdate(BaseModel):
    availability: int = Field(ge=0)


class OperatorLotResponse(BaseModel):
    success: bool = True
    lot: LotResponse


class OperatorLotListResponse(BaseModel):
    success: bool = True
    lots: List[LotResponse]
