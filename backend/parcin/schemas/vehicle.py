from typing import Optional, List

from pydantic import BaseModel


# ============================================================================
# VEHICLE SCHEMAS
# ============================================================================
class VehicleBrandResponse(BaseModel):
    name: str
    code: Optional[str] = None


class VehicleModelResponse(BaseModel):
    name: str
    code: Optional[str] = None


class VehicleBrandList(BaseModel):
    brands: List[VehicleBrandResponse]


class VehicleModelList(BaseModel):
    brand: str
    models: List[VehicleModelResponse]


class VehicleInfoResponse(BaseModel):
    brand: str
    model: str
    year: Optional[int] = None
    color: Optional[str] = None


class VehiclePlateResponse(BaseModel):
    plate: str
    vehicle: Optional[VehicleInfoResponse] = None
    supported: bool = False
