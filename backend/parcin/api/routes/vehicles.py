"""
Vehicle catalog routes

Brand/model pickers backed by the FIPE table.
"""
from fastapi import APIRouter, Depends, Query

from parcin.api.deps import get_vehicle_catalog
from parcin.schemas.vehicle import (
    VehicleBrandList,
    VehicleBrandResponse,
    VehicleModelList,
    VehicleModelResponse,
    VehicleInfoResponse,
    VehiclePlateResponse,
)
from parcin.services.vehicle_catalog import VehicleCatalogClient, VehicleType

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.get("/brands", response_model=VehicleBrandList)
async def list_brands(
    type: VehicleType = Query(VehicleType.CAR),
    catalog: VehicleCatalogClient = Depends(get_vehicle_catalog),
):
    brands = await catalog.get_brands(type)
    return VehicleBrandList(
        brands=[VehicleBrandResponse(name=b.name, code=b.code) for b in brands]
    )


@router.get("/models", response_model=VehicleModelList)
async def list_models(
    brand: str = Query(..., min_length=1),
    type: VehicleType = Query(VehicleType.CAR),
    catalog: VehicleCatalogClient = Depends(get_vehicle_catalog),
):
    models = await catalog.get_models(brand, type)
    return VehicleModelList(
        brand=brand,
        models=[VehicleModelResponse(name=m.name, code=m.code) for m in models],
    )


@router.get("/plate", response_model=VehiclePlateResponse)
async def lookup_plate(
    plate: str = Query(..., min_length=1, max_length=20),
    catalog: VehicleCatalogClient = Depends(get_vehicle_catalog),
):
    """Plate lookup is not supported by the catalog; `vehicle` is null in that case."""
    info = await catalog.get_vehicle_by_plate(plate)
    if info is None:
        return VehiclePlateResponse(plate=plate, vehicle=None, supported=False)
    return VehiclePlateResponse(
        plate=plate,
        vehicle=VehicleInfoResponse(brand=info.brand, model=info.model, year=info.year, color=info.color),
        supported=True,
    )
