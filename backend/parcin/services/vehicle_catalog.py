"""
Vehicle Catalog Client (FIPE)

Brand and model lookups against the public FIPE table API, used by the
vehicle pickers when a driver registers a car. Routes get a client through
api/deps.get_vehicle_catalog.

FIPE endpoints:
    GET /{carros|motos}/marcas                      -> [{"codigo", "nome"}]
    GET /{carros|motos}/marcas/{codigo}/modelos     -> {"modelos": [{"codigo", "nome"}], "anos": [...]}
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import httpx

from parcin.core.config import settings
from parcin.core.exceptions import VehicleCatalogError

logger = logging.getLogger(__name__)


class VehicleType(str, Enum):
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"


FIPE_PATHS = {
    VehicleType.CAR: "carros",
    VehicleType.MOTORCYCLE: "motos",
}


@dataclass
class VehicleBrand:
    name: str
    code: Optional[str] = None


@dataclass
class VehicleModel:
    name: str
    code: Optional[str] = None


@dataclass
class VehicleInfo:
    brand: str
    model: str
    year: Optional[int] = None
    color: Optional[str] = None


class VehicleCatalogClient:
    """Async FIPE client."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FIPE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.FIPE_TIMEOUT_SECONDS
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self):
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _get_json(self, path: str):
        http = await self._get_http_client()
        try:
            resp = await http.get(path)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            logger.error(f"FIPE request {path} failed: {e}")
            raise VehicleCatalogError(f"Failed to fetch vehicle data: {e}")
        except ValueError as e:
            logger.error(f"FIPE returned invalid JSON for {path}: {e}")
            raise VehicleCatalogError("Vehicle catalog returned an invalid response")

    async def get_brands(self, vehicle_type: VehicleType = VehicleType.CAR) -> List[VehicleBrand]:
        """
        Raises:
            VehicleCatalogError: If the upstream catalog fails
        """
        data = await self._get_json(f"/{FIPE_PATHS[VehicleType(vehicle_type)]}/marcas")
        return [VehicleBrand(name=item["nome"], code=str(item["codigo"])) for item in data]

    async def _find_brand(self, brand: str, vehicle_type: VehicleType) -> Optional[VehicleBrand]:
        wanted = brand.strip().lower()
        for candidate in await self.get_brands(vehicle_type):
            if candidate.name.lower() == wanted:
                return candidate
        return None

    async def get_models(self, brand: str, vehicle_type: VehicleType = VehicleType.CAR) -> List[VehicleModel]:
        """
        Models for a brand name (case insensitive). Unknown brands have no models.

        Raises:
            VehicleCatalogError: If the upstream catalog fails
        """
        match = await self._find_brand(brand, vehicle_type)
        if match is None:
            return []

        data = await self._get_json(
            f"/{FIPE_PATHS[VehicleType(vehicle_type)]}/marcas/{match.code}/modelos"
        )
        return [
            VehicleModel(name=item["nome"], code=str(item["codigo"]))
            for item in data.get("modelos", [])
        ]

    async def get_vehicle_by_plate(self, plate: str) -> Optional[VehicleInfo]:
        """FIPE has no plate lookup; always None."""
        logger.info(f"Plate lookup not supported by vehicle catalog: {plate}")
        return None

    async def validate_brand(self, brand: str, vehicle_type: VehicleType = VehicleType.CAR) -> bool:
        try:
            return await self._find_brand(brand, vehicle_type) is not None
        except VehicleCatalogError as e:
            logger.warning(f"Brand validation failed for {brand!r}: {e}")
            return False

    async def validate_model(
        self,
        brand: str,
        model: str,
        vehicle_type: VehicleType = VehicleType.CAR,
    ) -> bool:
        try:
            models = await self.get_models(brand, vehicle_type)
        except VehicleCatalogError as e:
            logger.warning(f"Model validation failed for {brand!r} {model!r}: {e}")
            return False
        wanted = model.strip().lower()
        return any(m.name.lower() == wanted for m in models)
