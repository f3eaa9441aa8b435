"""02 Rekkari API client - PAID fallback used only when the Traficom scrape fails."""

import logging
import httpx
from typing import Any, Dict, Optional

from config import settings
from models.vehicle import VehicleFields
from services.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RekkariClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.rekkari_api_key
        self.base_url = (base_url or settings.rekkari_api_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.enabled:
            raise ConfigurationError("REKKARI_API_KEY is not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def fetch(self, registration_number: str) -> Optional[VehicleFields]:
        """Single attempt, no retry. Returns None on any failure."""
        try:
            headers = self._headers()
        except ConfigurationError as e:
            logger.warning(f"02 Rekkari lookup skipped: {e}")
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/{registration_number}", headers=headers
                )
                response.raise_for_status()
                data: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"02 Rekkari API failed for {registration_number}: {e}")
            return None

        vehicle = data.get("vehicle") if isinstance(data, dict) else None
        if not isinstance(vehicle, dict):
            logger.warning(f"02 Rekkari returned no vehicle for {registration_number}")
            return None

        fields = self._parse_vehicle(vehicle)
        logger.info(f"Successfully retrieved 02 Rekkari data for {registration_number}")
        return fields

    @staticmethod
    def _parse_vehicle(vehicle: Dict[str, Any]) -> VehicleFields:
        def text(key: str) -> str:
            value = vehicle.get(key)
            return str(value) if value is not None else ""

        def number(key: str) -> int:
            try:
                return int(vehicle.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        return VehicleFields(
            make=text("make"),
            model=text("model"),
            year=number("year"),
            color=text("color"),
            engine_size=text("engineSize"),
            fuel_type=text("fuelType"),
            power=text("power"),
            co2_emissions=text("co2Emissions"),
            euro_class=text("euroClass"),
            vehicle_class=text("vehicleClass"),
            mass=text("mass"),
            seats=number("seats"),
            next_inspection=text("nextInspection"),
            tax_class=text("taxClass"),
        )


rekkari_client = RekkariClient()
