"""
BMW Intelligence
Static knowledge base of model-specific maintenance data for BMW vehicles.

The reference table is loaded once from data/bmw_models.json into an
immutable dataset and handed to BMWIntelligence at construction. Lookups
match a model name and year against each row's inclusive year range; anything
without a match gets a generic profile. Every profile is cached for 24 hours.
"""

import json
import logging
import math
import re
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from models.vehicle import (
    MaintenanceItem,
    ManufacturerProfile,
    ModelReference,
    RepairCostEstimate,
    ValueBand,
)
from services.cache_store import CacheStore, cache_store

logger = logging.getLogger(__name__)

ReferenceDataset = Mapping[str, Tuple[ModelReference, ...]]

PROFILE_CACHE_TTL = 24 * 60 * 60
MIN_DEPRECIATION_FACTOR = 0.3
ANNUAL_DEPRECIATION = 0.08
OLD_VEHICLE_AGE = 15

DEFAULT_DATASET_PATH = Path(__file__).parent.parent / "data" / "bmw_models.json"

REPAIR_COSTS: Dict[str, RepairCostEstimate] = {
    "oil_change": RepairCostEstimate(min=150, max=300, description="Standard oil and filter change with BMW-approved oil"),
    "brake_pads": RepairCostEstimate(min=400, max=800, description="Front or rear brake pad replacement"),
    "brake_discs": RepairCostEstimate(min=600, max=1200, description="Brake disc replacement (pair)"),
    "timing_chain": RepairCostEstimate(min=2000, max=4500, description="Timing chain and guides replacement"),
    "water_pump": RepairCostEstimate(min=800, max=1500, description="Water pump replacement"),
    "thermostat": RepairCostEstimate(min=300, max=600, description="Thermostat housing replacement"),
    "spark_plugs": RepairCostEstimate(min=200, max=400, description="Spark plug replacement (set of 4-8)"),
    "air_filter": RepairCostEstimate(min=80, max=150, description="Engine air filter replacement"),
    "cabin_filter": RepairCostEstimate(min=60, max=120, description="Cabin/pollen filter replacement"),
    "battery": RepairCostEstimate(min=200, max=500, description="BMW battery replacement and coding"),
    "alternator": RepairCostEstimate(min=800, max=1500, description="Alternator replacement"),
    "starter": RepairCostEstimate(min=600, max=1200, description="Starter motor replacement"),
    "suspension": RepairCostEstimate(min=500, max=1500, description="Suspension component replacement (per corner)"),
    "transmission_service": RepairCostEstimate(min=400, max=800, description="Automatic transmission service"),
    "differential_service": RepairCostEstimate(min=250, max=450, description="Differential oil change"),
}
DEFAULT_REPAIR_COST = RepairCostEstimate(min=200, max=1000, description="General repair estimate")


def normalize_model_name(model: str) -> str:
    return re.sub(r"\s+", "", model or "").lower()


def build_reference_dataset(rows: Iterable[ModelReference]) -> ReferenceDataset:
    """Group rows by normalized model name; the same name recurs across generations."""
    grouped: Dict[str, List[ModelReference]] = {}
    for row in rows:
        grouped.setdefault(normalize_model_name(row.model), []).append(row)
    return MappingProxyType({key: tuple(models) for key, models in grouped.items()})


def load_reference_dataset(path: Optional[Path] = None) -> ReferenceDataset:
    path = Path(path) if path else DEFAULT_DATASET_PATH
    with open(path, "r", encoding="utf-8") as f:
        rows = [ModelReference.model_validate(item) for item in json.load(f)]
    dataset = build_reference_dataset(rows)
    logger.info(f"Loaded {len(rows)} BMW models into intelligence database")
    return dataset


def depreciation_factor(age: int) -> float:
    return max(MIN_DEPRECIATION_FACTOR, 1 - age * ANNUAL_DEPRECIATION)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_current_value(band: ValueBand, year: int, current_year: int) -> ValueBand:
    factor = depreciation_factor(current_year - year)
    return ValueBand(
        excellent=_round_half_up(band.excellent * factor),
        good=_round_half_up(band.good * factor),
        fair=_round_half_up(band.fair * factor),
        poor=_round_half_up(band.poor * factor),
    )


def format_value_range(band: ValueBand) -> str:
    return f"€{band.excellent} (excellent) - €{band.poor} (poor condition)"


def _current_year() -> int:
    return datetime.now().year


class BMWIntelligence:
    """Model/year lookups against the reference dataset, memoized in the cache."""

    def __init__(
        self,
        dataset: ReferenceDataset,
        cache: CacheStore,
        clock: Callable[[], int] = _current_year,
    ):
        self.dataset = dataset
        self.cache = cache
        self._clock = clock

    @staticmethod
    def cache_key(make: str, model: str, year: int) -> str:
        return f"bmw:{make}:{model}:{year}"

    def find_reference(self, model: str, year: int) -> Optional[ModelReference]:
        candidates = self.dataset.get(normalize_model_name(model), ())
        return next((row for row in candidates if row.covers(year)), None)

    async def lookup(self, make: str, model: str, year: int) -> ManufacturerProfile:
        """Return a profile for the vehicle. Never raises."""
        year = year or 0
        key = self.cache_key(make, model, year)

        cached = await self.cache.get(key)
        if cached:
            try:
                return ManufacturerProfile.model_validate_json(cached)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable BMW profile cache entry {key}: {e}")

        reference = self.find_reference(model, year)
        if reference is None:
            logger.info(f"No BMW reference data for {model} ({year}), using generic profile")
            profile = self.generic_profile(year)
        else:
            profile = self._profile_from_reference(reference, year)

        await self.cache.set_with_ttl(
            key, profile.model_dump_json(by_alias=True), PROFILE_CACHE_TTL
        )
        return profile

    def _profile_from_reference(self, reference: ModelReference, year: int) -> ManufacturerProfile:
        band = calculate_current_value(reference.estimated_value, year, self._clock())
        return ManufacturerProfile(
            engine_code=reference.engine_code,
            generation=reference.generation,
            chassis_code=reference.chassis_code,
            recommended_oil=reference.recommended_oil,
            oil_capacity=reference.oil_capacity,
            service_intervals=reference.service_intervals,
            common_issues=list(reference.common_issues),
            estimated_value=format_value_range(band),
            value_band=band,
            parts_price_level=reference.parts_price_level,
            special_notes=reference.special_notes,
        )

    def generic_profile(self, year: int) -> ManufacturerProfile:
        is_old = self._clock() - year > OLD_VEHICLE_AGE
        return ManufacturerProfile(
            engine_code="Unknown - Check VIN decoder",
            generation="Unknown generation",
            chassis_code="Unknown chassis",
            recommended_oil="BMW Longlife-01 5W-30" if is_old else "BMW Longlife-04 5W-30",
            oil_capacity="4.5-6.5L (model dependent)",
            service_intervals=(
                "Every 10,000 km or 1 year" if is_old else "Every 20,000 km or 2 years"
            ),
            common_issues=[
                "Cooling system maintenance required",
                "Regular diagnostic scan recommended",
                "Check BMW-specific service bulletins",
                "Monitor for software updates",
            ],
            estimated_value="Market research required for accurate valuation",
            parts_price_level="High",
        )

    def service_recommendations(self, year: int, mileage: Optional[int] = None) -> List[str]:
        age = self._clock() - year
        recommendations: List[str] = []

        if age > 10:
            recommendations += [
                "Comprehensive inspection recommended due to vehicle age",
                "Check timing chain/belt condition",
                "Inspect cooling system thoroughly",
            ]
        if age > 15:
            recommendations += [
                "Consider preventive replacement of wear parts",
                "Check engine mounts and suspension components",
            ]

        if mileage:
            if mileage > 100000:
                recommendations += [
                    "High-mileage oil change interval recommended",
                    "Inspect transmission fluid",
                ]
            if mileage > 150000:
                recommendations += [
                    "Consider timing chain inspection",
                    "Check turbocharger condition (if equipped)",
                ]
            if mileage > 200000:
                recommendations += [
                    "Comprehensive engine diagnostics recommended",
                    "Consider preventive maintenance of high-wear components",
                ]

        recommendations += [
            "Use only BMW-approved oils and fluids",
            "Regular diagnostic scan for BMW-specific fault codes",
        ]
        return recommendations

    @staticmethod
    def repair_cost_estimate(issue: str) -> RepairCostEstimate:
        return REPAIR_COSTS.get(issue, DEFAULT_REPAIR_COST)

    def maintenance_schedule(self, year: int, current_mileage: int = 0) -> List[MaintenanceItem]:
        age = self._clock() - year
        oil_interval = 10000 if age > 10 else 15000

        schedule = [
            MaintenanceItem(
                service="Oil & Filter Change",
                next_due=math.ceil(current_mileage / oil_interval) * oil_interval,
                priority="High",
                estimated_cost="€150-300",
            )
        ]
        if current_mileage > 60000:
            schedule.append(
                MaintenanceItem(
                    service="Spark Plugs",
                    next_due=math.ceil(current_mileage / 60000) * 60000,
                    priority="Medium",
                    estimated_cost="€200-400",
                )
            )
        if current_mileage > 80000:
            schedule.append(
                MaintenanceItem(
                    service="Brake Fluid",
                    next_due=math.ceil(current_mileage / 40000) * 40000,
                    priority="High",
                    estimated_cost="€80-150",
                )
            )
        return schedule


bmw_intelligence = BMWIntelligence(load_reference_dataset(), cache_store)
