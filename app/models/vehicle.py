from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal


DataSource = Literal["registry", "fallback-api", "cache"]
PartsPriceLevel = Literal["Low", "Medium", "High", "Premium"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Serializes to camelCase JSON, accepts either casing on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VehicleFields(CamelModel):
    """Attributes a single registry source can produce for a vehicle."""

    make: str = ""
    model: str = ""
    year: int = 0
    color: str = ""
    engine_size: str = ""
    fuel_type: str = ""
    power: str = ""
    co2_emissions: str = ""
    euro_class: str = ""
    vehicle_class: str = ""
    mass: str = ""
    seats: int = 0
    next_inspection: str = ""
    tax_class: str = ""

    @property
    def is_complete(self) -> bool:
        """Make and model are the minimum needed to treat a result as a hit."""
        return bool(self.make.strip() and self.model.strip())


class ValueBand(CamelModel):
    excellent: int
    good: int
    fair: int
    poor: int


class ManufacturerProfile(CamelModel):
    """Model-specific maintenance intelligence attached to BMW vehicles."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    engine_code: str
    generation: str
    chassis_code: str
    recommended_oil: str
    oil_capacity: str
    service_intervals: str
    common_issues: List[str] = Field(default_factory=list)
    estimated_value: str
    value_band: Optional[ValueBand] = None
    parts_price_level: PartsPriceLevel
    special_notes: Optional[str] = None


class VehicleRecord(VehicleFields):
    registration_number: str
    bmw_specific: Optional[ManufacturerProfile] = None
    data_source: DataSource
    timestamp: str
    confidence: float = Field(..., ge=0.0, le=1.0)

    @property
    def is_bmw(self) -> bool:
        return "bmw" in self.make.lower()


class ModelReference(CamelModel):
    """One row of the BMW reference table: a model name over a year range."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    series: str
    model: str
    year_start: int
    year_end: int
    engine_code: str
    generation: str
    chassis_code: str
    recommended_oil: str
    oil_capacity: str
    service_intervals: str
    common_issues: List[str]
    estimated_value: ValueBand
    parts_price_level: PartsPriceLevel
    special_notes: Optional[str] = None

    def covers(self, year: int) -> bool:
        return bool(year) and self.year_start <= year <= self.year_end


class RepairCostEstimate(CamelModel):
    min: int
    max: int
    description: str


class MaintenanceItem(CamelModel):
    service: str
    next_due: int
    priority: Literal["High", "Medium", "Low"]
    estimated_cost: str
