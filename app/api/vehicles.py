from fastapi import APIRouter, HTTPException, Query
from typing import List, Optional

from models.vehicle import CamelModel, MaintenanceItem, RepairCostEstimate, VehicleRecord
from services.bmw_intelligence import bmw_intelligence
from services.exceptions import VehicleNotFoundError
from services.vehicle_resolver import normalize_registration, vehicle_resolver

router = APIRouter()


class ServiceAdvice(CamelModel):
    registration_number: str
    recommendations: List[str]
    maintenance_schedule: List[MaintenanceItem]


@router.get("/repair-cost/{issue}", response_model=RepairCostEstimate)
async def repair_cost(issue: str):
    """Price range for a common BMW repair (oil_change, brake_pads, timing_chain...)."""
    return bmw_intelligence.repair_cost_estimate(issue)


@router.get("/{registration_number}", response_model=VehicleRecord)
async def lookup_vehicle(registration_number: str):
    """
    Look up a vehicle by Finnish registration number.
    Cache first, then Traficom (free), then 02 Rekkari (paid).
    """
    try:
        return await vehicle_resolver.resolve(registration_number)
    except VehicleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{registration_number}/cached", response_model=VehicleRecord)
async def cached_vehicle(registration_number: str):
    vehicle = await vehicle_resolver.get_cached(registration_number)
    if vehicle is None:
        raise HTTPException(status_code=404, detail="Vehicle not in cache")
    return vehicle


@router.delete("/{registration_number}/cache")
async def clear_vehicle_cache(registration_number: str):
    cleared = await vehicle_resolver.clear_cache(registration_number)
    return {
        "registrationNumber": normalize_registration(registration_number),
        "cleared": cleared,
    }


@router.get("/{registration_number}/recommendations", response_model=ServiceAdvice)
async def service_recommendations(
    registration_number: str,
    mileage: Optional[int] = Query(None, ge=0, description="Current odometer reading in km"),
):
    try:
        vehicle = await vehicle_resolver.resolve(registration_number)
    except VehicleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ServiceAdvice(
        registration_number=vehicle.registration_number,
        recommendations=bmw_intelligence.service_recommendations(vehicle.year, mileage),
        maintenance_schedule=bmw_intelligence.maintenance_schedule(vehicle.year, mileage or 0),
    )
