from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from market_intel.errors import MarketIntelError
from market_intel.models.enums import EquipmentType, HotspotSeverity, HotspotType
from market_intel.models.hotspot import Hotspot, HotspotDetectionRequest
from market_intel.routes._deps import (
    get_forecast_engine,
    get_hotspot_engine,
    http_error,
)
from market_intel.services.forecast_engine import ForecastEngine
from market_intel.services.hotspot_engine import HotspotEngine

router = APIRouter(prefix="/api/hotspots", tags=["Hotspots"])


@router.post("/detect", response_model=list[Hotspot])
async def detect_hotspots_route(
    body: HotspotDetectionRequest,
    engine: HotspotEngine = Depends(get_hotspot_engine),
    forecasts: ForecastEngine = Depends(get_forecast_engine),
):
    """
    Run every detector and store the merged hotspots.
    Uses the given forecast, or the most recent stored 24h forecast.
    """
    try:
        if body.forecast_id:
            forecast = await forecasts.get_forecast(body.forecast_id)
            if forecast is None:
                raise HTTPException(404, f"Forecast {body.forecast_id} not found")
        else:
            forecast = await forecasts.latest_forecast()
        return await engine.detect_hotspots(
            forecast, body.regions, body.equipment_types
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/active", response_model=list[Hotspot])
async def active_hotspots_route(engine: HotspotEngine = Depends(get_hotspot_engine)):
    return await engine.get_active_hotspots()


@router.get("/near", response_model=list[Hotspot])
async def hotspots_near_route(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_miles: float = Query(100.0, gt=0),
    active_only: bool = True,
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return await engine.get_hotspots_near(
        latitude, longitude, radius_miles, active_only
    )


@router.get("/containing", response_model=list[Hotspot])
async def hotspots_containing_route(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    """Active hotspots whose zone covers the point."""
    return await engine.hotspots_containing(latitude, longitude)


@router.get("/type/{hotspot_type}", response_model=list[Hotspot])
async def hotspots_by_type_route(
    hotspot_type: HotspotType,
    active_only: bool = True,
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return await engine.get_hotspots_by_type(hotspot_type, active_only)


@router.get("/severity/{severity}", response_model=list[Hotspot])
async def hotspots_by_severity_route(
    severity: HotspotSeverity,
    active_only: bool = True,
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return await engine.get_hotspots_by_severity(severity, active_only)


@router.get("/equipment/{equipment_type}", response_model=list[Hotspot])
async def hotspots_by_equipment_route(
    equipment_type: EquipmentType,
    active_only: bool = True,
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return await engine.get_hotspots_by_equipment_type(equipment_type, active_only)


@router.get("/region/{region}", response_model=list[Hotspot])
async def hotspots_by_region_route(
    region: str,
    active_only: bool = True,
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return await engine.get_hotspots_by_region(region, active_only)


@router.post("/deactivate-expired")
async def deactivate_expired_route(
    engine: HotspotEngine = Depends(get_hotspot_engine),
):
    return {"deactivated": await engine.deactivate_expired()}


@router.get("/{hotspot_id}", response_model=Hotspot)
async def get_hotspot_route(
    hotspot_id: str, engine: HotspotEngine = Depends(get_hotspot_engine)
):
    hotspot = await engine.get_hotspot(hotspot_id)
    if hotspot is None:
        raise HTTPException(404, f"Hotspot {hotspot_id} not found")
    return hotspot


@router.post("/{hotspot_id}/deactivate", response_model=Hotspot)
async def deactivate_hotspot_route(
    hotspot_id: str, engine: HotspotEngine = Depends(get_hotspot_engine)
):
    hotspot: Optional[Hotspot] = await engine.deactivate_hotspot(hotspot_id)
    if hotspot is None:
        raise HTTPException(404, f"Hotspot {hotspot_id} not found")
    return hotspot
