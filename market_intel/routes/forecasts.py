from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from market_intel.errors import MarketIntelError
from market_intel.models.enums import EquipmentType, ForecastTimeframe
from market_intel.models.forecast import (
    DemandForecast,
    ForecastRequest,
    LaneDemandForecast,
    RegionalDemandForecast,
)
from market_intel.routes._deps import get_forecast_engine, http_error
from market_intel.services.forecast_engine import ForecastEngine

router = APIRouter(prefix="/api/forecasts", tags=["Forecasts"])


@router.post("", response_model=DemandForecast, status_code=201)
async def generate_forecast_route(
    body: ForecastRequest, engine: ForecastEngine = Depends(get_forecast_engine)
):
    valid_for = (
        timedelta(hours=body.valid_for_hours) if body.valid_for_hours else None
    )
    try:
        return await engine.generate_forecast(
            body.timeframe, body.regions, body.equipment_types, valid_for
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.get("", response_model=list[DemandForecast])
async def query_forecasts_route(
    timeframe: Optional[ForecastTimeframe] = None,
    region: Optional[str] = None,
    equipment_type: Optional[EquipmentType] = None,
    valid_only: bool = True,
    limit: int = Query(50, ge=1, le=200),
    engine: ForecastEngine = Depends(get_forecast_engine),
):
    """Stored forecasts, newest first."""
    try:
        return await engine.query_forecasts(
            timeframe, region, equipment_type, valid_only, limit
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/latest", response_model=DemandForecast)
async def latest_forecast_route(
    timeframe: ForecastTimeframe,
    region: str,
    equipment_type: EquipmentType,
    engine: ForecastEngine = Depends(get_forecast_engine),
):
    """Latest still-valid forecast covering the region and equipment type."""
    try:
        forecast = await engine.get_latest_forecast(timeframe, region, equipment_type)
    except MarketIntelError as e:
        raise http_error(e)
    if forecast is None:
        raise HTTPException(404, "No valid forecast")
    return forecast


@router.delete("/cache", status_code=204)
async def invalidate_cache_route(
    timeframe: ForecastTimeframe,
    region: str,
    equipment_type: EquipmentType,
    engine: ForecastEngine = Depends(get_forecast_engine),
):
    try:
        await engine.invalidate_cache(timeframe, region, equipment_type)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/{forecast_id}", response_model=DemandForecast)
async def get_forecast_route(
    forecast_id: str, engine: ForecastEngine = Depends(get_forecast_engine)
):
    forecast = await engine.get_forecast(forecast_id)
    if forecast is None:
        raise HTTPException(404, f"Forecast {forecast_id} not found")
    return forecast


@router.get("/{forecast_id}/regions/{region}", response_model=RegionalDemandForecast)
async def regional_forecast_route(
    forecast_id: str,
    region: str,
    engine: ForecastEngine = Depends(get_forecast_engine),
):
    forecast = await engine.get_forecast(forecast_id)
    if forecast is None:
        raise HTTPException(404, f"Forecast {forecast_id} not found")
    regional = engine.regional_forecast(forecast, region)
    if regional is None:
        raise HTTPException(404, f"Forecast does not cover {region}")
    return regional


@router.get("/{forecast_id}/lanes", response_model=LaneDemandForecast)
async def lane_forecast_route(
    forecast_id: str,
    origin: str,
    destination: str,
    engine: ForecastEngine = Depends(get_forecast_engine),
):
    forecast = await engine.get_forecast(forecast_id)
    if forecast is None:
        raise HTTPException(404, f"Forecast {forecast_id} not found")
    lane = engine.lane_forecast(forecast, origin, destination)
    if lane is None:
        raise HTTPException(404, f"Forecast has no lane {origin} -> {destination}")
    return lane
