from fastapi import APIRouter, Depends, HTTPException, Query

from market_intel.errors import MarketIntelError
from market_intel.models.enums import EquipmentType
from market_intel.models.market_rate import (
    LoadRateRequest,
    MarketRate,
    MarketRateCorrection,
    MarketRateCreate,
    RateCalculationResult,
    RateRequest,
    RateTrendAnalysis,
)
from market_intel.routes._deps import get_rate_engine, http_error
from market_intel.services.rate_engine import RateEngine

router = APIRouter(prefix="/api/rates", tags=["Rates"])


@router.post("/calculate", response_model=RateCalculationResult)
async def calculate_rate_route(
    body: RateRequest, engine: RateEngine = Depends(get_rate_engine)
):
    """Dynamic rate for a lane. Surcharges are reported separately in quoted_rate."""
    try:
        return await engine.calculate_rate(
            body.origin, body.destination, body.equipment_type, body.options
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/loads", response_model=RateCalculationResult)
async def calculate_load_rate_route(
    body: LoadRateRequest, engine: RateEngine = Depends(get_rate_engine)
):
    """Price a load from its pickup and delivery locations."""
    try:
        return await engine.calculate_load_rate(body)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/trends", response_model=RateTrendAnalysis)
async def rate_trends_route(
    origin: str,
    destination: str,
    equipment_type: EquipmentType,
    days: int = Query(30, ge=1, le=365),
    engine: RateEngine = Depends(get_rate_engine),
):
    try:
        return await engine.analyze_rate_trends(
            origin, destination, equipment_type, days
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/market", response_model=MarketRate)
async def get_market_rate_route(
    origin: str,
    destination: str,
    equipment_type: EquipmentType,
    engine: RateEngine = Depends(get_rate_engine),
):
    """Latest recorded sample for the lane."""
    try:
        rate = await engine.get_market_rate(origin, destination, equipment_type)
    except MarketIntelError as e:
        raise http_error(e)
    if rate is None:
        raise HTTPException(404, f"No market rate for {origin} -> {destination}")
    return rate


@router.get("/market/history", response_model=list[MarketRate])
async def get_historical_rates_route(
    origin: str,
    destination: str,
    equipment_type: EquipmentType,
    days: int = Query(90, ge=1, le=365),
    engine: RateEngine = Depends(get_rate_engine),
):
    try:
        return await engine.get_historical_rates(
            origin, destination, equipment_type, days
        )
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/market", response_model=MarketRate, status_code=201)
async def record_market_rate_route(
    body: MarketRateCreate, engine: RateEngine = Depends(get_rate_engine)
):
    try:
        return await engine.record_market_rate(body)
    except MarketIntelError as e:
        raise http_error(e)


@router.patch("/market/{rate_id}", response_model=MarketRate)
async def correct_market_rate_route(
    rate_id: str,
    body: MarketRateCorrection,
    engine: RateEngine = Depends(get_rate_engine),
):
    """Corrective update. Lane and recorded_at cannot change."""
    try:
        return await engine.correct_market_rate(rate_id, body)
    except MarketIntelError as e:
        raise http_error(e)
