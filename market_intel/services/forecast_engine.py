"""
Demand forecasts per timeframe, region and equipment type.

Forecasts are persisted and cached under every (timeframe, region,
equipment) they cover. Reads go cache first, but a cached forecast is
only returned while it is still valid.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from market_intel.db.repositories.forecast_repo import ForecastRepository
from market_intel.errors import ExternalServiceError, InvalidInput
from market_intel.models.enums import (
    ConfidenceLevel,
    DemandLevel,
    EquipmentType,
    EventType,
    ForecastTimeframe,
)
from market_intel.models.forecast import (
    DemandForecast,
    LaneDemandForecast,
    RegionalDemandForecast,
)
from market_intel.models.hotspot import Position
from market_intel.models.market_rate import MarketRate
from market_intel.services.events import publish_safely
from market_intel.services.interfaces import (
    Cache,
    DemandPredictor,
    EventSink,
    ExternalMarketData,
    MarketRateStore,
)
from market_intel.utils.dates import as_utc, utc_now
from market_intel.utils.geo import default_regions, normalize_region, resolve_region

log = logging.getLogger(__name__)

FORECAST_CACHE_PREFIX = "forecast:"
HISTORICAL_LOOKBACK_DAYS = 90

HIGH_CONFIDENCE_THRESHOLD = 0.85
MEDIUM_CONFIDENCE_THRESHOLD = 0.70

FORECAST_FACTORS = {
    "seasonal": 0.3,
    "market_trends": 0.4,
    "historical_patterns": 0.3,
}

HORIZON_DAYS = {
    ForecastTimeframe.NEXT_24_HOURS: 1,
    ForecastTimeframe.NEXT_48_HOURS: 2,
    ForecastTimeframe.NEXT_7_DAYS: 7,
    ForecastTimeframe.NEXT_30_DAYS: 30,
}

# Upper bounds of each demand band on the predictor's demand index
_DEMAND_BANDS = (
    (0.7, DemandLevel.VERY_LOW),
    (0.9, DemandLevel.LOW),
    (1.1, DemandLevel.MEDIUM),
    (1.3, DemandLevel.HIGH),
)


def cache_key(timeframe, region: str, equipment) -> str:
    return (
        f"{FORECAST_CACHE_PREFIX}{ForecastTimeframe(timeframe).value}:"
        f"{region}:{EquipmentType(equipment).value}"
    )


def confidence_level(score: float) -> ConfidenceLevel:
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def demand_level(index: float) -> DemandLevel:
    for upper, level in _DEMAND_BANDS:
        if index < upper:
            return level
    return DemandLevel.VERY_HIGH


def overall_confidence(model_metrics: dict, data_quality: float) -> float:
    """0.4 data quality + 0.3 model performance + 0.3 prediction stability."""
    score = (
        0.4 * data_quality
        + 0.3 * model_metrics.get("performance", 0.0)
        + 0.3 * model_metrics.get("stability", 0.0)
    )
    return round(max(0.0, min(1.0, score)), 4)


def seasonal_factor(samples: list[MarketRate], now: datetime) -> float:
    """Current-month average rate relative to the whole window's average."""
    if not samples:
        return 1.0
    window_avg = sum(s.average_rate for s in samples) / len(samples)
    current = [
        s.average_rate
        for s in samples
        if (as_utc(s.recorded_at).year, as_utc(s.recorded_at).month)
        == (now.year, now.month)
    ]
    if not current or window_avg <= 0:
        return 1.0
    return round((sum(current) / len(current)) / window_avg, 4)


class ForecastEngine:
    def __init__(
        self,
        store: ForecastRepository,
        rates: MarketRateStore,
        market_data: ExternalMarketData,
        predictor: DemandPredictor,
        cache: Cache,
        events: EventSink,
        cache_ttl_seconds: int = 3600,
        validity_days: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.rates = rates
        self.market_data = market_data
        self.predictor = predictor
        self.cache = cache
        self.events = events
        self.cache_ttl_seconds = cache_ttl_seconds
        self.validity_days = validity_days
        self.clock = clock

    async def generate_forecast(
        self,
        timeframe: ForecastTimeframe,
        regions: Optional[list[str]] = None,
        equipment_types: Optional[list[EquipmentType]] = None,
        valid_for: Optional[timedelta] = None,
    ) -> DemandForecast:
        timeframe, regions, equipment = _validate_request(
            timeframe, regions, equipment_types
        )
        if valid_for is not None and valid_for <= timedelta(0):
            raise InvalidInput("valid_for must be positive")
        centers = {}
        for region in regions:
            info = resolve_region(region)
            if info is None:
                raise InvalidInput(f"Unknown region: {region}")
            centers[region] = info

        now = self.clock()
        history = self.rates.find_in_window(
            now - timedelta(days=HISTORICAL_LOOKBACK_DAYS),
            until=now,
            regions=regions,
            equipment_types=equipment,
        )
        lanes = [(o, d) for o in regions for d in regions if o != d]
        trends = await self._lane_trends(lanes, equipment)
        features = _build_features(
            timeframe, regions, equipment, lanes, history, trends, now
        )

        try:
            prediction = await self.predictor.predict(features)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"Demand prediction failed: {exc}") from exc

        regional = []
        for item in prediction.get("regional", []):
            info = centers[item["region"]]
            eq = item["equipment"]
            regional.append(
                RegionalDemandForecast(
                    region=item["region"],
                    center=Position(latitude=info.latitude, longitude=info.longitude),
                    radius_miles=info.radius_miles,
                    demand_levels={e: demand_level(v["demand_index"]) for e, v in eq.items()},
                    expected_load_counts={e: v["load_count"] for e, v in eq.items()},
                    expected_rate_change={e: v["rate_change"] for e, v in eq.items()},
                    confidence_score=round(item["confidence"] * 100, 2),
                )
            )

        lane_forecasts = []
        for item in prediction.get("lanes", []):
            eq = item["equipment"]
            if not any(v["load_count"] for v in eq.values()):
                continue
            info = centers[item["origin"]]
            lane_forecasts.append(
                LaneDemandForecast(
                    origin_region=item["origin"],
                    destination_region=item["destination"],
                    origin_center=Position(
                        latitude=info.latitude, longitude=info.longitude
                    ),
                    demand_levels={e: demand_level(v["demand_index"]) for e, v in eq.items()},
                    expected_load_counts={e: v["load_count"] for e, v in eq.items()},
                    expected_rate_change={e: v["rate_change"] for e, v in eq.items()},
                    confidence_score=round(item["confidence"] * 100, 2),
                )
            )

        score = overall_confidence(
            prediction.get("model_metrics", {}), prediction.get("data_quality", 0.0)
        )
        forecast = DemandForecast(
            forecast_id=f"FC-{uuid.uuid4().hex[:12]}",
            timeframe=timeframe,
            generated_at=now,
            valid_until=now + (valid_for or timedelta(days=self.validity_days)),
            confidence_level=confidence_level(score),
            overall_confidence_score=score,
            regional_forecasts=regional,
            lane_forecasts=lane_forecasts,
            factors=dict(FORECAST_FACTORS),
            model_version=self.predictor.model_version,
        )
        self.store.save(forecast)

        payload = forecast.model_dump_json().encode()
        for region in regions:
            for equip in equipment:
                self.cache.set(
                    cache_key(timeframe, region, equip), payload, self.cache_ttl_seconds
                )
        log.info(
            "Generated %s forecast %s (%s, %.2f)",
            timeframe.value,
            forecast.forecast_id,
            forecast.confidence_level.value,
            score,
        )
        await publish_safely(
            self.events,
            EventType.FORECAST_UPDATED,
            {
                "forecast_id": forecast.forecast_id,
                "timeframe": timeframe.value,
                "regions": regions,
                "equipment_types": [e.value for e in equipment],
                "confidence_level": forecast.confidence_level.value,
                "valid_until": forecast.valid_until.isoformat(),
            },
        )
        return forecast

    async def _lane_trends(
        self, lanes: list[tuple[str, str]], equipment: list[EquipmentType]
    ) -> dict[tuple[str, str, EquipmentType], float]:
        """Trend magnitude per lane; failed lookups count as flat."""
        keys = [(o, d, e) for o, d in lanes for e in equipment]

        async def one(key):
            o, d, e = key
            try:
                trend = await self.market_data.market_trend(
                    o, d, e, HISTORICAL_LOOKBACK_DAYS
                )
                return trend.magnitude
            except ExternalServiceError as exc:
                log.warning("Trend lookup failed for %s -> %s: %s", o, d, exc)
                return 0.0

        magnitudes = await asyncio.gather(*(one(k) for k in keys))
        return dict(zip(keys, magnitudes))

    async def get_latest_forecast(
        self,
        timeframe: ForecastTimeframe,
        region: str,
        equipment_type: EquipmentType,
    ) -> Optional[DemandForecast]:
        timeframe, regions, equipment = _validate_request(
            timeframe, [region], [equipment_type]
        )
        region, equip = regions[0], equipment[0]
        key = cache_key(timeframe, region, equip)
        now = self.clock()

        cached = self.cache.get(key)
        if cached is not None:
            try:
                forecast = DemandForecast.model_validate_json(cached)
            except ValidationError as exc:
                log.warning("Discarding unreadable cache entry %s: %s", key, exc)
                forecast = None
            if forecast is not None and forecast.is_valid(now):
                log.debug("Forecast cache hit %s", key)
                return forecast
            self.cache.delete(key)
            log.info("Purged expired forecast cache entry %s", key)

        stored = self.store.find_latest(timeframe, region, equip)
        if stored is None or not stored.is_valid(now):
            return None
        self.cache.set(key, stored.model_dump_json().encode(), self.cache_ttl_seconds)
        return stored

    async def get_forecast(self, forecast_id: str) -> Optional[DemandForecast]:
        return self.store.get(forecast_id)

    async def latest_forecast(
        self, timeframe: ForecastTimeframe = ForecastTimeframe.NEXT_24_HOURS
    ) -> Optional[DemandForecast]:
        """Most recent still-valid forecast for the timeframe, any coverage."""
        forecast = self.store.find_latest(ForecastTimeframe(timeframe))
        if forecast is None or not forecast.is_valid(self.clock()):
            return None
        return forecast

    async def query_forecasts(
        self,
        timeframe: Optional[ForecastTimeframe] = None,
        region: Optional[str] = None,
        equipment_type: Optional[EquipmentType] = None,
        valid_only: bool = True,
        limit: int = 50,
    ) -> list[DemandForecast]:
        """Stored forecasts, newest first, filtered by any of timeframe,
        covered region and covered equipment type."""
        try:
            timeframe = ForecastTimeframe(timeframe) if timeframe else None
            equipment_type = EquipmentType(equipment_type) if equipment_type else None
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc
        if region is not None and not region.strip():
            raise InvalidInput("region must be a non-empty name")
        if limit < 1:
            raise InvalidInput("limit must be positive")

        forecasts = self.store.find(
            timeframe,
            normalize_region(region) if region else None,
            equipment_type,
            valid_at=self.clock() if valid_only else None,
            limit=limit,
        )
        log.debug("Forecast query matched %d forecasts", len(forecasts))
        return forecasts

    async def invalidate_cache(
        self,
        timeframe: ForecastTimeframe,
        region: str,
        equipment_type: EquipmentType,
    ) -> None:
        timeframe, regions, equipment = _validate_request(
            timeframe, [region], [equipment_type]
        )
        self.cache.delete(cache_key(timeframe, regions[0], equipment[0]))

    def regional_forecast(
        self, forecast: DemandForecast, region: str
    ) -> Optional[RegionalDemandForecast]:
        region = normalize_region(region)
        return next(
            (r for r in forecast.regional_forecasts if r.region == region), None
        )

    def lane_forecast(
        self, forecast: DemandForecast, origin: str, destination: str
    ) -> Optional[LaneDemandForecast]:
        origin = normalize_region(origin)
        destination = normalize_region(destination)
        return next(
            (
                lf
                for lf in forecast.lane_forecasts
                if lf.origin_region == origin and lf.destination_region == destination
            ),
            None,
        )


def _validate_request(timeframe, regions, equipment_types):
    try:
        timeframe = ForecastTimeframe(timeframe)
    except ValueError as exc:
        raise InvalidInput(f"Unknown timeframe: {timeframe}") from exc

    if regions is None:
        regions = default_regions()
    if not regions or any(not r or not r.strip() for r in regions):
        raise InvalidInput("regions must be non-empty names")
    normalized = list(dict.fromkeys(normalize_region(r) for r in regions))

    try:
        equipment = [
            EquipmentType(e) for e in (equipment_types or list(EquipmentType))
        ]
    except ValueError as exc:
        raise InvalidInput(f"Unknown equipment type: {exc}") from exc
    return timeframe, normalized, list(dict.fromkeys(equipment))


def _series(samples: list[MarketRate], now: datetime, trend: float) -> dict:
    return {
        "samples": len(samples),
        "volume": sum(s.sample_size for s in samples),
        "avg_rate": (
            sum(s.average_rate for s in samples) / len(samples) if samples else 0.0
        ),
        "seasonal_factor": seasonal_factor(samples, now),
        "trend": trend,
    }


def _build_features(timeframe, regions, equipment, lanes, history, trends, now) -> dict:
    outbound: dict[tuple[str, EquipmentType], list[MarketRate]] = defaultdict(list)
    by_lane: dict[tuple[str, str, EquipmentType], list[MarketRate]] = defaultdict(list)
    for s in history:
        outbound[(s.origin_region, s.equipment_type)].append(s)
        by_lane[(s.origin_region, s.destination_region, s.equipment_type)].append(s)

    region_features = []
    for region in regions:
        per_equipment = {}
        for e in equipment:
            lane_trends = [trends[(region, d, e)] for d in regions if d != region]
            trend = sum(lane_trends) / len(lane_trends) if lane_trends else 0.0
            per_equipment[e.value] = _series(outbound[(region, e)], now, trend)
        region_features.append({"region": region, "equipment": per_equipment})

    lane_features = [
        {
            "origin": o,
            "destination": d,
            "equipment": {
                e.value: _series(by_lane[(o, d, e)], now, trends[(o, d, e)])
                for e in equipment
            },
        }
        for o, d in lanes
    ]

    return {
        "timeframe": timeframe.value,
        "horizon_days": HORIZON_DAYS[timeframe],
        "lookback_days": HISTORICAL_LOOKBACK_DAYS,
        "regions": region_features,
        "lanes": lane_features,
        "data_points": len(history),
    }
