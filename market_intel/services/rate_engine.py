"""
Dynamic lane pricing.

adjustment = 0.40·1.0 + 0.25·supply_demand + 0.15·trend
             + 0.10·urgency + 0.10·network, clamped to [-0.15, 0.30]
total_rate = base_rate × (1 + adjustment)
"""

import logging
import math
import statistics
from datetime import datetime, timedelta
from typing import Callable, Optional

from market_intel.errors import (
    ExternalServiceError,
    InvalidInput,
    MissingLocation,
)
from market_intel.models.enums import EquipmentType, EventType, RateTrend
from market_intel.models.market_rate import (
    LoadRateRequest,
    MarketRate,
    MarketRateCorrection,
    MarketRateCreate,
    RateCalculationResult,
    RateForecastPoint,
    RateOptions,
    RateTrendAnalysis,
)
from market_intel.services.events import publish_safely
from market_intel.services.interfaces import (
    EventSink,
    ExternalMarketData,
    MarketRateStore,
)
from market_intel.utils.dates import as_utc, utc_now
from market_intel.utils.geo import haversine_miles, normalize_region, resolve_region

log = logging.getLogger(__name__)

# ── Factor weights ──────────────────────────────────
BASE_MARKET_RATE_WEIGHT = 0.40
SUPPLY_DEMAND_WEIGHT = 0.25
HISTORICAL_TRENDS_WEIGHT = 0.15
URGENCY_WEIGHT = 0.10
NETWORK_OPTIMIZATION_WEIGHT = 0.10

MIN_RATE_ADJUSTMENT = -0.15
MAX_RATE_ADJUSTMENT = 0.30

HISTORICAL_DATA_WINDOW_DAYS = 90
MIN_MILEAGE_RATE = 2.0
MAX_MILEAGE_RATE = 5.0

# Sample size recorded for a rate pulled from the external provider
EXTERNAL_SAMPLE_SIZE = 10
THIN_SAMPLE_SIZE = 5

# ── Trend analysis ─────────────────────────────────
TREND_SLOPE_THRESHOLD = 0.005  # fraction of mean rate per day
TREND_FORECAST_DAYS = 7
TREND_FULL_CONFIDENCE_SAMPLES = 30

# ── Special rate rules ─────────────────────────────
HAZARDOUS_SURCHARGE = 100.0
TEMPERATURE_SURCHARGE = 50.0
HEAVY_LOAD_LBS = 40_000
HEAVY_LOAD_SURCHARGE = 75.0
OVERSIZE_LENGTH_FT = 53
OVERSIZE_SURCHARGE = 125.0
HOLIDAY_SURCHARGE = 200.0


def clamp_adjustment(value: float) -> float:
    return max(MIN_RATE_ADJUSTMENT, min(MAX_RATE_ADJUSTMENT, value))


def supply_demand_factor(ratio: float) -> float:
    """ratio < 1 means demand outruns supply and pushes the rate up."""
    if ratio < 1:
        adjustment = 0.1 * (1 - ratio)
    else:
        adjustment = -0.05 * (ratio - 1)
    adjustment = math.copysign(math.log1p(abs(adjustment)), adjustment)
    return clamp_adjustment(adjustment)


def historical_trend_factor(rates: list[float]) -> float:
    """Half the relative change from the oldest to the newest sample."""
    if len(rates) <= 2 or rates[0] <= 0:
        return 0.0
    return clamp_adjustment(0.5 * (rates[-1] - rates[0]) / rates[0])


def urgency_factor(pickup_window_hours: float) -> float:
    if pickup_window_hours < 2:
        urgency = 0.1
    elif pickup_window_hours < 4:
        urgency = 0.05
    else:
        urgency = 0.0
    return urgency * 0.2


def network_factor(is_backhaul: bool) -> float:
    return 0.05 * 0.3 if is_backhaul else 0.0


def mileage_rate(total_rate: float, distance_miles: float) -> float:
    if distance_miles <= 0:
        raise InvalidInput("distance_miles must be positive")
    per_mile = total_rate / distance_miles
    return max(MIN_MILEAGE_RATE, min(MAX_MILEAGE_RATE, per_mile))


def is_holiday_window(when: datetime) -> bool:
    return (when.month == 12 and when.day >= 20) or (
        when.month == 1 and when.day <= 5
    )


def special_surcharges(options: RateOptions, when: datetime) -> dict[str, float]:
    surcharges: dict[str, float] = {}
    if options.is_hazardous:
        surcharges["hazardous"] = HAZARDOUS_SURCHARGE
    if options.temperature_controlled:
        surcharges["temperature_controlled"] = TEMPERATURE_SURCHARGE
    if options.weight_lbs and options.weight_lbs > HEAVY_LOAD_LBS:
        surcharges["heavy_load"] = HEAVY_LOAD_SURCHARGE
    if options.length_ft and options.length_ft > OVERSIZE_LENGTH_FT:
        surcharges["oversize"] = OVERSIZE_SURCHARGE
    if is_holiday_window(when):
        surcharges["holiday"] = HOLIDAY_SURCHARGE
    return surcharges


class RateEngine:
    def __init__(
        self,
        store: MarketRateStore,
        market_data: ExternalMarketData,
        events: EventSink,
        default_base_rate: float = 1000.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.market_data = market_data
        self.events = events
        self.default_base_rate = default_base_rate
        self.clock = clock

    # ── Pricing ──────────────────────────────────────

    async def calculate_rate(
        self,
        origin: str,
        destination: str,
        equipment_type: EquipmentType,
        options: Optional[RateOptions] = None,
    ) -> RateCalculationResult:
        options = options or RateOptions()
        origin, destination, equipment_type = _validate_lane(
            origin, destination, equipment_type
        )
        distance = _distance(origin, destination, options)
        now = self.clock()

        base_rate, thin_base = await self._base_rate(
            origin, destination, equipment_type, now
        )

        ratio, weak_supply = await self._supply_demand(
            origin, destination, equipment_type
        )
        sd = supply_demand_factor(ratio)

        history = self.store.find_historical(
            origin,
            destination,
            equipment_type,
            now - timedelta(days=HISTORICAL_DATA_WINDOW_DAYS),
        )
        trend = historical_trend_factor([r.average_rate for r in history])
        weak_trend = len(history) <= 2

        urgency = urgency_factor(options.pickup_window_hours)

        backhaul = options.is_backhaul
        if backhaul is None:
            backhaul = self._is_backhaul(origin, destination, equipment_type)
        network = network_factor(backhaul)

        factors = {
            "base_rate": BASE_MARKET_RATE_WEIGHT * 1.0,
            "supply_demand": SUPPLY_DEMAND_WEIGHT * sd,
            "historical_trend": HISTORICAL_TRENDS_WEIGHT * trend,
            "urgency": URGENCY_WEIGHT * urgency,
            "network_optimization": NETWORK_OPTIMIZATION_WEIGHT * network,
        }
        adjustment = clamp_adjustment(sum(factors.values()))
        total_rate = base_rate * (1 + adjustment)

        confidence = 1.0
        if thin_base:
            confidence -= 0.1
        if weak_supply:
            confidence -= 0.05
        if weak_trend:
            confidence -= 0.05
        confidence = max(0.0, min(1.0, confidence))

        surcharges = special_surcharges(options, now)
        result = RateCalculationResult(
            total_rate=round(total_rate, 2),
            mileage_rate=round(mileage_rate(total_rate, distance), 4),
            base_rate=base_rate,
            adjustment_factor=round(adjustment, 6),
            factors={k: round(v, 6) for k, v in factors.items()},
            confidence=round(confidence, 4),
            calculated_at=now,
            surcharges=surcharges,
            quoted_rate=round(total_rate + sum(surcharges.values()), 2),
        )
        log.debug(
            "Rate %s -> %s (%s): base=%.2f factors=%s",
            origin,
            destination,
            equipment_type.value,
            base_rate,
            result.factors,
        )
        return result

    async def calculate_load_rate(self, load: LoadRateRequest) -> RateCalculationResult:
        pickup = _find_location(load, "pickup")
        delivery = _find_location(load, "delivery")
        if pickup is None or delivery is None:
            raise MissingLocation(
                f"Load {load.load_id} is missing its pickup or delivery location"
            )

        window = (load.pickup_latest - load.pickup_earliest).total_seconds() / 3600
        options = RateOptions(
            distance_miles=haversine_miles(
                pickup.latitude,
                pickup.longitude,
                delivery.latitude,
                delivery.longitude,
            ),
            origin_latitude=pickup.latitude,
            origin_longitude=pickup.longitude,
            destination_latitude=delivery.latitude,
            destination_longitude=delivery.longitude,
            pickup_window_hours=window,
            weight_lbs=load.weight_lbs,
            length_ft=load.length_ft,
            is_hazardous=load.is_hazardous,
            temperature_controlled=load.temperature_controlled,
        )
        result = await self.calculate_rate(
            f"{pickup.city}, {pickup.state}",
            f"{delivery.city}, {delivery.state}",
            load.equipment_type,
            options,
        )
        log.info("Priced load %s at %.2f", load.load_id, result.total_rate)
        return result

    async def _base_rate(
        self,
        origin: str,
        destination: str,
        equipment: EquipmentType,
        now: datetime,
    ) -> tuple[float, bool]:
        """Returns (base_rate, thin_signal)."""
        latest = self.store.find_latest(origin, destination, equipment)
        if latest is not None:
            if latest.average_rate <= 0:
                log.warning(
                    "Stored rate %s is not positive, using default base",
                    latest.rate_id,
                )
                return self.default_base_rate, True
            return latest.average_rate, latest.sample_size < THIN_SAMPLE_SIZE

        try:
            current = await self.market_data.current_rate(
                origin, destination, equipment
            )
        except ExternalServiceError as exc:
            log.warning(
                "Rate lookup failed for %s -> %s: %s", origin, destination, exc
            )
            return self.default_base_rate, True

        if current.rate <= 0:
            return self.default_base_rate, True

        try:
            saved = self.store.save(
                {
                    "origin_region": origin,
                    "destination_region": destination,
                    "equipment_type": equipment.value,
                    "average_rate": current.rate,
                    "min_rate": current.min,
                    "max_rate": current.max,
                    "sample_size": EXTERNAL_SAMPLE_SIZE,
                    "recorded_at": now,
                }
            )
        except InvalidInput as exc:
            # A concurrent quote stored a newer sample for the lane first
            log.info(
                "Keeping looked-up rate for %s -> %s unsaved: %s",
                origin,
                destination,
                exc,
            )
            return current.rate, False
        await publish_safely(
            self.events,
            EventType.MARKET_RATE_UPDATED,
            saved.model_dump(mode="json"),
        )
        return current.rate, False

    async def _supply_demand(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> tuple[float, bool]:
        """Returns (ratio, weak_signal). Neutral 1.0 when unavailable."""
        try:
            sd = await self.market_data.supply_demand_ratio(
                origin, destination, equipment
            )
        except ExternalServiceError as exc:
            log.warning("Supply/demand lookup failed: %s", exc)
            return 1.0, True
        if sd.confidence < 0.5:
            return 1.0, True
        return sd.ratio, False

    def _is_backhaul(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> bool:
        """A lane is a backhaul when its reverse lane carries more volume."""
        forward = self.store.find_latest(origin, destination, equipment)
        reverse = self.store.find_latest(destination, origin, equipment)
        if reverse is None:
            return False
        forward_size = forward.sample_size if forward else 0
        return reverse.sample_size > forward_size

    # ── Trends ───────────────────────────────────────

    async def analyze_rate_trends(
        self,
        origin: str,
        destination: str,
        equipment_type: EquipmentType,
        days: int = 30,
    ) -> RateTrendAnalysis:
        if days <= 0:
            raise InvalidInput("days must be positive")
        origin, destination, equipment_type = _validate_lane(
            origin, destination, equipment_type
        )
        now = self.clock()
        samples = self.store.find_historical(
            origin, destination, equipment_type, now - timedelta(days=days)
        )
        if not samples:
            return RateTrendAnalysis()

        rates = [s.average_rate for s in samples]
        mean = statistics.fmean(rates)
        volatility = statistics.pstdev(rates) / mean if mean > 0 else 0.0

        origin_time = as_utc(samples[0].recorded_at)
        xs = [
            (as_utc(s.recorded_at) - origin_time).total_seconds() / 86400
            for s in samples
        ]
        slope, intercept = _least_squares(xs, rates)
        relative_slope = slope / mean if mean > 0 else 0.0
        if relative_slope > TREND_SLOPE_THRESHOLD:
            trend = RateTrend.RISING
        elif relative_slope < -TREND_SLOPE_THRESHOLD:
            trend = RateTrend.FALLING
        else:
            trend = RateTrend.STABLE

        today = (now - origin_time).total_seconds() / 86400
        forecast = [
            RateForecastPoint(
                date=now + timedelta(days=k),
                prediction=round(max(0.0, intercept + slope * (today + k)), 2),
            )
            for k in range(1, TREND_FORECAST_DAYS + 1)
        ]

        coverage = min(1.0, len(samples) / TREND_FULL_CONFIDENCE_SAMPLES)
        confidence = coverage * max(0.0, 1.0 - volatility)

        return RateTrendAnalysis(
            average_rate=round(mean, 2),
            min_rate=min(s.min_rate for s in samples),
            max_rate=max(s.max_rate for s in samples),
            volatility=round(volatility, 4),
            trend=trend,
            forecast=forecast,
            confidence=round(confidence, 4),
            data_points=len(samples),
        )

    # ── Market rate maintenance ─────────────────────

    async def record_market_rate(self, rate: MarketRateCreate) -> MarketRate:
        origin, destination, equipment = _validate_lane(
            rate.origin_region, rate.destination_region, rate.equipment_type
        )
        if rate.average_rate <= 0:
            raise InvalidInput("average_rate must be positive")
        min_rate = rate.min_rate if rate.min_rate is not None else rate.average_rate
        max_rate = rate.max_rate if rate.max_rate is not None else rate.average_rate
        if not min_rate <= rate.average_rate <= max_rate:
            raise InvalidInput("Expected min_rate <= average_rate <= max_rate")

        saved = self.store.save(
            {
                "origin_region": origin,
                "destination_region": destination,
                "equipment_type": equipment.value,
                "average_rate": rate.average_rate,
                "min_rate": min_rate,
                "max_rate": max_rate,
                "sample_size": rate.sample_size,
                "recorded_at": rate.recorded_at or self.clock(),
            }
        )
        log.info(
            "Recorded market rate %s for %s -> %s", saved.rate_id, origin, destination
        )
        await publish_safely(
            self.events, EventType.MARKET_RATE_UPDATED, saved.model_dump(mode="json")
        )
        return saved

    async def correct_market_rate(
        self, rate_id: str, correction: MarketRateCorrection
    ) -> MarketRate:
        updated = self.store.update(rate_id, correction.model_dump(exclude_none=True))
        if not updated.min_rate <= updated.average_rate <= updated.max_rate:
            log.warning("Correction left rate %s with inconsistent bounds", rate_id)
        await publish_safely(
            self.events, EventType.MARKET_RATE_UPDATED, updated.model_dump(mode="json")
        )
        return updated

    async def get_market_rate(
        self, origin: str, destination: str, equipment_type: EquipmentType
    ) -> Optional[MarketRate]:
        origin, destination, equipment_type = _validate_lane(
            origin, destination, equipment_type
        )
        return self.store.find_latest(origin, destination, equipment_type)

    async def get_historical_rates(
        self,
        origin: str,
        destination: str,
        equipment_type: EquipmentType,
        days: int = HISTORICAL_DATA_WINDOW_DAYS,
    ) -> list[MarketRate]:
        if days <= 0:
            raise InvalidInput("days must be positive")
        origin, destination, equipment_type = _validate_lane(
            origin, destination, equipment_type
        )
        return self.store.find_historical(
            origin,
            destination,
            equipment_type,
            self.clock() - timedelta(days=days),
        )


def _validate_lane(
    origin: str, destination: str, equipment_type
) -> tuple[str, str, EquipmentType]:
    if not origin or not origin.strip():
        raise InvalidInput("origin is required")
    if not destination or not destination.strip():
        raise InvalidInput("destination is required")
    try:
        equipment = EquipmentType(equipment_type)
    except ValueError as exc:
        raise InvalidInput(f"Unknown equipment type: {equipment_type}") from exc
    return normalize_region(origin), normalize_region(destination), equipment


def _distance(origin: str, destination: str, options: RateOptions) -> float:
    if options.distance_miles is not None:
        if options.distance_miles <= 0:
            raise InvalidInput("distance_miles must be positive")
        return options.distance_miles

    coords = (
        options.origin_latitude,
        options.origin_longitude,
        options.destination_latitude,
        options.destination_longitude,
    )
    if all(c is not None for c in coords):
        distance = haversine_miles(*coords)
    else:
        o = resolve_region(origin)
        d = resolve_region(destination)
        if o is None or d is None:
            raise InvalidInput(
                "Cannot derive distance: give distance_miles or coordinates"
            )
        distance = haversine_miles(o.latitude, o.longitude, d.latitude, d.longitude)

    if distance <= 0:
        raise InvalidInput("Origin and destination resolve to the same point")
    return distance


def _find_location(load: LoadRateRequest, kind: str):
    for loc in load.locations:
        if loc.location_type.lower() == kind:
            return loc
    return None


def _least_squares(xs: list[float], ys: list[float]) -> tuple[float, float]:
    n = len(xs)
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    sxx = sum((x - mean_x) ** 2 for x in xs)
    if sxx == 0:
        return 0.0, mean_y
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    slope = sxy / sxx
    return slope, mean_y - slope * mean_x
