"""
Hotspot detection: five detectors turn forecasts and live market signals
into typed, severity-ranked zones carrying a driver bonus. Overlapping
zones of the same type are merged before they are stored.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from market_intel.db.repositories.hotspot_repo import HotspotRepository
from market_intel.errors import ExternalServiceError
from market_intel.models.enums import (
    DemandLevel,
    EquipmentType,
    EventType,
    HotspotSeverity,
    HotspotType,
    WeatherImpactLevel,
)
from market_intel.models.forecast import DemandForecast
from market_intel.models.hotspot import Hotspot, HotspotCandidate, Position
from market_intel.services.events import publish_safely
from market_intel.services.interfaces import (
    EventSink,
    ExternalMarketData,
    MarketRateStore,
)
from market_intel.utils.dates import as_utc, utc_now
from market_intel.utils.geo import (
    default_regions,
    haversine_miles,
    normalize_region,
    resolve_region,
)

log = logging.getLogger(__name__)

# ── Detection thresholds ───────────────────────────
DEMAND_CONFIDENCE_THRESHOLD = 0.7
SUPPLY_SHORTAGE_THRESHOLD = 0.6
RATE_OPPORTUNITY_THRESHOLD = 0.15
RATE_HISTORY_DAYS = 30
REPOSITIONING_IMBALANCE = 2.0
WEATHER_CONFIDENCE = 0.9

# ── Bonus ──────────────────────────────────────────
DEFAULT_BONUS_AMOUNT = 100.0
MAX_BONUS_AMOUNT = 500.0
MIN_BONUS_RATE_SHARE = 0.05

SEVERITY_MULTIPLIER = {
    HotspotSeverity.CRITICAL: 1.5,
    HotspotSeverity.HIGH: 1.2,
    HotspotSeverity.MEDIUM: 1.1,
    HotspotSeverity.LOW: 1.05,
}

TYPE_MULTIPLIER = {
    HotspotType.DEMAND_SURGE: 1.1,
    HotspotType.SUPPLY_SHORTAGE: 1.2,
    HotspotType.RATE_OPPORTUNITY: 0.9,
    HotspotType.REPOSITIONING_NEED: 1.15,
    HotspotType.WEATHER_IMPACT: 1.3,
}

DEMAND_LEVEL_SCORE = {
    DemandLevel.VERY_LOW: 0.0,
    DemandLevel.LOW: 0.25,
    DemandLevel.MEDIUM: 0.5,
    DemandLevel.HIGH: 0.75,
    DemandLevel.VERY_HIGH: 1.0,
}

_SURGE_LEVELS = {DemandLevel.HIGH, DemandLevel.VERY_HIGH}


def calculate_severity(
    demand_score: float, confidence_score: float, supply_demand_ratio: float
) -> HotspotSeverity:
    composite = (
        0.5 * demand_score + 0.3 * confidence_score - 0.2 * supply_demand_ratio
    )
    if composite >= 0.8:
        return HotspotSeverity.CRITICAL
    if composite >= 0.6:
        return HotspotSeverity.HIGH
    if composite >= 0.4:
        return HotspotSeverity.MEDIUM
    return HotspotSeverity.LOW


def calculate_bonus(
    severity: HotspotSeverity, hotspot_type: HotspotType, base_rate: float = 0.0
) -> float:
    bonus = (
        DEFAULT_BONUS_AMOUNT
        * SEVERITY_MULTIPLIER[severity]
        * TYPE_MULTIPLIER[hotspot_type]
    )
    if base_rate > 0:
        bonus = max(bonus, base_rate * MIN_BONUS_RATE_SHARE)
    return round(min(bonus, MAX_BONUS_AMOUNT), 2)


def merge_overlapping(candidates: list[HotspotCandidate]) -> list[HotspotCandidate]:
    """
    Within each type, keep the strongest candidate of any overlapping set.

    Candidates are visited by severity, then confidence, then bonus; one
    is dropped when its circle overlaps a circle already kept.
    """
    by_type: dict[HotspotType, list[HotspotCandidate]] = {}
    for c in candidates:
        by_type.setdefault(c.type, []).append(c)

    merged: list[HotspotCandidate] = []
    for group in by_type.values():
        group.sort(
            key=lambda c: (c.severity.rank, c.confidence_score, c.bonus_amount),
            reverse=True,
        )
        kept: list[HotspotCandidate] = []
        for c in group:
            if not any(c.overlaps(k) for k in kept):
                kept.append(c)
        merged.extend(kept)
    return merged


def _candidate(
    name: str,
    hotspot_type: HotspotType,
    severity: HotspotSeverity,
    center: Position,
    radius_miles: float,
    confidence: float,
    region: str,
    base_rate: float = 0.0,
    **extra,
) -> HotspotCandidate:
    return HotspotCandidate(
        name=name,
        type=hotspot_type,
        severity=severity,
        center=center,
        radius_miles=radius_miles,
        confidence_score=max(0.0, min(1.0, confidence)),
        bonus_amount=calculate_bonus(severity, hotspot_type, base_rate),
        region=region,
        **extra,
    )


class HotspotEngine:
    def __init__(
        self,
        store: HotspotRepository,
        rates: MarketRateStore,
        market_data: ExternalMarketData,
        events: EventSink,
        radius_miles: float = 50.0,
        validity_hours: int = 48,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.rates = rates
        self.market_data = market_data
        self.events = events
        self.radius_miles = radius_miles
        self.validity_hours = validity_hours
        self.clock = clock

    # ── Detection ────────────────────────────────────

    async def detect_hotspots(
        self,
        forecast: Optional[DemandForecast] = None,
        regions: Optional[list[str]] = None,
        equipment_types: Optional[list[EquipmentType]] = None,
    ) -> list[Hotspot]:
        regions = _unique([normalize_region(r) for r in regions or default_regions()])
        equipment = [EquipmentType(e) for e in equipment_types or list(EquipmentType)]

        detectors: list[tuple[str, Awaitable[list[HotspotCandidate]]]] = [
            ("supply_shortage", self.detect_supply_shortage(regions, equipment)),
            ("rate_opportunity", self.detect_rate_opportunity(regions, equipment)),
            ("weather_impact", self.detect_weather_impact(regions)),
        ]
        if forecast is not None:
            detectors += [
                ("demand_surge", self.detect_demand_surge(forecast)),
                ("repositioning_need", self.detect_repositioning_need(forecast)),
            ]

        results = await asyncio.gather(
            *(self._run_detector(name, coro) for name, coro in detectors)
        )
        candidates = [c for batch in results for c in batch]
        merged = merge_overlapping(candidates)
        log.info(
            "Hotspot scan: %d candidates, %d after merge",
            len(candidates),
            len(merged),
        )
        if not merged:
            return []

        now = self.clock()
        rows = []
        for c in merged:
            valid_from = c.valid_from or now
            valid_until = c.valid_until or valid_from + timedelta(
                hours=self.validity_hours
            )
            rows.append(
                {
                    **c.model_dump(mode="json"),
                    "center": c.center.model_dump(),
                    "detected_at": now,
                    "valid_from": valid_from,
                    "valid_until": valid_until,
                }
            )
        hotspots = self.store.save_many(rows)
        for h in hotspots:
            await publish_safely(
                self.events, EventType.HOTSPOT_IDENTIFIED, h.model_dump(mode="json")
            )
        return hotspots

    async def _run_detector(
        self, name: str, detection: Awaitable[list[HotspotCandidate]]
    ) -> list[HotspotCandidate]:
        try:
            return await detection
        except Exception as exc:
            log.warning("Hotspot detector %s failed: %s", name, exc)
            return []

    async def detect_demand_surge(
        self, forecast: DemandForecast
    ) -> list[HotspotCandidate]:
        candidates = []
        for rf in forecast.regional_forecasts:
            surging = {
                e: lvl for e, lvl in rf.demand_levels.items() if lvl in _SURGE_LEVELS
            }
            confidence = rf.confidence_score / 100
            if not surging or confidence < DEMAND_CONFIDENCE_THRESHOLD:
                continue
            equip, level = max(
                surging.items(), key=lambda kv: DEMAND_LEVEL_SCORE[kv[1]]
            )
            ratio = rf.supply_demand_ratio
            if ratio is None:
                ratio = await self._live_ratio(rf.region, equip)
            severity = calculate_severity(
                DEMAND_LEVEL_SCORE[level], confidence, ratio
            )
            candidates.append(
                _candidate(
                    f"Demand Surge in {rf.region}",
                    HotspotType.DEMAND_SURGE,
                    severity,
                    rf.center,
                    rf.radius_miles,
                    confidence,
                    rf.region,
                    equipment_type=equip,
                    factors={
                        "demand_score": DEMAND_LEVEL_SCORE[level],
                        "supply_demand_ratio": ratio,
                    },
                )
            )
        return candidates

    async def _live_ratio(self, region: str, equipment: EquipmentType) -> float:
        try:
            sd = await self.market_data.supply_demand_ratio(region, region, equipment)
        except ExternalServiceError as exc:
            log.warning("No live ratio for %s surge, assuming balance: %s", region, exc)
            return 1.0
        return sd.ratio

    async def detect_supply_shortage(
        self, regions: list[str], equipment_types: list[EquipmentType]
    ) -> list[HotspotCandidate]:
        candidates = []
        for region in regions:
            info = resolve_region(region)
            if info is None:
                log.debug("Skipping unknown region %s", region)
                continue
            for equip in equipment_types:
                sd = await self.market_data.supply_demand_ratio(region, region, equip)
                if sd.ratio >= SUPPLY_SHORTAGE_THRESHOLD:
                    continue
                demand = max(0.0, min(1.0, 1.0 - sd.ratio / 2))
                severity = calculate_severity(demand, sd.confidence, sd.ratio)
                candidates.append(
                    _candidate(
                        f"Supply Shortage in {region} for {equip.value}",
                        HotspotType.SUPPLY_SHORTAGE,
                        severity,
                        Position(latitude=info.latitude, longitude=info.longitude),
                        self.radius_miles,
                        sd.confidence,
                        region,
                        equipment_type=equip,
                        factors={"supply_demand_ratio": sd.ratio},
                    )
                )
        return candidates

    async def detect_rate_opportunity(
        self, regions: list[str], equipment_types: list[EquipmentType]
    ) -> list[HotspotCandidate]:
        since = self.clock() - timedelta(days=RATE_HISTORY_DAYS)
        candidates = []
        for origin in regions:
            info = resolve_region(origin)
            if info is None:
                continue
            for destination in regions:
                if origin == destination:
                    continue
                for equip in equipment_types:
                    history = self.rates.find_historical(
                        origin, destination, equip, since
                    )
                    if not history:
                        continue
                    historical = _weighted_average(history)
                    current = await self.market_data.current_rate(
                        origin, destination, equip
                    )
                    if historical <= 0 or current.rate <= historical * (
                        1 + RATE_OPPORTUNITY_THRESHOLD
                    ):
                        continue
                    premium = current.rate / historical - 1
                    severity = calculate_severity(
                        min(1.0, 0.5 + premium),
                        current.confidence,
                        historical / current.rate,
                    )
                    candidates.append(
                        _candidate(
                            f"Rate Opportunity: {origin} -> {destination} "
                            f"for {equip.value}",
                            HotspotType.RATE_OPPORTUNITY,
                            severity,
                            Position(
                                latitude=info.latitude, longitude=info.longitude
                            ),
                            self.radius_miles,
                            current.confidence,
                            origin,
                            base_rate=current.rate,
                            equipment_type=equip,
                            factors={
                                "current_rate": current.rate,
                                "historical_average": round(historical, 2),
                                "premium": round(premium, 4),
                            },
                        )
                    )
        return candidates

    async def detect_repositioning_need(
        self, forecast: DemandForecast
    ) -> list[HotspotCandidate]:
        lanes = {
            (lf.origin_region, lf.destination_region): lf
            for lf in forecast.lane_forecasts
        }
        candidates = []
        for (origin, destination), lf in lanes.items():
            outbound = lf.total_expected_loads
            reverse = lanes.get((destination, origin))
            inbound = reverse.total_expected_loads if reverse else 0
            if outbound <= REPOSITIONING_IMBALANCE * inbound or outbound == 0:
                continue
            confidence = lf.confidence_score / 100
            ratio = inbound / outbound
            severity = calculate_severity(
                outbound / (outbound + inbound), confidence, ratio
            )
            candidates.append(
                _candidate(
                    f"Repositioning Need in {origin}",
                    HotspotType.REPOSITIONING_NEED,
                    severity,
                    lf.origin_center,
                    self.radius_miles,
                    confidence,
                    origin,
                    factors={
                        "outbound_loads": float(outbound),
                        "inbound_loads": float(inbound),
                    },
                )
            )
        return candidates

    async def detect_weather_impact(
        self, regions: list[str]
    ) -> list[HotspotCandidate]:
        impacts = await self.market_data.weather_impacts(regions)
        now = self.clock()
        candidates = []
        for impact in impacts:
            if impact.impact == WeatherImpactLevel.NONE:
                continue
            if as_utc(impact.end_date) < now:
                log.debug("Skipping weather impact in %s that already ended", impact.region)
                continue
            if impact.latitude is not None and impact.longitude is not None:
                center = Position(latitude=impact.latitude, longitude=impact.longitude)
            else:
                info = resolve_region(impact.region)
                if info is None:
                    log.debug("No center for weather region %s", impact.region)
                    continue
                center = Position(latitude=info.latitude, longitude=info.longitude)
            severity = (
                HotspotSeverity.CRITICAL
                if impact.impact == WeatherImpactLevel.SEVERE
                else HotspotSeverity.HIGH
            )
            candidates.append(
                _candidate(
                    f"Weather Impact in {impact.region}",
                    HotspotType.WEATHER_IMPACT,
                    severity,
                    center,
                    self.radius_miles,
                    WEATHER_CONFIDENCE,
                    normalize_region(impact.region),
                    valid_from=as_utc(impact.start_date),
                    valid_until=as_utc(impact.end_date),
                )
            )
        return candidates

    # ── Queries and maintenance ─────────────────────

    async def deactivate_expired(self) -> int:
        count = self.store.deactivate_expired(self.clock())
        if count:
            log.info("Deactivated %d expired hotspots", count)
        return count

    async def deactivate_hotspot(self, hotspot_id: str) -> Optional[Hotspot]:
        if not self.store.deactivate(hotspot_id):
            return None
        return self.store.get(hotspot_id)

    async def get_hotspot(self, hotspot_id: str) -> Optional[Hotspot]:
        return self.store.get(hotspot_id)

    async def get_active_hotspots(self) -> list[Hotspot]:
        return self.store.find_active(self.clock())

    async def get_hotspots_by_type(
        self, hotspot_type: HotspotType, active_only: bool = True
    ) -> list[Hotspot]:
        return self.store.find_by_type(
            hotspot_type, self.clock() if active_only else None
        )

    async def get_hotspots_by_region(
        self, region: str, active_only: bool = True
    ) -> list[Hotspot]:
        return self.store.find_by_region(
            normalize_region(region), self.clock() if active_only else None
        )

    async def get_hotspots_by_severity(
        self, severity: HotspotSeverity, active_only: bool = True
    ) -> list[Hotspot]:
        return self.store.find_by_severity(
            severity, self.clock() if active_only else None
        )

    async def get_hotspots_by_equipment_type(
        self, equipment_type: EquipmentType, active_only: bool = True
    ) -> list[Hotspot]:
        """Weather zones carry no equipment type and never match."""
        return self.store.find_by_equipment_type(
            equipment_type, self.clock() if active_only else None
        )

    async def get_hotspots_near(
        self,
        latitude: float,
        longitude: float,
        radius_miles: float,
        active_only: bool = True,
    ) -> list[Hotspot]:
        """Hotspots whose center lies within ``radius_miles`` of the point."""
        pool = (
            self.store.find_active(self.clock())
            if active_only
            else self.store.find_all()
        )
        return [
            h
            for h in pool
            if haversine_miles(
                h.center.latitude, h.center.longitude, latitude, longitude
            )
            <= radius_miles
        ]

    async def hotspots_containing(
        self, latitude: float, longitude: float
    ) -> list[Hotspot]:
        return [
            h
            for h in self.store.find_active(self.clock())
            if h.contains(latitude, longitude)
        ]


def _weighted_average(history) -> float:
    total_weight = sum(r.sample_size for r in history)
    if total_weight <= 0:
        return sum(r.average_rate for r in history) / len(history)
    return sum(r.average_rate * r.sample_size for r in history) / total_weight


def _unique(items: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)
