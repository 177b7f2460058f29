"""
External market data. Uses the live API when MARKET_DATA_URL is set,
otherwise answers from a deterministic mock so the engines run offline.
"""

import hashlib
import logging
from typing import Optional

import httpx
from cachetools import TTLCache

from market_intel.models.enums import EquipmentType, RateTrend
from market_intel.models.market_data import (
    CurrentRate,
    MarketTrend,
    SupplyDemand,
    WeatherImpact,
)
from market_intel.utils.geo import haversine_miles, resolve_region
from market_intel.utils.http import get_json

log = logging.getLogger(__name__)

_EQUIPMENT_MULTIPLIER = {
    EquipmentType.DRY_VAN: 1.0,
    EquipmentType.REEFER: 1.2,
    EquipmentType.FLATBED: 1.15,
    EquipmentType.STEP_DECK: 1.25,
    EquipmentType.POWER_ONLY: 0.8,
}

def _unit(*parts: str) -> float:
    """Stable pseudo-random value in [0, 1) for the given key parts."""
    digest = hashlib.sha256("|".join(parts).encode()).digest()
    return int.from_bytes(digest[:4], "big") / 2**32


def _lane_miles(origin: str, destination: str) -> float:
    o = resolve_region(origin)
    d = resolve_region(destination)
    if not o or not d:
        return 500.0
    return max(haversine_miles(o.latitude, o.longitude, d.latitude, d.longitude), 50.0)


class MarketDataClient:
    def __init__(
        self,
        base_url: str = "",
        api_key: str = "",
        timeout: float = 5.0,
        ratio_cache: Optional[TTLCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        # Short-lived; hotspot scans ask for the same ratios repeatedly
        self.ratio_cache = (
            ratio_cache if ratio_cache is not None else TTLCache(maxsize=1024, ttl=300)
        )

    @property
    def mock_mode(self) -> bool:
        return not self.base_url

    async def _get(self, path: str, params: dict):
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
            return await get_json(client, f"{self.base_url}{path}", params)

    async def current_rate(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> CurrentRate:
        equipment = EquipmentType(equipment)
        if self.mock_mode:
            log.debug("Mock current rate for %s -> %s", origin, destination)
            return _mock_rate(origin, destination, equipment)
        data = await self._get(
            "/rates/current",
            {"origin": origin, "destination": destination, "equipment": equipment.value},
        )
        return CurrentRate(
            rate=float(data["rate"]),
            min=float(data.get("min", data["rate"])),
            max=float(data.get("max", data["rate"])),
            confidence=float(data.get("confidence", 0.8)),
        )

    async def supply_demand_ratio(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> SupplyDemand:
        equipment = EquipmentType(equipment)
        key = (origin, destination, equipment.value)
        if key in self.ratio_cache:
            return self.ratio_cache[key]

        if self.mock_mode:
            u = _unit("ratio", origin, destination, equipment.value)
            result = SupplyDemand(ratio=round(0.4 + 1.2 * u, 3), confidence=0.8)
        else:
            data = await self._get(
                "/supply-demand",
                {"origin": origin, "destination": destination, "equipment": equipment.value},
            )
            result = SupplyDemand(
                ratio=float(data["ratio"]),
                confidence=float(data.get("confidence", 0.8)),
            )
        self.ratio_cache[key] = result
        return result

    async def market_trend(
        self,
        origin: str,
        destination: str,
        equipment: EquipmentType,
        days: int,
    ) -> MarketTrend:
        equipment = EquipmentType(equipment)
        if self.mock_mode:
            u = _unit("trend", origin, destination, equipment.value)
            magnitude = round((u - 0.5) * 0.2, 4)
            if magnitude > 0.02:
                trend = RateTrend.RISING
            elif magnitude < -0.02:
                trend = RateTrend.FALLING
            else:
                trend = RateTrend.STABLE
            return MarketTrend(trend=trend, magnitude=magnitude, confidence=0.7)
        data = await self._get(
            "/trends",
            {
                "origin": origin,
                "destination": destination,
                "equipment": equipment.value,
                "days": days,
            },
        )
        return MarketTrend(
            trend=RateTrend(data["trend"]),
            magnitude=float(data.get("magnitude", 0.0)),
            confidence=float(data.get("confidence", 0.5)),
            forecast=[float(x) for x in data.get("forecast", [])],
        )

    async def weather_impacts(self, regions: list[str]) -> list[WeatherImpact]:
        if self.mock_mode:
            return []
        data = await self._get("/weather/impacts", {"regions": ",".join(regions)})
        return [WeatherImpact(**item) for item in data]


def _mock_rate(origin: str, destination: str, equipment: EquipmentType) -> CurrentRate:
    miles = _lane_miles(origin, destination)
    per_mile = 2.2 + 0.8 * _unit("rate", origin, destination, equipment.value)
    rate = round((miles * per_mile + 250) * _EQUIPMENT_MULTIPLIER[equipment], 2)
    return CurrentRate(
        rate=rate,
        min=round(rate * 0.9, 2),
        max=round(rate * 1.1, 2),
        confidence=0.75,
    )

