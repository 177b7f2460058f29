"""
Capabilities the engines depend on. Engines receive implementations
through their constructors; tests swap in fakes.
"""

from datetime import datetime
from typing import Any, Optional, Protocol

from market_intel.models.enums import EquipmentType, EventType
from market_intel.models.market_data import (
    BidderScores,
    CurrentRate,
    MarketTrend,
    SupplyDemand,
    WeatherImpact,
)
from market_intel.models.market_rate import MarketRate


class MarketRateStore(Protocol):
    def get(self, rate_id: str) -> Optional[MarketRate]: ...

    def find_latest(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> Optional[MarketRate]: ...

    def find_historical(
        self,
        origin: str,
        destination: str,
        equipment: EquipmentType,
        since: datetime,
    ) -> list[MarketRate]: ...

    def find_in_window(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        regions: Optional[list[str]] = None,
        equipment_types: Optional[list[EquipmentType]] = None,
    ) -> list[MarketRate]: ...

    def save(self, rate: dict) -> MarketRate: ...

    def update(self, rate_id: str, changes: dict) -> MarketRate: ...


class ExternalMarketData(Protocol):
    async def current_rate(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> CurrentRate: ...

    async def supply_demand_ratio(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> SupplyDemand: ...

    async def market_trend(
        self,
        origin: str,
        destination: str,
        equipment: EquipmentType,
        days: int,
    ) -> MarketTrend: ...

    async def weather_impacts(self, regions: list[str]) -> list[WeatherImpact]: ...


class BidderScoring(Protocol):
    async def score(
        self, bidder_id: str, bidder_type: str, load_id: str
    ) -> BidderScores: ...


class EventSink(Protocol):
    async def publish(self, event_type: EventType, payload: dict[str, Any]) -> None: ...


class Cache(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> None: ...


class DemandPredictor(Protocol):
    """Turns a prepared feature set into per-region and per-lane predictions.

    The result is a dict with ``regional`` and ``lanes`` lists plus
    ``model_metrics`` (0-1 values) and ``data_quality`` (0-1).
    """

    model_version: str

    async def predict(self, features: dict[str, Any]) -> dict[str, Any]: ...
