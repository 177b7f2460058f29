from enum import Enum


class EquipmentType(str, Enum):
    """Equipment type for lanes and loads. Values: dry_van, reefer, flatbed,
    step_deck, power_only."""

    DRY_VAN = "dry_van"
    REEFER = "reefer"
    FLATBED = "flatbed"
    STEP_DECK = "step_deck"
    POWER_ONLY = "power_only"


class RateTrend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class ForecastTimeframe(str, Enum):
    NEXT_24_HOURS = "24h"
    NEXT_48_HOURS = "48h"
    NEXT_7_DAYS = "7d"
    NEXT_30_DAYS = "30d"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DemandLevel(str, Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class HotspotType(str, Enum):
    DEMAND_SURGE = "DEMAND_SURGE"
    SUPPLY_SHORTAGE = "SUPPLY_SHORTAGE"
    RATE_OPPORTUNITY = "RATE_OPPORTUNITY"
    REPOSITIONING_NEED = "REPOSITIONING_NEED"
    WEATHER_IMPACT = "WEATHER_IMPACT"


class HotspotSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    HotspotSeverity.LOW: 0,
    HotspotSeverity.MEDIUM: 1,
    HotspotSeverity.HIGH: 2,
    HotspotSeverity.CRITICAL: 3,
}


class WeatherImpactLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    SEVERE = "severe"


class AuctionType(str, Enum):
    STANDARD = "STANDARD"
    REVERSE = "REVERSE"
    SEALED = "SEALED"


class AuctionStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BidStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"


class BidderType(str, Enum):
    DRIVER = "driver"
    CARRIER = "carrier"


class EventType(str, Enum):
    MARKET_RATE_UPDATED = "market_rate.updated"
    FORECAST_UPDATED = "forecast.updated"
    HOTSPOT_IDENTIFIED = "hotspot.identified"
    AUCTION_CREATED = "auction.created"
    AUCTION_BID_PLACED = "auction.bid_placed"
    AUCTION_COMPLETED = "auction.completed"
