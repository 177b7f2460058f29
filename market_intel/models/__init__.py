from market_intel.models.enums import (
    AuctionStatus,
    AuctionType,
    BidderType,
    BidStatus,
    ConfidenceLevel,
    DemandLevel,
    EquipmentType,
    EventType,
    ForecastTimeframe,
    HotspotSeverity,
    HotspotType,
    RateTrend,
    WeatherImpactLevel,
)
from market_intel.models.market_rate import (
    LoadLocation,
    LoadRateRequest,
    MarketRate,
    MarketRateCorrection,
    MarketRateCreate,
    RateCalculationResult,
    RateOptions,
    RateRequest,
    RateTrendAnalysis,
)
from market_intel.models.market_data import (
    BidderScores,
    CurrentRate,
    MarketTrend,
    SupplyDemand,
    WeatherImpact,
)
from market_intel.models.hotspot import Hotspot, HotspotCandidate, Position
from market_intel.models.forecast import (
    DemandForecast,
    ForecastRequest,
    LaneDemandForecast,
    RegionalDemandForecast,
)
from market_intel.models.auction import (
    AuctionBid,
    AuctionCreateRequest,
    BidCreateRequest,
    BidUpdateRequest,
    LoadAuction,
    LoadAuctionWithBids,
)

__all__ = [
    "AuctionStatus",
    "AuctionType",
    "BidderType",
    "BidStatus",
    "ConfidenceLevel",
    "DemandLevel",
    "EquipmentType",
    "EventType",
    "ForecastTimeframe",
    "HotspotSeverity",
    "HotspotType",
    "RateTrend",
    "WeatherImpactLevel",
    "LoadLocation",
    "LoadRateRequest",
    "MarketRate",
    "MarketRateCorrection",
    "MarketRateCreate",
    "RateCalculationResult",
    "RateOptions",
    "RateRequest",
    "RateTrendAnalysis",
    "BidderScores",
    "CurrentRate",
    "MarketTrend",
    "SupplyDemand",
    "WeatherImpact",
    "Hotspot",
    "HotspotCandidate",
    "Position",
    "DemandForecast",
    "ForecastRequest",
    "LaneDemandForecast",
    "RegionalDemandForecast",
    "AuctionBid",
    "AuctionCreateRequest",
    "BidCreateRequest",
    "BidUpdateRequest",
    "LoadAuction",
    "LoadAuctionWithBids",
]
