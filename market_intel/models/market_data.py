"""Shapes returned by the external market-data capability."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from market_intel.models.enums import RateTrend, WeatherImpactLevel


class CurrentRate(BaseModel):
    rate: float
    min: float
    max: float
    confidence: float = Field(..., ge=0, le=1)


class SupplyDemand(BaseModel):
    ratio: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)


class MarketTrend(BaseModel):
    trend: RateTrend
    magnitude: float
    confidence: float = Field(..., ge=0, le=1)
    forecast: list[float] = Field(default_factory=list)


class WeatherImpact(BaseModel):
    region: str
    impact: WeatherImpactLevel
    start_date: datetime
    end_date: datetime
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class BidderScores(BaseModel):
    efficiency: float = Field(..., ge=0, le=100)
    network_contribution: float = Field(..., ge=0, le=100)
