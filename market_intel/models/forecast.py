from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from market_intel.models.enums import (
    ConfidenceLevel,
    DemandLevel,
    EquipmentType,
    ForecastTimeframe,
)
from market_intel.models.hotspot import Position


class RegionalDemandForecast(BaseModel):
    region: str
    center: Position
    radius_miles: float = 50.0
    demand_levels: dict[EquipmentType, DemandLevel] = Field(default_factory=dict)
    expected_load_counts: dict[EquipmentType, int] = Field(default_factory=dict)
    expected_rate_change: dict[EquipmentType, float] = Field(
        default_factory=dict
    )
    supply_demand_ratio: Optional[float] = None
    confidence_score: float = Field(
        ..., ge=0, le=100, description="0-100 scale"
    )


class LaneDemandForecast(BaseModel):
    origin_region: str
    destination_region: str
    origin_center: Position
    demand_levels: dict[EquipmentType, DemandLevel] = Field(default_factory=dict)
    expected_load_counts: dict[EquipmentType, int] = Field(default_factory=dict)
    expected_rate_change: dict[EquipmentType, float] = Field(
        default_factory=dict
    )
    confidence_score: float = Field(
        ..., ge=0, le=100, description="0-100 scale"
    )

    @property
    def total_expected_loads(self) -> int:
        return sum(self.expected_load_counts.values())


class DemandForecast(BaseModel):
    forecast_id: str
    timeframe: ForecastTimeframe
    generated_at: datetime
    valid_until: datetime
    confidence_level: ConfidenceLevel
    overall_confidence_score: float = Field(
        ..., ge=0, le=1, description="0-1 scale"
    )
    regional_forecasts: list[RegionalDemandForecast] = Field(
        default_factory=list
    )
    lane_forecasts: list[LaneDemandForecast] = Field(default_factory=list)
    factors: dict[str, float] = Field(default_factory=dict)
    model_version: str

    @model_validator(mode="after")
    def validity_after_generation(self):
        if self.valid_until <= self.generated_at:
            raise ValueError("valid_until must be later than generated_at")
        return self

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now <= self.valid_until


class ForecastRequest(BaseModel):
    timeframe: ForecastTimeframe
    regions: Optional[list[str]] = None
    equipment_types: Optional[list[EquipmentType]] = None
    valid_for_hours: Optional[int] = Field(None, gt=0)
