from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from market_intel.models.enums import EquipmentType, RateTrend


class MarketRate(BaseModel):
    rate_id: str
    origin_region: str
    destination_region: str
    equipment_type: EquipmentType
    average_rate: float
    min_rate: float
    max_rate: float
    sample_size: int = 0
    recorded_at: datetime


class MarketRateCreate(BaseModel):
    origin_region: str
    destination_region: str
    equipment_type: EquipmentType
    average_rate: float
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    sample_size: int = Field(1, ge=0)
    recorded_at: Optional[datetime] = None


class MarketRateCorrection(BaseModel):
    """Corrective update keyed by rate_id. Lane and timestamp are fixed."""

    average_rate: Optional[float] = None
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    sample_size: Optional[int] = Field(None, ge=0)


class RateOptions(BaseModel):
    """Recognised inputs for a rate calculation.

    Distance comes from ``distance_miles`` when given, otherwise from the
    great-circle distance between the origin and destination coordinates.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "distance_miles": 920,
                "pickup_window_hours": 6,
                "is_hazardous": False,
                "temperature_controlled": True,
            }
        }
    )

    distance_miles: Optional[float] = None
    origin_latitude: Optional[float] = None
    origin_longitude: Optional[float] = None
    destination_latitude: Optional[float] = None
    destination_longitude: Optional[float] = None
    pickup_window_hours: float = Field(
        4.0, description="Hours between earliest and latest pickup"
    )
    is_backhaul: Optional[bool] = Field(
        None, description="Unset = derived from lane volumes"
    )
    weight_lbs: Optional[int] = None
    length_ft: Optional[float] = None
    is_hazardous: bool = False
    temperature_controlled: bool = False


class RateRequest(BaseModel):
    origin: str
    destination: str
    equipment_type: EquipmentType
    options: RateOptions = Field(default_factory=RateOptions)


class RateCalculationResult(BaseModel):
    total_rate: float
    mileage_rate: float
    base_rate: float
    adjustment_factor: float
    factors: dict[str, float]
    confidence: float
    calculated_at: datetime
    surcharges: dict[str, float] = Field(default_factory=dict)
    quoted_rate: float


class LoadLocation(BaseModel):
    location_type: str = Field(..., description="pickup or delivery")
    city: str
    state: str
    latitude: float
    longitude: float


class LoadRateRequest(BaseModel):
    load_id: str
    equipment_type: EquipmentType
    locations: list[LoadLocation]
    pickup_earliest: datetime
    pickup_latest: datetime
    weight_lbs: Optional[int] = None
    length_ft: Optional[float] = None
    is_hazardous: bool = False
    temperature_controlled: bool = False

    @model_validator(mode="after")
    def pickup_window_order(self):
        if self.pickup_latest < self.pickup_earliest:
            raise ValueError("pickup_latest must not precede pickup_earliest")
        return self


class RateForecastPoint(BaseModel):
    date: datetime
    prediction: float


class RateTrendAnalysis(BaseModel):
    average_rate: float = 0.0
    min_rate: float = 0.0
    max_rate: float = 0.0
    volatility: float = 0.0
    trend: RateTrend = RateTrend.STABLE
    forecast: list[RateForecastPoint] = Field(default_factory=list)
    confidence: float = 0.0
    data_points: int = 0
