from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from market_intel.models.enums import EquipmentType, HotspotSeverity, HotspotType
from market_intel.utils.geo import haversine_miles


class Position(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class HotspotCandidate(BaseModel):
    """Detector output, before merge and persistence."""

    name: str
    type: HotspotType
    severity: HotspotSeverity
    center: Position
    radius_miles: float = Field(..., gt=0)
    confidence_score: float = Field(..., ge=0, le=1)
    bonus_amount: float = Field(..., ge=0)
    region: str
    equipment_type: Optional[EquipmentType] = None
    factors: dict[str, float] = Field(default_factory=dict)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    def overlaps(self, other: "HotspotCandidate") -> bool:
        distance = haversine_miles(
            self.center.latitude,
            self.center.longitude,
            other.center.latitude,
            other.center.longitude,
        )
        return distance <= self.radius_miles + other.radius_miles


class Hotspot(BaseModel):
    hotspot_id: str
    name: str
    type: HotspotType
    severity: HotspotSeverity
    center: Position
    radius_miles: float
    confidence_score: float
    bonus_amount: float
    region: str
    equipment_type: Optional[EquipmentType] = None
    factors: dict[str, float] = Field(default_factory=dict)
    detected_at: datetime
    valid_from: datetime
    valid_until: datetime
    active: bool = True

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.active and self.valid_from <= now <= self.valid_until

    def contains(self, latitude: float, longitude: float) -> bool:
        distance = haversine_miles(
            self.center.latitude, self.center.longitude, latitude, longitude
        )
        return distance <= self.radius_miles


class HotspotDetectionRequest(BaseModel):
    forecast_id: Optional[str] = None
    regions: Optional[list[str]] = None
    equipment_types: Optional[list[EquipmentType]] = None
