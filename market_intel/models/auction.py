from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from market_intel.models.enums import (
    AuctionStatus,
    AuctionType,
    BidderType,
    BidStatus,
    EquipmentType,
)
from market_intel.models.market_rate import RateOptions

TERMINAL_STATUSES = frozenset({AuctionStatus.COMPLETED, AuctionStatus.CANCELLED})


class LoadAuction(BaseModel):
    auction_id: str
    load_id: str
    title: str
    description: str = ""
    auction_type: AuctionType = AuctionType.STANDARD
    status: AuctionStatus
    start_time: datetime
    end_time: datetime
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    starting_price: float
    reserve_price: Optional[float] = None
    current_price: float
    min_bid_increment: float = 0.0
    network_efficiency_weight: float
    price_weight: float
    driver_score_weight: float
    bids_count: int = 0
    winning_bid_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AuctionBid(BaseModel):
    """A bid on a load auction.

    ``weighted_score`` is lower-is-better: efficiency and network
    contribution enter the score inverted, so a bidder with higher
    attribute scores ranks ahead. Displays that assume higher-is-better
    must flip it.
    """

    bid_id: str
    auction_id: str
    load_id: str
    bidder_id: str
    bidder_type: BidderType
    amount: float
    status: BidStatus
    efficiency_score: float = Field(..., ge=0, le=100)
    network_contribution_score: float = Field(..., ge=0, le=100)
    driver_score: float = Field(0.0, ge=0, le=100)
    weighted_score: float
    notes: str = ""
    created_at: datetime
    updated_at: datetime


class AuctionLane(BaseModel):
    """Lane used to seed a starting price when none is supplied."""

    origin: str
    destination: str
    equipment_type: EquipmentType
    options: RateOptions = Field(default_factory=RateOptions)


class AuctionCreateRequest(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "load_id": "LD-1001",
                "title": "Chicago to Atlanta dry van",
                "start_time": "2026-03-01T08:00:00Z",
                "end_time": "2026-03-01T20:00:00Z",
                "starting_price": 2400,
                "min_bid_increment": 25,
            }
        }
    )

    load_id: str
    title: str
    description: str = ""
    auction_type: AuctionType = AuctionType.STANDARD
    start_time: datetime
    end_time: datetime
    starting_price: Optional[float] = Field(None, gt=0)
    reserve_price: Optional[float] = Field(None, ge=0)
    min_bid_increment: float = Field(0.0, ge=0)
    network_efficiency_weight: Optional[float] = Field(None, ge=0, le=1)
    price_weight: Optional[float] = Field(None, ge=0, le=1)
    driver_score_weight: Optional[float] = Field(None, ge=0, le=1)
    scheduled: bool = Field(
        False, description="Create as SCHEDULED instead of DRAFT"
    )
    lane: Optional[AuctionLane] = None
    created_by: Optional[str] = None


class AuctionUpdateRequest(BaseModel):
    """Edits allowed while an auction is DRAFT or SCHEDULED."""

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    starting_price: Optional[float] = Field(None, gt=0)
    reserve_price: Optional[float] = Field(None, ge=0)
    min_bid_increment: Optional[float] = Field(None, ge=0)
    network_efficiency_weight: Optional[float] = Field(None, ge=0, le=1)
    price_weight: Optional[float] = Field(None, ge=0, le=1)
    driver_score_weight: Optional[float] = Field(None, ge=0, le=1)


class BidCreateRequest(BaseModel):
    auction_id: str
    bidder_id: str
    bidder_type: BidderType
    amount: float = Field(..., gt=0)
    notes: str = ""


class BidUpdateRequest(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    notes: Optional[str] = None


class CancelAuctionRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class LoadAuctionWithBids(LoadAuction):
    bids: list[AuctionBid] = Field(default_factory=list)
    winning_bid: Optional[AuctionBid] = None


class AuctionListResponse(BaseModel):
    items: list[LoadAuction]
    total: int
    page: int
    limit: int
