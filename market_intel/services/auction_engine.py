"""
Load auctions and bid scoring.

Weighted score (lower is better):
    price_weight · amount / starting_price
  + network_efficiency_weight · (1 − efficiency / 100)
  + driver_score_weight · (1 − network_contribution / 100)

State machine: DRAFT|SCHEDULED → ACTIVE → COMPLETED, and any
non-terminal state → CANCELLED. Concurrency-sensitive transitions run
as conditional updates inside sqlite write transactions.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from market_intel.db.repositories.auction_repo import AuctionRepository
from market_intel.errors import InvalidInput, InvalidTransition, NotFound
from market_intel.models.auction import (
    AuctionBid,
    AuctionCreateRequest,
    AuctionListResponse,
    AuctionUpdateRequest,
    BidCreateRequest,
    BidUpdateRequest,
    LoadAuction,
    LoadAuctionWithBids,
)
from market_intel.models.enums import AuctionStatus, BidStatus, EventType
from market_intel.services.events import publish_safely
from market_intel.services.interfaces import BidderScoring, EventSink
from market_intel.services.rate_engine import RateEngine
from market_intel.utils.dates import as_utc, utc_now

log = logging.getLogger(__name__)

DEFAULT_NETWORK_EFFICIENCY_WEIGHT = 0.4
DEFAULT_PRICE_WEIGHT = 0.3
DEFAULT_DRIVER_SCORE_WEIGHT = 0.3

_STARTABLE = (AuctionStatus.DRAFT, AuctionStatus.SCHEDULED)
_CANCELLABLE = (AuctionStatus.DRAFT, AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)


def weighted_score(
    auction: LoadAuction,
    amount: float,
    efficiency: float,
    network_contribution: float,
    normalize: bool = False,
) -> float:
    price_w = auction.price_weight
    network_w = auction.network_efficiency_weight
    driver_w = auction.driver_score_weight
    if normalize:
        total = price_w + network_w + driver_w
        if total > 0:
            price_w, network_w, driver_w = (
                price_w / total,
                network_w / total,
                driver_w / total,
            )
    score = (
        price_w * (amount / auction.starting_price)
        + network_w * (1 - efficiency / 100)
        + driver_w * (1 - network_contribution / 100)
    )
    return round(score, 6)


class AuctionEngine:
    def __init__(
        self,
        store: AuctionRepository,
        scoring: BidderScoring,
        events: EventSink,
        rate_engine: Optional[RateEngine] = None,
        auto_activate_bids: bool = False,
        normalize_weights: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.scoring = scoring
        self.events = events
        self.rate_engine = rate_engine
        self.auto_activate_bids = auto_activate_bids
        self.normalize_weights = normalize_weights
        self.clock = clock

    def _score(self, auction: LoadAuction, bid: AuctionBid, amount: float) -> float:
        return weighted_score(
            auction,
            amount,
            bid.efficiency_score,
            bid.network_contribution_score,
            self.normalize_weights,
        )

    def _require_auction(self, auction_id: str) -> LoadAuction:
        auction = self.store.get_auction(auction_id)
        if auction is None:
            raise NotFound(f"Auction {auction_id} not found")
        return auction

    def _require_bid(self, bid_id: str) -> AuctionBid:
        bid = self.store.get_bid(bid_id)
        if bid is None:
            raise NotFound(f"Bid {bid_id} not found")
        return bid

    # ── Auction lifecycle ────────────────────────────

    async def create_auction(self, params: AuctionCreateRequest) -> LoadAuction:
        if as_utc(params.end_time) <= as_utc(params.start_time):
            raise InvalidInput("end_time must be after start_time")

        starting_price = params.starting_price
        if starting_price is None:
            if params.lane is None or self.rate_engine is None:
                raise InvalidInput("starting_price is required")
            quote = await self.rate_engine.calculate_rate(
                params.lane.origin,
                params.lane.destination,
                params.lane.equipment_type,
                params.lane.options,
            )
            starting_price = quote.total_rate
            log.info(
                "Seeded auction for load %s at %.2f from lane rate",
                params.load_id,
                starting_price,
            )
        if starting_price <= 0:
            raise InvalidInput("starting_price must be positive")

        weights = {
            "network_efficiency_weight": _weight(
                params.network_efficiency_weight, DEFAULT_NETWORK_EFFICIENCY_WEIGHT
            ),
            "price_weight": _weight(params.price_weight, DEFAULT_PRICE_WEIGHT),
            "driver_score_weight": _weight(
                params.driver_score_weight, DEFAULT_DRIVER_SCORE_WEIGHT
            ),
        }
        for name, value in weights.items():
            if not 0 <= value <= 1:
                raise InvalidInput(f"{name} must be within [0, 1]")

        auction = self.store.insert_auction(
            {
                "load_id": params.load_id,
                "title": params.title,
                "description": params.description,
                "auction_type": params.auction_type.value,
                "status": (
                    AuctionStatus.SCHEDULED if params.scheduled else AuctionStatus.DRAFT
                ).value,
                "start_time": params.start_time,
                "end_time": params.end_time,
                "starting_price": starting_price,
                "reserve_price": params.reserve_price,
                "min_bid_increment": params.min_bid_increment,
                "created_by": params.created_by,
                "created_at": self.clock(),
                **weights,
            }
        )
        log.info("Created auction %s for load %s", auction.auction_id, auction.load_id)
        await publish_safely(
            self.events, EventType.AUCTION_CREATED, auction.model_dump(mode="json")
        )
        return auction

    async def update_auction(
        self, auction_id: str, params: AuctionUpdateRequest
    ) -> LoadAuction:
        """Edit a DRAFT or SCHEDULED auction. An empty update returns it unchanged."""
        changes = params.model_dump(exclude_none=True)
        if not changes:
            return self._require_auction(auction_id)

        def validate(edited: LoadAuction) -> None:
            if as_utc(edited.end_time) <= as_utc(edited.start_time):
                raise InvalidInput("end_time must be after start_time")

        if not self.store.update_auction(
            auction_id, _STARTABLE, changes, self.clock(), validate
        ):
            auction = self._require_auction(auction_id)
            raise InvalidTransition(
                f"Auction {auction_id} cannot be edited while {auction.status.value}"
            )
        log.info("Updated auction %s: %s", auction_id, sorted(changes))
        return self._require_auction(auction_id)

    async def start_auction(self, auction_id: str) -> LoadAuction:
        now = self.clock()
        if not self.store.transition(
            auction_id,
            _STARTABLE,
            AuctionStatus.ACTIVE,
            now,
            actual_start_time=now,
        ):
            auction = self._require_auction(auction_id)
            raise InvalidTransition(
                f"Auction {auction_id} cannot start from {auction.status.value}"
            )
        log.info("Auction %s started", auction_id)
        return self._require_auction(auction_id)

    async def end_auction(self, auction_id: str) -> LoadAuction:
        """
        Complete an ACTIVE auction and pick its winner.

        Safe to call concurrently: exactly one caller performs the
        completion. Ending an already COMPLETED auction returns it as is.
        """

        def select_winner(auction: LoadAuction, bids: list[AuctionBid]):
            scores = {b.bid_id: self._score(auction, b, b.amount) for b in bids}
            if not scores:
                return scores, None
            winner = min(scores, key=lambda bid_id: (scores[bid_id], bid_id))
            return scores, winner

        completed = self.store.complete_auction(auction_id, self.clock(), select_winner)
        auction = self._require_auction(auction_id)
        if not completed:
            if auction.status == AuctionStatus.COMPLETED:
                return auction
            raise InvalidTransition(
                f"Auction {auction_id} cannot end from {auction.status.value}"
            )

        log.info(
            "Auction %s completed, winner %s", auction_id, auction.winning_bid_id
        )
        await publish_safely(
            self.events,
            EventType.AUCTION_COMPLETED,
            {
                "auction_id": auction.auction_id,
                "load_id": auction.load_id,
                "winning_bid_id": auction.winning_bid_id,
                "winning_amount": (
                    auction.current_price if auction.winning_bid_id else None
                ),
                "completed_at": auction.actual_end_time.isoformat(),
            },
        )
        return auction

    async def cancel_auction(self, auction_id: str, reason: str) -> LoadAuction:
        if not reason or not reason.strip():
            raise InvalidInput("A cancellation reason is required")
        if not self.store.transition(
            auction_id,
            _CANCELLABLE,
            AuctionStatus.CANCELLED,
            self.clock(),
            cancellation_reason=reason.strip(),
        ):
            auction = self._require_auction(auction_id)
            raise InvalidTransition(
                f"Auction {auction_id} cannot be cancelled from "
                f"{auction.status.value}"
            )
        log.info("Auction %s cancelled: %s", auction_id, reason)
        return self._require_auction(auction_id)

    # ── Bids ─────────────────────────────────────────

    async def place_bid(self, params: BidCreateRequest) -> AuctionBid:
        auction = self._require_auction(params.auction_id)
        if auction.status != AuctionStatus.ACTIVE:
            raise InvalidTransition(
                f"Auction {auction.auction_id} is {auction.status.value}, "
                "not accepting bids"
            )
        if params.amount <= 0:
            raise InvalidInput("amount must be positive")

        scores = await self.scoring.score(
            params.bidder_id, params.bidder_type, auction.load_id
        )
        bid = self.store.insert_bid(
            {
                "auction_id": auction.auction_id,
                "load_id": auction.load_id,
                "bidder_id": params.bidder_id,
                "bidder_type": params.bidder_type.value,
                "amount": params.amount,
                "status": (
                    BidStatus.ACTIVE if self.auto_activate_bids else BidStatus.PENDING
                ).value,
                "efficiency_score": scores.efficiency,
                "network_contribution_score": scores.network_contribution,
                "weighted_score": weighted_score(
                    auction,
                    params.amount,
                    scores.efficiency,
                    scores.network_contribution,
                    self.normalize_weights,
                ),
                "notes": params.notes,
                "created_at": self.clock(),
            }
        )
        log.info(
            "Bid %s by %s on auction %s: %.2f (score %.4f)",
            bid.bid_id,
            bid.bidder_id,
            bid.auction_id,
            bid.amount,
            bid.weighted_score,
        )
        await publish_safely(
            self.events, EventType.AUCTION_BID_PLACED, bid.model_dump(mode="json")
        )
        return bid

    async def activate_bid(self, bid_id: str) -> AuctionBid:
        bid = self._require_bid(bid_id)
        if not self.store.update_bid(
            bid_id,
            self.clock(),
            from_statuses=[BidStatus.PENDING],
            status=BidStatus.ACTIVE,
        ):
            raise InvalidTransition(
                f"Bid {bid_id} cannot be activated from {bid.status.value} "
                "or its auction is not ACTIVE"
            )
        return self._require_bid(bid_id)

    async def update_bid(self, bid_id: str, changes: BidUpdateRequest) -> AuctionBid:
        bid = self._require_bid(bid_id)
        auction = self._require_auction(bid.auction_id)
        if auction.status != AuctionStatus.ACTIVE:
            raise InvalidTransition(f"Auction {auction.auction_id} is not ACTIVE")

        fields: dict = {}
        if changes.notes is not None:
            fields["notes"] = changes.notes
        if changes.amount is not None:
            fields["amount"] = changes.amount
            fields["weighted_score"] = self._score(auction, bid, changes.amount)
        if not fields:
            return bid

        if not self.store.update_bid(
            bid_id,
            self.clock(),
            from_statuses=[BidStatus.PENDING, BidStatus.ACTIVE],
            **fields,
        ):
            raise InvalidTransition(
                f"Bid {bid_id} can no longer be updated"
            )
        return self._require_bid(bid_id)

    async def withdraw_bid(self, bid_id: str) -> AuctionBid:
        bid = self._require_bid(bid_id)
        if not self.store.withdraw_bid(bid_id, self.clock()):
            raise InvalidTransition(
                f"Bid {bid_id} cannot be withdrawn ({bid.status.value})"
                " or its auction is not ACTIVE"
            )
        log.info("Bid %s withdrawn from auction %s", bid_id, bid.auction_id)
        return self._require_bid(bid_id)

    # ── Queries ──────────────────────────────────────

    async def get_auction(self, auction_id: str) -> Optional[LoadAuction]:
        return self.store.get_auction(auction_id)

    async def get_auction_with_bids(
        self, auction_id: str
    ) -> Optional[LoadAuctionWithBids]:
        auction = self.store.get_auction(auction_id)
        if auction is None:
            return None
        bids = self.store.get_bids(auction_id)
        winning = next(
            (b for b in bids if b.bid_id == auction.winning_bid_id), None
        )
        return LoadAuctionWithBids(
            **auction.model_dump(), bids=bids, winning_bid=winning
        )

    async def query_auctions(
        self,
        status: Optional[AuctionStatus] = None,
        load_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AuctionListResponse:
        if page < 1 or limit < 1:
            raise InvalidInput("page and limit must be positive")
        items, total = self.store.query_auctions(status, load_id, page, limit)
        return AuctionListResponse(items=items, total=total, page=page, limit=limit)

    async def get_bids(self, auction_id: str) -> list[AuctionBid]:
        return self.store.get_bids(auction_id)

    async def get_bids_by_bidder(self, bidder_id: str) -> list[AuctionBid]:
        return self.store.get_bids_by_bidder(bidder_id)

    async def evaluate_bids(self, auction_id: str) -> list[AuctionBid]:
        """ACTIVE bids ranked best first, scored against current weights."""
        auction = self._require_auction(auction_id)
        bids = self.store.get_bids(auction_id, BidStatus.ACTIVE)
        ranked = [
            b.model_copy(update={"weighted_score": self._score(auction, b, b.amount)})
            for b in bids
        ]
        ranked.sort(key=lambda b: (b.weighted_score, b.bid_id))
        return ranked


def _weight(value: Optional[float], default: float) -> float:
    return default if value is None else value
