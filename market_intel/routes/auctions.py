from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from market_intel.errors import MarketIntelError
from market_intel.models.auction import (
    AuctionBid,
    AuctionCreateRequest,
    AuctionListResponse,
    AuctionUpdateRequest,
    BidCreateRequest,
    BidUpdateRequest,
    CancelAuctionRequest,
    LoadAuction,
    LoadAuctionWithBids,
)
from market_intel.models.enums import AuctionStatus
from market_intel.routes._deps import get_auction_engine, http_error
from market_intel.services.auction_engine import AuctionEngine

router = APIRouter(prefix="/api/auctions", tags=["Auctions"])


@router.post("", response_model=LoadAuction, status_code=201)
async def create_auction_route(
    body: AuctionCreateRequest, engine: AuctionEngine = Depends(get_auction_engine)
):
    """Create a DRAFT (or SCHEDULED) auction. Omit starting_price to price from a lane."""
    try:
        return await engine.create_auction(body)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("", response_model=AuctionListResponse)
async def list_auctions_route(
    status: Optional[AuctionStatus] = None,
    load_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    engine: AuctionEngine = Depends(get_auction_engine),
):
    try:
        return await engine.query_auctions(status, load_id, page, limit)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/{auction_id}", response_model=LoadAuctionWithBids)
async def get_auction_route(
    auction_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    auction = await engine.get_auction_with_bids(auction_id)
    if auction is None:
        raise HTTPException(404, f"Auction {auction_id} not found")
    return auction


@router.patch("/{auction_id}", response_model=LoadAuction)
async def update_auction_route(
    auction_id: str,
    body: AuctionUpdateRequest,
    engine: AuctionEngine = Depends(get_auction_engine),
):
    """Edit a DRAFT or SCHEDULED auction."""
    try:
        return await engine.update_auction(auction_id, body)
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/{auction_id}/start", response_model=LoadAuction)
async def start_auction_route(
    auction_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    try:
        return await engine.start_auction(auction_id)
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/{auction_id}/end", response_model=LoadAuction)
async def end_auction_route(
    auction_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    """Complete the auction and award it to the lowest weighted score."""
    try:
        return await engine.end_auction(auction_id)
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/{auction_id}/cancel", response_model=LoadAuction)
async def cancel_auction_route(
    auction_id: str,
    body: CancelAuctionRequest,
    engine: AuctionEngine = Depends(get_auction_engine),
):
    try:
        return await engine.cancel_auction(auction_id, body.reason)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/{auction_id}/bids", response_model=list[AuctionBid])
async def list_bids_route(
    auction_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    return await engine.get_bids(auction_id)


@router.get("/{auction_id}/evaluation", response_model=list[AuctionBid])
async def evaluate_bids_route(
    auction_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    """ACTIVE bids ranked best first (lowest weighted score)."""
    try:
        return await engine.evaluate_bids(auction_id)
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/bids", response_model=AuctionBid, status_code=201)
async def place_bid_route(
    body: BidCreateRequest, engine: AuctionEngine = Depends(get_auction_engine)
):
    try:
        return await engine.place_bid(body)
    except MarketIntelError as e:
        raise http_error(e)


@router.get("/bids/bidder/{bidder_id}", response_model=list[AuctionBid])
async def bids_by_bidder_route(
    bidder_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    return await engine.get_bids_by_bidder(bidder_id)


@router.post("/bids/{bid_id}/activate", response_model=AuctionBid)
async def activate_bid_route(
    bid_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    try:
        return await engine.activate_bid(bid_id)
    except MarketIntelError as e:
        raise http_error(e)


@router.patch("/bids/{bid_id}", response_model=AuctionBid)
async def update_bid_route(
    bid_id: str,
    body: BidUpdateRequest,
    engine: AuctionEngine = Depends(get_auction_engine),
):
    try:
        return await engine.update_bid(bid_id, body)
    except MarketIntelError as e:
        raise http_error(e)


@router.post("/bids/{bid_id}/withdraw", response_model=AuctionBid)
async def withdraw_bid_route(
    bid_id: str, engine: AuctionEngine = Depends(get_auction_engine)
):
    try:
        return await engine.withdraw_bid(bid_id)
    except MarketIntelError as e:
        raise http_error(e)
