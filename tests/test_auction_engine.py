import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
import pytest_asyncio

from conftest import FakeScoring, RecordingSink
from market_intel.db.repositories.auction_repo import AuctionRepository
from market_intel.errors import (
    DuplicateBid,
    InvalidInput,
    InvalidTransition,
    NotFound,
)
from market_intel.models.auction import (
    AuctionCreateRequest,
    AuctionLane,
    AuctionUpdateRequest,
    BidCreateRequest,
    BidUpdateRequest,
)
from market_intel.models.enums import (
    AuctionStatus,
    BidderType,
    BidStatus,
    EquipmentType,
)
from market_intel.models.market_rate import RateOptions
from market_intel.services.auction_engine import AuctionEngine, weighted_score


def create_request(clock, **overrides) -> AuctionCreateRequest:
    params = {
        "load_id": "LD-1001",
        "title": "Chicago to Atlanta dry van",
        "start_time": clock.now,
        "end_time": clock.now + timedelta(hours=12),
        "starting_price": 1000.0,
        "network_efficiency_weight": 0.4,
        "price_weight": 0.3,
        "driver_score_weight": 0.3,
    }
    params.update(overrides)
    return AuctionCreateRequest(**params)


def bid(auction_id, bidder_id, amount) -> BidCreateRequest:
    return BidCreateRequest(
        auction_id=auction_id,
        bidder_id=bidder_id,
        bidder_type=BidderType.CARRIER,
        amount=amount,
    )


@pytest.fixture
def scoring():
    return FakeScoring({"carrier-a": (80.0, 70.0), "carrier-b": (60.0, 50.0)})


@pytest_asyncio.fixture
async def live_auction(auction_engine, clock):
    auction = await auction_engine.create_auction(create_request(clock))
    return await auction_engine.start_auction(auction.auction_id)


# ── Scoring ────────────────────────────────────────


def test_weighted_score_is_lower_for_the_better_bid(auction_engine, clock):
    auction = asyncio.run(auction_engine.create_auction(create_request(clock)))

    assert weighted_score(auction, 1000, 80, 70) == pytest.approx(0.47)
    assert weighted_score(auction, 900, 60, 50) == pytest.approx(0.58)


def test_normalized_weights_sum_to_one(auction_engine, clock):
    auction = asyncio.run(
        auction_engine.create_auction(
            create_request(clock, network_efficiency_weight=0.8, price_weight=0.6, driver_score_weight=0.6)
        )
    )

    assert weighted_score(auction, 1000, 80, 70, normalize=True) == pytest.approx(0.47)
    assert weighted_score(auction, 1000, 80, 70) == pytest.approx(0.94)


# ── Lifecycle ──────────────────────────────────────


@pytest.mark.asyncio
async def test_create_defaults_and_event(auction_engine, sink, clock):
    auction = await auction_engine.create_auction(
        create_request(
            clock,
            network_efficiency_weight=None,
            price_weight=None,
            driver_score_weight=None,
        )
    )

    assert auction.status == AuctionStatus.DRAFT
    assert auction.current_price == auction.starting_price == 1000.0
    assert (auction.network_efficiency_weight, auction.price_weight, auction.driver_score_weight) == (
        0.4,
        0.3,
        0.3,
    )
    assert auction.bids_count == 0
    assert len(sink.of_type("auction.created")) == 1

    scheduled = await auction_engine.create_auction(create_request(clock, scheduled=True))
    assert scheduled.status == AuctionStatus.SCHEDULED


@pytest.mark.asyncio
async def test_create_rejects_bad_windows_and_prices(auction_engine, clock):
    with pytest.raises(InvalidInput):
        await auction_engine.create_auction(create_request(clock, end_time=clock.now))
    with pytest.raises(InvalidInput):
        await auction_engine.create_auction(create_request(clock, starting_price=None))


@pytest.mark.asyncio
async def test_starting_price_seeded_from_lane_rate(db, scoring, sink, rate_engine, clock):
    engine = AuctionEngine(
        AuctionRepository(db), scoring, sink, rate_engine=rate_engine, clock=clock
    )
    lane = AuctionLane(
        origin="Midwest",
        destination="Southeast",
        equipment_type=EquipmentType.DRY_VAN,
        options=RateOptions(distance_miles=700),
    )

    auction = await engine.create_auction(create_request(clock, starting_price=None, lane=lane))

    quote = await rate_engine.calculate_rate("Midwest", "Southeast", EquipmentType.DRY_VAN, RateOptions(distance_miles=700))
    assert auction.starting_price == quote.total_rate


@pytest.mark.asyncio
async def test_start_only_from_draft_or_scheduled(auction_engine, live_auction):
    assert live_auction.status == AuctionStatus.ACTIVE
    assert live_auction.actual_start_time is not None

    with pytest.raises(InvalidTransition):
        await auction_engine.start_auction(live_auction.auction_id)
    with pytest.raises(NotFound):
        await auction_engine.start_auction("AUC-missing")


@pytest.mark.asyncio
async def test_cancel(auction_engine, clock):
    draft = await auction_engine.create_auction(create_request(clock))

    with pytest.raises(InvalidInput):
        await auction_engine.cancel_auction(draft.auction_id, "  ")

    cancelled = await auction_engine.cancel_auction(draft.auction_id, "Load tendered elsewhere")
    assert cancelled.status == AuctionStatus.CANCELLED
    assert cancelled.cancellation_reason == "Load tendered elsewhere"

    with pytest.raises(InvalidTransition):
        await auction_engine.cancel_auction(draft.auction_id, "again")
    with pytest.raises(InvalidTransition):
        await auction_engine.start_auction(draft.auction_id)


@pytest.mark.asyncio
async def test_edit_draft_auction(auction_engine, clock):
    draft = await auction_engine.create_auction(create_request(clock))
    clock.advance(minutes=5)

    edited = await auction_engine.update_auction(
        draft.auction_id,
        AuctionUpdateRequest(
            title="Chicago to Atlanta, team drivers",
            end_time=clock.now + timedelta(hours=24),
            starting_price=1100.0,
            price_weight=0.5,
        ),
    )

    assert edited.title == "Chicago to Atlanta, team drivers"
    assert edited.end_time == clock.now + timedelta(hours=24)
    assert edited.starting_price == 1100.0
    assert edited.current_price == 1100.0
    assert edited.price_weight == 0.5
    assert edited.network_efficiency_weight == 0.4
    assert edited.status == AuctionStatus.DRAFT
    assert edited.updated_at == clock.now

    unchanged = await auction_engine.update_auction(draft.auction_id, AuctionUpdateRequest())
    assert unchanged == edited


@pytest.mark.asyncio
async def test_edit_keeps_the_window_valid(auction_engine, clock):
    draft = await auction_engine.create_auction(create_request(clock))

    with pytest.raises(InvalidInput):
        await auction_engine.update_auction(
            draft.auction_id, AuctionUpdateRequest(end_time=clock.now - timedelta(hours=1))
        )

    assert await auction_engine.get_auction(draft.auction_id) == draft


@pytest.mark.asyncio
async def test_edit_requires_draft_or_scheduled(auction_engine, live_auction):
    with pytest.raises(InvalidTransition):
        await auction_engine.update_auction(
            live_auction.auction_id, AuctionUpdateRequest(title="Too late")
        )
    with pytest.raises(NotFound):
        await auction_engine.update_auction("AUC-missing", AuctionUpdateRequest(title="x"))


@pytest.mark.asyncio
async def test_completed_auction_cannot_be_cancelled(auction_engine, live_auction):
    await auction_engine.end_auction(live_auction.auction_id)

    with pytest.raises(InvalidTransition):
        await auction_engine.cancel_auction(live_auction.auction_id, "too late")


# ── Bidding and award ──────────────────────────────


@pytest.mark.asyncio
async def test_lowest_weighted_score_wins(auction_engine, live_auction, sink):
    a = await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 1000))
    b = await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-b", 900))
    assert a.status == BidStatus.PENDING
    assert a.weighted_score == pytest.approx(0.47)
    assert b.weighted_score == pytest.approx(0.58)

    await auction_engine.activate_bid(a.bid_id)
    await auction_engine.activate_bid(b.bid_id)
    ranked = await auction_engine.evaluate_bids(live_auction.auction_id)
    assert [r.bid_id for r in ranked] == [a.bid_id, b.bid_id]

    completed = await auction_engine.end_auction(live_auction.auction_id)

    assert completed.status == AuctionStatus.COMPLETED
    assert completed.winning_bid_id == a.bid_id
    assert completed.current_price == 1000.0
    assert completed.actual_end_time is not None
    statuses = {x.bid_id: x.status for x in await auction_engine.get_bids(live_auction.auction_id)}
    assert statuses == {a.bid_id: BidStatus.ACCEPTED, b.bid_id: BidStatus.REJECTED}

    [event] = sink.of_type("auction.completed")
    assert event["winning_bid_id"] == a.bid_id
    assert event["winning_amount"] == 1000.0

    detail = await auction_engine.get_auction_with_bids(live_auction.auction_id)
    assert detail.winning_bid.bid_id == a.bid_id
    assert len(detail.bids) == 2


@pytest.mark.asyncio
async def test_pending_bids_do_not_win(auction_engine, live_auction):
    pending = await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 800))

    completed = await auction_engine.end_auction(live_auction.auction_id)

    assert completed.winning_bid_id is None
    assert completed.current_price == live_auction.current_price
    assert (await auction_engine.get_bids(live_auction.auction_id))[0].status == BidStatus.REJECTED
    assert pending.status == BidStatus.PENDING


@pytest.mark.asyncio
async def test_auto_activated_bids(db, scoring, sink, clock):
    engine = AuctionEngine(
        AuctionRepository(db), scoring, sink, auto_activate_bids=True, clock=clock
    )
    auction = await engine.create_auction(create_request(clock))
    await engine.start_auction(auction.auction_id)

    placed = await engine.place_bid(bid(auction.auction_id, "carrier-b", 900))
    assert placed.status == BidStatus.ACTIVE

    completed = await engine.end_auction(auction.auction_id)
    assert completed.winning_bid_id == placed.bid_id
    assert completed.current_price == 900.0


@pytest.mark.asyncio
async def test_bids_need_an_active_auction(auction_engine, clock):
    draft = await auction_engine.create_auction(create_request(clock))

    with pytest.raises(InvalidTransition):
        await auction_engine.place_bid(bid(draft.auction_id, "carrier-a", 950))
    with pytest.raises(NotFound):
        await auction_engine.place_bid(bid("AUC-missing", "carrier-a", 950))
    assert (await auction_engine.get_auction(draft.auction_id)).bids_count == 0


@pytest.mark.asyncio
async def test_duplicate_bid_is_rejected(auction_engine, live_auction):
    await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 1000))

    with pytest.raises(DuplicateBid):
        await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 950))

    auction = await auction_engine.get_auction(live_auction.auction_id)
    assert auction.bids_count == 1


@pytest.mark.asyncio
async def test_withdraw_decrements_and_blocks_rebid(auction_engine, live_auction):
    placed = await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 1000))

    withdrawn = await auction_engine.withdraw_bid(placed.bid_id)

    assert withdrawn.status == BidStatus.WITHDRAWN
    assert (await auction_engine.get_auction(live_auction.auction_id)).bids_count == 0
    with pytest.raises(InvalidTransition):
        await auction_engine.withdraw_bid(placed.bid_id)
    with pytest.raises(DuplicateBid):
        await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 990))
    assert (await auction_engine.get_auction(live_auction.auction_id)).bids_count == 0


@pytest.mark.asyncio
async def test_update_bid_rescores(auction_engine, live_auction):
    placed = await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 1000))

    updated = await auction_engine.update_bid(
        placed.bid_id, BidUpdateRequest(amount=800, notes="can load early")
    )

    assert updated.amount == 800
    assert updated.notes == "can load early"
    assert updated.weighted_score == pytest.approx(0.3 * 0.8 + 0.08 + 0.09)

    await auction_engine.end_auction(live_auction.auction_id)
    with pytest.raises(InvalidTransition):
        await auction_engine.update_bid(placed.bid_id, BidUpdateRequest(amount=700))
    with pytest.raises(InvalidTransition):
        await auction_engine.activate_bid(placed.bid_id)


@pytest.mark.asyncio
async def test_end_requires_active_and_is_idempotent_once_complete(auction_engine, live_auction, sink, clock):
    draft = await auction_engine.create_auction(create_request(clock, load_id="LD-2002"))
    with pytest.raises(InvalidTransition):
        await auction_engine.end_auction(draft.auction_id)

    first = await auction_engine.end_auction(live_auction.auction_id)
    second = await auction_engine.end_auction(live_auction.auction_id)

    assert first == second
    assert len(sink.of_type("auction.completed")) == 1


@pytest.mark.asyncio
async def test_failed_event_sink_does_not_fail_the_operation(db, scoring, clock):
    engine = AuctionEngine(AuctionRepository(db), scoring, RecordingSink(fail=True), clock=clock)

    auction = await engine.create_auction(create_request(clock))

    assert await engine.get_auction(auction.auction_id) == auction


@pytest.mark.asyncio
async def test_query_auctions(auction_engine, clock):
    for i in range(3):
        await auction_engine.create_auction(create_request(clock, load_id=f"LD-{i}"))
    await auction_engine.create_auction(create_request(clock, load_id="LD-0", scheduled=True))

    page = await auction_engine.query_auctions(limit=2)
    assert page.total == 4
    assert len(page.items) == 2

    drafts = await auction_engine.query_auctions(status=AuctionStatus.DRAFT, load_id="LD-0")
    assert drafts.total == 1

    with pytest.raises(InvalidInput):
        await auction_engine.query_auctions(page=0)


@pytest.mark.asyncio
async def test_bids_by_bidder(auction_engine, live_auction):
    await auction_engine.place_bid(bid(live_auction.auction_id, "carrier-a", 1000))

    bids = await auction_engine.get_bids_by_bidder("carrier-a")
    assert [b.auction_id for b in bids] == [live_auction.auction_id]
    assert await auction_engine.get_bids_by_bidder("nobody") == []


# ── Concurrency ────────────────────────────────────


def test_concurrent_end_completes_once(auction_engine, sink, clock):
    auction = asyncio.run(auction_engine.create_auction(create_request(clock)))
    asyncio.run(auction_engine.start_auction(auction.auction_id))
    placed = asyncio.run(auction_engine.place_bid(bid(auction.auction_id, "carrier-a", 1000)))
    asyncio.run(auction_engine.activate_bid(placed.bid_id))

    def end():
        return asyncio.run(auction_engine.end_auction(auction.auction_id))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: end(), range(8)))

    assert {r.status for r in results} == {AuctionStatus.COMPLETED}
    assert {r.winning_bid_id for r in results} == {placed.bid_id}
    assert len(sink.of_type("auction.completed")) == 1


def test_concurrent_duplicate_bids_store_one(auction_engine, clock):
    auction = asyncio.run(auction_engine.create_auction(create_request(clock)))
    asyncio.run(auction_engine.start_auction(auction.auction_id))

    def place(amount):
        try:
            return asyncio.run(auction_engine.place_bid(bid(auction.auction_id, "carrier-a", amount)))
        except DuplicateBid:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(place, [900 + i for i in range(8)]))

    assert len([r for r in results if r is not None]) == 1
    assert asyncio.run(auction_engine.get_auction(auction.auction_id)).bids_count == 1
    assert len(asyncio.run(auction_engine.get_bids(auction.auction_id))) == 1
