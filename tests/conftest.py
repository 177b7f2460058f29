"""Shared fixtures: a temporary sqlite file per test and in-memory fakes
for the external collaborators."""

from datetime import datetime, timedelta

import pytest

from market_intel.db.connection import Database
from market_intel.db.repositories.auction_repo import AuctionRepository
from market_intel.db.repositories.forecast_repo import ForecastRepository
from market_intel.db.repositories.hotspot_repo import HotspotRepository
from market_intel.db.repositories.market_rate_repo import MarketRateRepository
from market_intel.db.schema import init_db
from market_intel.errors import ExternalServiceError
from market_intel.models.enums import RateTrend
from market_intel.models.market_data import (
    BidderScores,
    CurrentRate,
    MarketTrend,
    SupplyDemand,
)
from market_intel.services.auction_engine import AuctionEngine
from market_intel.services.cache import TTLByteCache
from market_intel.services.forecast_engine import ForecastEngine
from market_intel.services.hotspot_engine import HotspotEngine
from market_intel.services.prediction import BaselinePredictor
from market_intel.services.rate_engine import RateEngine
from market_intel.utils.dates import utc_now


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMarketData:
    """Answers from dicts keyed by (origin, destination, equipment value).

    Any method name placed in ``failing`` raises ExternalServiceError.
    """

    def __init__(self):
        self.rates: dict[tuple, CurrentRate] = {}
        self.ratios: dict[tuple, SupplyDemand] = {}
        self.trends: dict[tuple, MarketTrend] = {}
        self.weather = []
        self.default_rate = CurrentRate(rate=1500.0, min=1400.0, max=1600.0, confidence=0.8)
        self.default_ratio = SupplyDemand(ratio=1.0, confidence=0.9)
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise ExternalServiceError(f"{name} unavailable")

    async def current_rate(self, origin, destination, equipment):
        self._check("current_rate")
        return self.rates.get((origin, destination, equipment.value), self.default_rate)

    async def supply_demand_ratio(self, origin, destination, equipment):
        self._check("supply_demand_ratio")
        return self.ratios.get(
            (origin, destination, equipment.value), self.default_ratio
        )

    async def market_trend(self, origin, destination, equipment, days):
        self._check("market_trend")
        return self.trends.get(
            (origin, destination, equipment.value),
            MarketTrend(trend=RateTrend.STABLE, magnitude=0.0, confidence=0.5),
        )

    async def weather_impacts(self, regions):
        self._check("weather_impacts")
        return list(self.weather)


class FakeScoring:
    def __init__(self, scores: dict[str, tuple[float, float]] | None = None):
        self.scores = scores or {}

    async def score(self, bidder_id, bidder_type, load_id):
        efficiency, network = self.scores.get(bidder_id, (50.0, 50.0))
        return BidderScores(efficiency=efficiency, network_contribution=network)


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, dict]] = []
        self.fail = fail

    async def publish(self, event_type, payload):
        if self.fail:
            raise RuntimeError("broker down")
        self.events.append((event_type.value, payload))

    def of_type(self, event_type: str) -> list[dict]:
        return [p for t, p in self.events if t == event_type]


@pytest.fixture
def clock():
    return FixedClock(utc_now())


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "market_intel.db")
    init_db(database)
    return database


@pytest.fixture
def rate_store(db):
    return MarketRateRepository(db)


@pytest.fixture
def market_data():
    return FakeMarketData()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scoring():
    return FakeScoring()


@pytest.fixture
def rate_engine(rate_store, market_data, sink, clock):
    return RateEngine(rate_store, market_data, sink, clock=clock)


@pytest.fixture
def hotspot_engine(db, rate_store, market_data, sink, clock):
    return HotspotEngine(HotspotRepository(db), rate_store, market_data, sink, clock=clock)


@pytest.fixture
def forecast_cache():
    return TTLByteCache()


@pytest.fixture
def forecast_engine(db, rate_store, market_data, forecast_cache, sink, clock):
    return ForecastEngine(
        ForecastRepository(db),
        rate_store,
        market_data,
        BaselinePredictor(),
        forecast_cache,
        sink,
        clock=clock,
    )


@pytest.fixture
def auction_engine(db, scoring, sink, clock):
    return AuctionEngine(AuctionRepository(db), scoring, sink, clock=clock)


def seed_rates(store, origin, destination, equipment, values, start, step_days=1, sample_size=10):
    """Record one sample per value, ``step_days`` apart starting at ``start``."""
    saved = []
    for i, value in enumerate(values):
        saved.append(
            store.save(
                {
                    "origin_region": origin,
                    "destination_region": destination,
                    "equipment_type": equipment,
                    "average_rate": value,
                    "min_rate": value * 0.9,
                    "max_rate": value * 1.1,
                    "sample_size": sample_size,
                    "recorded_at": start + timedelta(days=i * step_days),
                }
            )
        )
    return saved
