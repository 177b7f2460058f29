import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeMarketData, FixedClock, seed_rates
from market_intel.errors import InvalidInput, MissingLocation, NotFound
from market_intel.models.enums import EquipmentType, RateTrend
from market_intel.models.market_data import SupplyDemand
from market_intel.models.market_rate import (
    LoadLocation,
    LoadRateRequest,
    MarketRateCorrection,
    MarketRateCreate,
    RateOptions,
)
from market_intel.services.rate_engine import (
    MAX_RATE_ADJUSTMENT,
    MIN_RATE_ADJUSTMENT,
    RateEngine,
    historical_trend_factor,
    mileage_rate,
    supply_demand_factor,
    urgency_factor,
)

DRY_VAN = EquipmentType.DRY_VAN


# ── Factor functions ────────────────────────────────


def test_supply_demand_factor_direction():
    assert supply_demand_factor(0.5) > 0
    assert supply_demand_factor(1.0) == 0
    assert supply_demand_factor(2.0) < 0


@pytest.mark.parametrize("ratio", [0.0, 0.1, 0.5, 1.0, 3.0, 10.0, 100.0])
def test_supply_demand_factor_is_bounded(ratio):
    assert MIN_RATE_ADJUSTMENT <= supply_demand_factor(ratio) <= MAX_RATE_ADJUSTMENT


def test_historical_trend_needs_more_than_two_samples():
    assert historical_trend_factor([]) == 0
    assert historical_trend_factor([100, 200]) == 0
    assert historical_trend_factor([100, 105, 110]) == pytest.approx(0.05)
    assert historical_trend_factor([100, 500, 1000]) == MAX_RATE_ADJUSTMENT


def test_urgency_factor_bands():
    assert urgency_factor(1) == pytest.approx(0.02)
    assert urgency_factor(3) == pytest.approx(0.01)
    assert urgency_factor(4) == 0
    assert urgency_factor(24) == 0


def test_mileage_rate_is_clamped():
    assert mileage_rate(1300, 500) == pytest.approx(2.6)
    assert mileage_rate(1300, 100) == 5.0
    assert mileage_rate(1300, 5000) == 2.0
    with pytest.raises(InvalidInput):
        mileage_rate(1300, 0)


# ── calculate_rate ─────────────────────────────────


@pytest.mark.asyncio
async def test_tight_capacity_lane_prices_above_base(rate_engine, rate_store, market_data, clock):
    seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, [1000.0], clock.now - timedelta(days=1))
    market_data.ratios[("Midwest", "Southeast", "dry_van")] = SupplyDemand(ratio=0.5, confidence=0.9)

    result = await rate_engine.calculate_rate(
        "Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=500)
    )

    assert result.base_rate == 1000.0
    assert 0 < result.factors["supply_demand"] <= MAX_RATE_ADJUSTMENT
    assert MIN_RATE_ADJUSTMENT <= result.adjustment_factor <= MAX_RATE_ADJUSTMENT
    assert result.total_rate >= 1000.0
    assert result.total_rate == pytest.approx(1000.0 * (1 + result.adjustment_factor))
    assert 2.0 <= result.mileage_rate <= 5.0
    # one stored sample is too few for a trend signal
    assert result.confidence == pytest.approx(0.95)


@pytest.mark.asyncio
async def test_adjustment_stays_bounded_for_loose_capacity(rate_engine, rate_store, market_data, clock):
    seed_rates(rate_store, "West", "Midwest", DRY_VAN, [2000.0], clock.now - timedelta(days=1))
    market_data.ratios[("West", "Midwest", "dry_van")] = SupplyDemand(ratio=25.0, confidence=0.9)

    result = await rate_engine.calculate_rate(
        "West", "Midwest", DRY_VAN, RateOptions(distance_miles=2000)
    )

    assert result.factors["supply_demand"] < 0
    assert MIN_RATE_ADJUSTMENT <= result.adjustment_factor <= MAX_RATE_ADJUSTMENT


@pytest.mark.asyncio
async def test_missing_rate_is_looked_up_and_persisted(rate_engine, rate_store, sink):
    result = await rate_engine.calculate_rate(
        "Northeast", "Southeast", DRY_VAN, RateOptions(distance_miles=800)
    )

    assert result.base_rate == 1500.0
    stored = rate_store.find_latest("Northeast", "Southeast", DRY_VAN)
    assert stored is not None
    assert stored.average_rate == 1500.0
    assert stored.sample_size == 10
    assert len(sink.of_type("market_rate.updated")) == 1


class TickingClock(FixedClock):
    def __call__(self) -> datetime:
        self.advance(seconds=1)
        return self.now


class StaggeredMarketData(FakeMarketData):
    """The first rate lookup answers last."""

    def __init__(self):
        super().__init__()
        self.delays = [0.05, 0.0]

    async def current_rate(self, origin, destination, equipment):
        delay = self.delays.pop(0) if self.delays else 0.0
        await asyncio.sleep(delay)
        return await super().current_rate(origin, destination, equipment)


@pytest.mark.asyncio
async def test_concurrent_first_quotes_on_a_new_lane(rate_store, sink, clock):
    engine = RateEngine(
        rate_store, StaggeredMarketData(), sink, clock=TickingClock(clock.now)
    )

    results = await asyncio.gather(
        *(
            engine.calculate_rate(
                "Northeast", "Southeast", DRY_VAN, RateOptions(distance_miles=800)
            )
            for _ in range(2)
        )
    )

    assert [r.base_rate for r in results] == [1500.0, 1500.0]
    assert len(rate_store.find_historical("Northeast", "Southeast", DRY_VAN, clock.now)) == 1
    assert len(sink.of_type("market_rate.updated")) == 1


@pytest.mark.asyncio
async def test_lookup_failure_falls_back_to_default_base(rate_engine, market_data):
    market_data.failing = {"current_rate", "supply_demand_ratio"}

    result = await rate_engine.calculate_rate(
        "Northeast", "Southeast", DRY_VAN, RateOptions(distance_miles=800)
    )

    assert result.base_rate == 1000.0
    # thin base -0.1, weak supply/demand -0.05, weak trend -0.05
    assert result.confidence == pytest.approx(0.8)
    assert result.factors["supply_demand"] == 0


@pytest.mark.asyncio
async def test_non_positive_stored_rate_uses_default(rate_engine, rate_store, clock):
    seed_rates(rate_store, "Midwest", "West", DRY_VAN, [0.0], clock.now - timedelta(days=1))

    result = await rate_engine.calculate_rate(
        "Midwest", "West", DRY_VAN, RateOptions(distance_miles=1700)
    )

    assert result.base_rate == 1000.0
    assert result.confidence <= 0.9


@pytest.mark.asyncio
async def test_low_provider_confidence_neutralises_ratio(rate_engine, rate_store, market_data, clock):
    seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, [1000.0], clock.now - timedelta(days=1))
    market_data.ratios[("Midwest", "Southeast", "dry_van")] = SupplyDemand(ratio=0.2, confidence=0.3)

    result = await rate_engine.calculate_rate(
        "Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=700)
    )

    assert result.factors["supply_demand"] == 0
    assert result.confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_backhaul_is_derived_from_reverse_lane_volume(rate_engine, rate_store, clock):
    start = clock.now - timedelta(days=2)
    seed_rates(rate_store, "Southeast", "Midwest", DRY_VAN, [900.0], start, sample_size=10)
    seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, [1200.0], start, sample_size=60)

    backhaul = await rate_engine.calculate_rate(
        "Southeast", "Midwest", DRY_VAN, RateOptions(distance_miles=700)
    )
    headhaul = await rate_engine.calculate_rate(
        "Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=700)
    )

    assert backhaul.factors["network_optimization"] == pytest.approx(0.1 * 0.05 * 0.3)
    assert headhaul.factors["network_optimization"] == 0


@pytest.mark.asyncio
async def test_explicit_backhaul_flag_wins(rate_engine):
    result = await rate_engine.calculate_rate(
        "Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=700, is_backhaul=True)
    )
    assert result.factors["network_optimization"] > 0


@pytest.mark.asyncio
async def test_surcharges_are_reported_separately(rate_engine, clock):
    clock.now = datetime(2026, 6, 15, 12, tzinfo=timezone.utc)

    result = await rate_engine.calculate_rate(
        "Midwest",
        "Southeast",
        DRY_VAN,
        RateOptions(distance_miles=700, is_hazardous=True, weight_lbs=45000, length_ft=48),
    )

    assert result.surcharges == {"hazardous": 100.0, "heavy_load": 75.0}
    assert result.quoted_rate == pytest.approx(result.total_rate + 175.0)


@pytest.mark.asyncio
async def test_holiday_surcharge(rate_engine, clock):
    clock.now = datetime(2026, 12, 24, 9, tzinfo=timezone.utc)

    result = await rate_engine.calculate_rate(
        "Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=700)
    )

    assert result.surcharges == {"holiday": 200.0}


@pytest.mark.asyncio
async def test_distance_from_coordinates(rate_engine):
    result = await rate_engine.calculate_rate(
        "Chicago, IL",
        "Atlanta, GA",
        DRY_VAN,
        RateOptions(
            origin_latitude=41.8781,
            origin_longitude=-87.6298,
            destination_latitude=33.7490,
            destination_longitude=-84.3880,
        ),
    )
    assert result.mileage_rate == pytest.approx(min(5.0, max(2.0, result.total_rate / 587.0)), rel=0.02)


@pytest.mark.asyncio
async def test_invalid_inputs(rate_engine):
    with pytest.raises(InvalidInput):
        await rate_engine.calculate_rate("Midwest", "Southeast", DRY_VAN, RateOptions(distance_miles=0))
    with pytest.raises(InvalidInput):
        await rate_engine.calculate_rate("", "Southeast", DRY_VAN, RateOptions(distance_miles=100))
    with pytest.raises(InvalidInput):
        await rate_engine.calculate_rate("Midwest", "Southeast", "hovercraft", RateOptions(distance_miles=100))
    with pytest.raises(InvalidInput):
        # same region center and no distance given
        await rate_engine.calculate_rate("Midwest", "IL", DRY_VAN)


# ── calculate_load_rate ────────────────────────────


def _load(locations, window_hours=1):
    earliest = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)
    return LoadRateRequest(
        load_id="LD-1",
        equipment_type=DRY_VAN,
        locations=locations,
        pickup_earliest=earliest,
        pickup_latest=earliest + timedelta(hours=window_hours),
    )


CHICAGO = LoadLocation(location_type="pickup", city="Chicago", state="IL", latitude=41.8781, longitude=-87.6298)
ATLANTA = LoadLocation(location_type="delivery", city="Atlanta", state="GA", latitude=33.7490, longitude=-84.3880)


@pytest.mark.asyncio
async def test_load_rate_uses_locations_and_pickup_window(rate_engine, rate_store):
    result = await rate_engine.calculate_load_rate(_load([CHICAGO, ATLANTA], window_hours=1))

    assert result.factors["urgency"] == pytest.approx(0.1 * 0.02)
    assert rate_store.find_latest("Chicago, IL", "Atlanta, GA", DRY_VAN) is not None


@pytest.mark.asyncio
async def test_load_without_delivery_is_rejected(rate_engine):
    with pytest.raises(MissingLocation):
        await rate_engine.calculate_load_rate(_load([CHICAGO]))
    with pytest.raises(InvalidInput):
        await rate_engine.calculate_load_rate(_load([ATLANTA]))


# ── analyze_rate_trends ────────────────────────────


@pytest.mark.asyncio
async def test_trend_without_history_is_empty(rate_engine):
    analysis = await rate_engine.analyze_rate_trends("Midwest", "Southeast", DRY_VAN)

    assert analysis.data_points == 0
    assert analysis.confidence == 0
    assert analysis.trend == RateTrend.STABLE
    assert analysis.forecast == []


@pytest.mark.asyncio
async def test_rising_trend_projects_upward(rate_engine, rate_store, clock):
    values = [1000.0 + 20 * i for i in range(10)]
    seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, values, clock.now - timedelta(days=10))

    analysis = await rate_engine.analyze_rate_trends("Midwest", "Southeast", DRY_VAN, days=30)

    assert analysis.trend == RateTrend.RISING
    assert analysis.data_points == 10
    assert analysis.min_rate == pytest.approx(900.0)
    assert analysis.max_rate == pytest.approx(1180.0 * 1.1)
    assert len(analysis.forecast) == 7
    predictions = [p.prediction for p in analysis.forecast]
    assert predictions == sorted(predictions)
    assert predictions[0] > values[-1]
    assert 0 < analysis.confidence < 1


@pytest.mark.asyncio
async def test_flat_history_is_stable(rate_engine, rate_store, clock):
    seed_rates(rate_store, "Midwest", "West", DRY_VAN, [1500.0] * 6, clock.now - timedelta(days=6))

    analysis = await rate_engine.analyze_rate_trends("Midwest", "West", DRY_VAN)

    assert analysis.trend == RateTrend.STABLE
    assert analysis.volatility == 0


# ── Market rate maintenance ───────────────────────


@pytest.mark.asyncio
async def test_recorded_at_must_increase_per_lane(rate_engine, clock):
    at = clock.now - timedelta(hours=3)
    first = await rate_engine.record_market_rate(
        MarketRateCreate(
            origin_region="Midwest",
            destination_region="Southeast",
            equipment_type=DRY_VAN,
            average_rate=1100.0,
            recorded_at=at,
        )
    )
    assert first.min_rate == first.max_rate == 1100.0

    with pytest.raises(InvalidInput):
        await rate_engine.record_market_rate(
            MarketRateCreate(
                origin_region="Midwest",
                destination_region="Southeast",
                equipment_type=DRY_VAN,
                average_rate=1150.0,
                recorded_at=at,
            )
        )

    # another lane is independent
    await rate_engine.record_market_rate(
        MarketRateCreate(
            origin_region="Southeast",
            destination_region="Midwest",
            equipment_type=DRY_VAN,
            average_rate=900.0,
            recorded_at=at,
        )
    )


@pytest.mark.asyncio
async def test_correction_changes_figures_only(rate_engine, rate_store, clock):
    [saved] = seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, [1000.0], clock.now - timedelta(days=1))

    corrected = await rate_engine.correct_market_rate(
        saved.rate_id, MarketRateCorrection(average_rate=1050.0, sample_size=12)
    )

    assert corrected.average_rate == 1050.0
    assert corrected.sample_size == 12
    assert corrected.recorded_at == saved.recorded_at
    assert corrected.origin_region == "Midwest"

    with pytest.raises(NotFound):
        await rate_engine.correct_market_rate("MR-missing", MarketRateCorrection(average_rate=1.0))


@pytest.mark.asyncio
async def test_market_rate_reads(rate_engine, rate_store, clock):
    assert await rate_engine.get_market_rate("Midwest", "Southeast", DRY_VAN) is None

    seed_rates(rate_store, "Midwest", "Southeast", DRY_VAN, [1000.0, 1010.0, 1020.0], clock.now - timedelta(days=40), step_days=15)

    latest = await rate_engine.get_market_rate("midwest", "Southeast", DRY_VAN)
    assert latest.average_rate == 1020.0
    recent = await rate_engine.get_historical_rates("Midwest", "Southeast", DRY_VAN, days=30)
    assert [r.average_rate for r in recent] == [1010.0, 1020.0]
