"""
Market Intelligence API

Endpoints:
  GET  /health                       – Health check
  POST /api/rates/calculate          – Dynamic lane rate
  POST /api/rates/loads              – Rate for a load's pickup/delivery
  POST /api/forecasts                – Generate a demand forecast
  GET  /api/forecasts                – Query stored forecasts
  POST /api/hotspots/detect          – Detect and store hotspots
  POST /api/auctions                 – Create a load auction
  PATCH /api/auctions/{id}           – Edit a draft or scheduled auction
  POST /api/auctions/bids            – Place a bid
  POST /api/auctions/{id}/end        – Award the auction
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from market_intel.config import Settings, get_settings
from market_intel.db.connection import Database
from market_intel.db.repositories.auction_repo import AuctionRepository
from market_intel.db.repositories.forecast_repo import ForecastRepository
from market_intel.db.repositories.hotspot_repo import HotspotRepository
from market_intel.db.repositories.market_rate_repo import MarketRateRepository
from market_intel.db.schema import init_db
from market_intel.routes import auctions, forecasts, health, hotspots, rates
from market_intel.services.auction_engine import AuctionEngine
from market_intel.services.bidder_scoring import BidderScoringClient
from market_intel.services.cache import TTLByteCache
from market_intel.services.events import LoggingEventSink, WebhookEventSink
from market_intel.services.forecast_engine import ForecastEngine
from market_intel.services.hotspot_engine import HotspotEngine
from market_intel.services.market_data import MarketDataClient
from market_intel.services.prediction import BaselinePredictor
from market_intel.services.rate_engine import RateEngine
from market_intel.services.scheduler import MaintenanceScheduler

log = logging.getLogger(__name__)


def build_engines(app: FastAPI, s: Settings) -> None:
    db = Database(s.db_path)
    init_db(db)

    rate_store = MarketRateRepository(db)
    market_data = MarketDataClient(
        s.market_data_url, s.market_data_api_key, s.external_timeout_seconds
    )
    events = (
        WebhookEventSink(s.event_webhook_url, s.external_timeout_seconds)
        if s.event_webhook_url
        else LoggingEventSink()
    )

    app.state.rate_engine = RateEngine(
        rate_store, market_data, events, default_base_rate=s.default_base_rate
    )
    app.state.forecast_engine = ForecastEngine(
        ForecastRepository(db),
        rate_store,
        market_data,
        BaselinePredictor(),
        TTLByteCache(),
        events,
        cache_ttl_seconds=s.forecast_cache_ttl_seconds,
        validity_days=s.forecast_validity_days,
    )
    app.state.hotspot_engine = HotspotEngine(
        HotspotRepository(db),
        rate_store,
        market_data,
        events,
        radius_miles=s.hotspot_radius_miles,
        validity_hours=s.hotspot_validity_hours,
    )
    app.state.auction_engine = AuctionEngine(
        AuctionRepository(db),
        BidderScoringClient(s.bidder_scoring_url, s.external_timeout_seconds),
        events,
        rate_engine=app.state.rate_engine,
        auto_activate_bids=s.auto_activate_bids,
        normalize_weights=s.normalize_auction_weights,
    )
    app.state.scheduler = MaintenanceScheduler(
        app.state.forecast_engine,
        app.state.hotspot_engine,
        forecast_interval_seconds=s.forecast_interval_seconds,
        detection_interval_seconds=s.hotspot_detection_interval_seconds,
        expiry_interval_seconds=s.hotspot_expiry_interval_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    s: Settings = app.state.settings
    logging.basicConfig(
        level=s.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    build_engines(app, s)
    log.info("%s ready", s.app_name)
    log.info("  Database    : %s", s.db_path)
    log.info("  Market data : %s", "live" if s.market_data_url else "mock mode")
    log.info("  Scoring     : %s", "live" if s.bidder_scoring_url else "mock mode")
    log.info("  Events      : %s", "webhook" if s.event_webhook_url else "log")
    app.state.scheduler.start()
    yield
    await app.state.scheduler.stop()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(
        title="Market Intelligence API",
        description="Dynamic lane pricing, demand forecasts, hotspots and load auctions.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(rates.router)
    app.include_router(forecasts.router)
    app.include_router(hotspots.router)
    app.include_router(auctions.router)
    return app


app = create_app()
