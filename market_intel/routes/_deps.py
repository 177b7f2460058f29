from fastapi import HTTPException, Request

from market_intel.errors import MarketIntelError, status_for
from market_intel.services.auction_engine import AuctionEngine
from market_intel.services.forecast_engine import ForecastEngine
from market_intel.services.hotspot_engine import HotspotEngine
from market_intel.services.rate_engine import RateEngine


def http_error(exc: MarketIntelError) -> HTTPException:
    return HTTPException(status_for(exc), str(exc))


def get_rate_engine(request: Request) -> RateEngine:
    return request.app.state.rate_engine


def get_hotspot_engine(request: Request) -> HotspotEngine:
    return request.app.state.hotspot_engine


def get_forecast_engine(request: Request) -> ForecastEngine:
    return request.app.state.forecast_engine


def get_auction_engine(request: Request) -> AuctionEngine:
    return request.app.state.auction_engine
