from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    app_name: str = "Market Intelligence API"
    db_path: str = "data/market_intel.db"
    log_level: str = "INFO"

    # Pricing
    default_base_rate: float = 1000.0

    # Forecasts
    forecast_cache_ttl_seconds: int = 3600
    forecast_validity_days: int = 2

    # Hotspots
    hotspot_radius_miles: float = 50.0
    hotspot_validity_hours: int = 48

    # Background jobs (seconds between runs, 0 disables)
    forecast_interval_seconds: float = 3600
    hotspot_detection_interval_seconds: float = 1800
    hotspot_expiry_interval_seconds: float = 300

    # Auctions
    auto_activate_bids: bool = False
    normalize_auction_weights: bool = False

    # Collaborators (empty URL = mock mode)
    market_data_url: str = ""
    market_data_api_key: str = ""
    bidder_scoring_url: str = ""
    external_timeout_seconds: float = 5.0
    event_webhook_url: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
