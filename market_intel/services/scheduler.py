"""
Background maintenance run for the life of the app: periodic forecast
generation, hotspot detection from the latest forecast, and the sweep
that deactivates expired hotspots.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from market_intel.models.enums import ForecastTimeframe
from market_intel.services.forecast_engine import ForecastEngine
from market_intel.services.hotspot_engine import HotspotEngine

log = logging.getLogger(__name__)


async def run_periodic(
    name: str, job: Callable[[], Awaitable[object]], interval_seconds: float
) -> None:
    """Wait ``interval_seconds``, run ``job``, repeat until cancelled.

    A failed run is logged and the loop carries on.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            result = await job()
            log.debug("Scheduled %s finished: %s", name, result)
        except Exception as exc:
            log.error("Scheduled %s failed: %s", name, exc)


class MaintenanceScheduler:
    """Owns the periodic jobs. An interval of 0 disables that job."""

    def __init__(
        self,
        forecasts: ForecastEngine,
        hotspots: HotspotEngine,
        forecast_interval_seconds: float = 3600,
        detection_interval_seconds: float = 1800,
        expiry_interval_seconds: float = 300,
        forecast_timeframe: ForecastTimeframe = ForecastTimeframe.NEXT_24_HOURS,
    ):
        self.forecasts = forecasts
        self.hotspots = hotspots
        self.forecast_interval_seconds = forecast_interval_seconds
        self.detection_interval_seconds = detection_interval_seconds
        self.expiry_interval_seconds = expiry_interval_seconds
        self.forecast_timeframe = forecast_timeframe
        self.tasks: list[asyncio.Task] = []

    async def generate_forecast(self) -> str:
        forecast = await self.forecasts.generate_forecast(self.forecast_timeframe)
        return forecast.forecast_id

    async def detect_hotspots(self) -> int:
        forecast = await self.forecasts.latest_forecast(self.forecast_timeframe)
        if forecast is None:
            log.info("No valid forecast, scheduled scan uses market signals only")
        return len(await self.hotspots.detect_hotspots(forecast))

    async def sweep_expired(self) -> int:
        return await self.hotspots.deactivate_expired()

    def start(self) -> None:
        jobs = [
            ("forecast generation", self.generate_forecast, self.forecast_interval_seconds),
            ("hotspot detection", self.detect_hotspots, self.detection_interval_seconds),
            ("hotspot expiry", self.sweep_expired, self.expiry_interval_seconds),
        ]
        for name, job, interval in jobs:
            if interval <= 0:
                log.info("Scheduled %s disabled", name)
                continue
            self.tasks.append(
                asyncio.create_task(run_periodic(name, job, interval), name=name)
            )
            log.info("Scheduled %s every %ss", name, interval)

    async def stop(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
