import json
from datetime import datetime
from typing import Optional

from market_intel.db.connection import Database
from market_intel.models.enums import EquipmentType, ForecastTimeframe
from market_intel.models.forecast import DemandForecast
from market_intel.utils.dates import to_iso


class ForecastRepository:
    """Forecasts stored as JSON documents with indexed lookup columns."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, forecast: DemandForecast) -> DemandForecast:
        regions = sorted({r.region for r in forecast.regional_forecasts})
        equipment = sorted(
            {
                e.value
                for r in forecast.regional_forecasts
                for e in r.demand_levels
            }
        )
        with self.db.get_db() as conn:
            conn.execute(
                """INSERT INTO forecasts
                   (forecast_id, timeframe, generated_at, valid_until,
                    regions, equipment, payload)
                   VALUES (?,?,?,?,?,?,?)""",
                (
                    forecast.forecast_id,
                    forecast.timeframe.value,
                    to_iso(forecast.generated_at),
                    to_iso(forecast.valid_until),
                    json.dumps(regions),
                    json.dumps(equipment),
                    forecast.model_dump_json(),
                ),
            )
        return forecast

    def get(self, forecast_id: str) -> Optional[DemandForecast]:
        with self.db.get_db() as conn:
            row = conn.execute(
                "SELECT payload FROM forecasts WHERE forecast_id = ?",
                (forecast_id,),
            ).fetchone()
        return DemandForecast.model_validate_json(row["payload"]) if row else None

    def find_latest(
        self,
        timeframe: ForecastTimeframe,
        region: Optional[str] = None,
        equipment: Optional[EquipmentType] = None,
    ) -> Optional[DemandForecast]:
        """Most recent forecast for the timeframe covering region/equipment."""
        found = self.find(timeframe, region, equipment, limit=1)
        return found[0] if found else None

    def find(
        self,
        timeframe: Optional[ForecastTimeframe] = None,
        region: Optional[str] = None,
        equipment: Optional[EquipmentType] = None,
        valid_at: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[DemandForecast]:
        """Newest first. ``valid_at`` keeps forecasts still valid at that time."""
        clauses: list[str] = []
        params: list = []
        if timeframe:
            clauses.append("timeframe = ?")
            params.append(ForecastTimeframe(timeframe).value)
        if region:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(forecasts.regions) "
                "WHERE json_each.value = ?)"
            )
            params.append(region)
        if equipment:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(forecasts.equipment) "
                "WHERE json_each.value = ?)"
            )
            params.append(EquipmentType(equipment).value)
        if valid_at is not None:
            clauses.append("valid_until >= ?")
            params.append(to_iso(valid_at))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.db.get_db() as conn:
            rows = conn.execute(
                f"""SELECT payload FROM forecasts {where}
                    ORDER BY generated_at DESC LIMIT ?""",
                [*params, limit],
            ).fetchall()
        return [DemandForecast.model_validate_json(r["payload"]) for r in rows]
