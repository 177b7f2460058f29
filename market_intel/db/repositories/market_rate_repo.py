import sqlite3
import uuid
from datetime import datetime
from typing import Optional

from market_intel.db.connection import Database
from market_intel.errors import InvalidInput, NotFound
from market_intel.models.enums import EquipmentType
from market_intel.models.market_rate import MarketRate
from market_intel.utils.dates import parse_dt, to_iso

_LANE_WHERE = (
    "origin_region = ? AND destination_region = ? AND equipment_type = ?"
)


def _row_to_rate(row: sqlite3.Row) -> MarketRate:
    data = dict(row)
    data["recorded_at"] = parse_dt(data["recorded_at"])
    return MarketRate(**data)


def _lane(origin: str, destination: str, equipment: EquipmentType) -> tuple:
    return (origin, destination, EquipmentType(equipment).value)


class MarketRateRepository:
    """Per-lane market rate samples, append-only except corrections."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, rate_id: str) -> Optional[MarketRate]:
        with self.db.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM market_rates WHERE rate_id = ?", (rate_id,)
            ).fetchone()
        return _row_to_rate(row) if row else None

    def find_latest(
        self, origin: str, destination: str, equipment: EquipmentType
    ) -> Optional[MarketRate]:
        with self.db.get_db() as conn:
            row = conn.execute(
                f"""SELECT * FROM market_rates WHERE {_LANE_WHERE}
                    ORDER BY recorded_at DESC LIMIT 1""",
                _lane(origin, destination, equipment),
            ).fetchone()
        return _row_to_rate(row) if row else None

    def find_historical(
        self,
        origin: str,
        destination: str,
        equipment: EquipmentType,
        since: datetime,
    ) -> list[MarketRate]:
        """Samples on the lane recorded at or after ``since``, oldest first."""
        with self.db.get_db() as conn:
            rows = conn.execute(
                f"""SELECT * FROM market_rates
                    WHERE {_LANE_WHERE} AND recorded_at >= ?
                    ORDER BY recorded_at ASC""",
                (*_lane(origin, destination, equipment), to_iso(since)),
            ).fetchall()
        return [_row_to_rate(r) for r in rows]

    def find_in_window(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        regions: Optional[list[str]] = None,
        equipment_types: Optional[list[EquipmentType]] = None,
    ) -> list[MarketRate]:
        """Samples across lanes, optionally limited to regions on either end."""
        clauses = ["recorded_at >= ?"]
        params: list = [to_iso(since)]
        if until is not None:
            clauses.append("recorded_at <= ?")
            params.append(to_iso(until))
        if regions:
            marks = ",".join("?" * len(regions))
            clauses.append(
                f"(origin_region IN ({marks}) OR destination_region IN ({marks}))"
            )
            params.extend(regions)
            params.extend(regions)
        if equipment_types:
            marks = ",".join("?" * len(equipment_types))
            clauses.append(f"equipment_type IN ({marks})")
            params.extend(EquipmentType(e).value for e in equipment_types)

        with self.db.get_db() as conn:
            rows = conn.execute(
                f"""SELECT * FROM market_rates WHERE {' AND '.join(clauses)}
                    ORDER BY recorded_at ASC""",
                params,
            ).fetchall()
        return [_row_to_rate(r) for r in rows]

    def save(self, rate: dict) -> MarketRate:
        """
        Append a sample. ``recorded_at`` must be later than the lane's
        latest sample; the check and insert share one write transaction.
        """
        lane = _lane(
            rate["origin_region"],
            rate["destination_region"],
            rate["equipment_type"],
        )
        recorded_at = to_iso(rate["recorded_at"])
        rate_id = rate.get("rate_id") or f"MR-{uuid.uuid4().hex[:12]}"

        with self.db.transaction() as conn:
            latest = conn.execute(
                f"SELECT MAX(recorded_at) FROM market_rates WHERE {_LANE_WHERE}",
                lane,
            ).fetchone()[0]
            if latest is not None and recorded_at <= latest:
                raise InvalidInput(
                    f"recorded_at {recorded_at} is not after the lane's "
                    f"latest sample ({latest})"
                )
            conn.execute(
                """INSERT INTO market_rates
                   (rate_id, origin_region, destination_region,
                    equipment_type, average_rate, min_rate, max_rate,
                    sample_size, recorded_at)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (
                    rate_id,
                    *lane,
                    rate["average_rate"],
                    rate["min_rate"],
                    rate["max_rate"],
                    rate.get("sample_size", 0),
                    recorded_at,
                ),
            )
        return self.get(rate_id)

    def update(self, rate_id: str, changes: dict) -> MarketRate:
        """Corrective update. Only the figures and sample size may change."""
        allowed = {"average_rate", "min_rate", "max_rate", "sample_size"}
        fields = {k: v for k, v in changes.items() if k in allowed and v is not None}
        with self.db.get_db() as conn:
            if fields:
                assignments = ", ".join(f"{k} = ?" for k in fields)
                cur = conn.execute(
                    f"UPDATE market_rates SET {assignments} WHERE rate_id = ?",
                    (*fields.values(), rate_id),
                )
                found = cur.rowcount > 0
            else:
                found = conn.execute(
                    "SELECT 1 FROM market_rates WHERE rate_id = ?", (rate_id,)
                ).fetchone() is not None
        if not found:
            raise NotFound(f"Market rate {rate_id} not found")
        return self.get(rate_id)
