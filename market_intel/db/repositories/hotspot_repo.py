import json
import sqlite3
import uuid
from datetime import datetime
from typing import Optional

from market_intel.db.connection import Database
from market_intel.models.enums import EquipmentType, HotspotSeverity, HotspotType
from market_intel.models.hotspot import Hotspot, Position
from market_intel.utils.dates import parse_dt, to_iso

_ACTIVE_WHERE = "active = 1 AND valid_from <= ? AND valid_until >= ?"


def _row_to_hotspot(row: sqlite3.Row) -> Hotspot:
    data = dict(row)
    lat = data.pop("center_lat")
    lng = data.pop("center_lng")
    return Hotspot(
        **{
            **data,
            "center": Position(latitude=lat, longitude=lng),
            "factors": json.loads(data["factors"] or "{}"),
            "detected_at": parse_dt(data["detected_at"]),
            "valid_from": parse_dt(data["valid_from"]),
            "valid_until": parse_dt(data["valid_until"]),
            "active": bool(data["active"]),
        }
    )


class HotspotRepository:
    def __init__(self, db: Database):
        self.db = db

    def save_many(self, hotspots: list[dict]) -> list[Hotspot]:
        """Insert detected hotspots in one transaction."""
        ids: list[str] = []
        with self.db.transaction() as conn:
            for h in hotspots:
                hotspot_id = h.get("hotspot_id") or f"HS-{uuid.uuid4().hex[:12]}"
                ids.append(hotspot_id)
                conn.execute(
                    """INSERT INTO hotspots
                       (hotspot_id, name, type, severity, center_lat,
                        center_lng, radius_miles, confidence_score,
                        bonus_amount, region, equipment_type, factors,
                        detected_at, valid_from, valid_until, active)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,1)""",
                    (
                        hotspot_id,
                        h["name"],
                        h["type"],
                        h["severity"],
                        h["center"]["latitude"],
                        h["center"]["longitude"],
                        h["radius_miles"],
                        h["confidence_score"],
                        h["bonus_amount"],
                        h["region"],
                        h.get("equipment_type"),
                        json.dumps(h.get("factors") or {}),
                        to_iso(h["detected_at"]),
                        to_iso(h["valid_from"]),
                        to_iso(h["valid_until"]),
                    ),
                )
        return [self.get(i) for i in ids]

    def get(self, hotspot_id: str) -> Optional[Hotspot]:
        with self.db.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM hotspots WHERE hotspot_id = ?", (hotspot_id,)
            ).fetchone()
        return _row_to_hotspot(row) if row else None

    def find_active(self, now: datetime) -> list[Hotspot]:
        stamp = to_iso(now)
        with self.db.get_db() as conn:
            rows = conn.execute(
                f"""SELECT * FROM hotspots WHERE {_ACTIVE_WHERE}
                    ORDER BY detected_at DESC""",
                (stamp, stamp),
            ).fetchall()
        return [_row_to_hotspot(r) for r in rows]

    def _find_by(
        self, column: str, value: str, now: Optional[datetime]
    ) -> list[Hotspot]:
        """All hotspots where ``column`` matches; only currently active ones when ``now``."""
        sql = f"SELECT * FROM hotspots WHERE {column} = ?"
        params: list = [value]
        if now is not None:
            stamp = to_iso(now)
            sql += f" AND {_ACTIVE_WHERE}"
            params += [stamp, stamp]
        with self.db.get_db() as conn:
            rows = conn.execute(
                sql + " ORDER BY detected_at DESC", params
            ).fetchall()
        return [_row_to_hotspot(r) for r in rows]

    def find_by_type(
        self, hotspot_type: HotspotType, now: Optional[datetime] = None
    ) -> list[Hotspot]:
        return self._find_by("type", HotspotType(hotspot_type).value, now)

    def find_by_region(
        self, region: str, now: Optional[datetime] = None
    ) -> list[Hotspot]:
        return self._find_by("region", region, now)

    def find_by_severity(
        self, severity: HotspotSeverity, now: Optional[datetime] = None
    ) -> list[Hotspot]:
        return self._find_by("severity", HotspotSeverity(severity).value, now)

    def find_by_equipment_type(
        self, equipment_type: EquipmentType, now: Optional[datetime] = None
    ) -> list[Hotspot]:
        return self._find_by(
            "equipment_type", EquipmentType(equipment_type).value, now
        )

    def find_all(self) -> list[Hotspot]:
        with self.db.get_db() as conn:
            rows = conn.execute(
                "SELECT * FROM hotspots ORDER BY detected_at DESC"
            ).fetchall()
        return [_row_to_hotspot(r) for r in rows]

    def deactivate(self, hotspot_id: str) -> bool:
        with self.db.get_db() as conn:
            cur = conn.execute(
                "UPDATE hotspots SET active = 0 WHERE hotspot_id = ?",
                (hotspot_id,),
            )
            return cur.rowcount > 0

    def deactivate_expired(self, now: datetime) -> int:
        with self.db.get_db() as conn:
            cur = conn.execute(
                "UPDATE hotspots SET active = 0 "
                "WHERE active = 1 AND valid_until < ?",
                (to_iso(now),),
            )
            return cur.rowcount
