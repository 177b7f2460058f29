"""
Region geography: alias lookup first, then a fuzzy match for near misses.
Region resolution: alias → canonical → "City, ST" → state → fuzzy.
"""

import logging
import math
from typing import NamedTuple

from rapidfuzz import fuzz, process

from market_intel.db.region_data import (
    CITY_COORDS,
    REGION_ALIASES,
    REGION_CENTERS,
    STATE_TO_REGION,
)

log = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8
DEFAULT_CITY_RADIUS_MILES = 50.0

DEFAULT_REGIONS = ("Midwest", "Northeast", "Southeast", "Southwest", "West")

_ALIAS_KEYS = list(REGION_ALIASES.keys())
_CITY_KEYS = list(CITY_COORDS.keys())


class RegionInfo(NamedTuple):
    name: str
    latitude: float
    longitude: float
    radius_miles: float


def haversine_miles(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Great-circle distance between two points in miles."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.asin(math.sqrt(a))


def _clean(raw: str) -> str:
    cleaned = raw.lower().strip()
    for prefix in ("the ", "greater "):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix) :]
    for suffix in (" region", " area", " metro"):
        if cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)]
    return cleaned.strip()


def _region(name: str) -> RegionInfo:
    lat, lng, radius = REGION_CENTERS[name]
    return RegionInfo(name, lat, lng, radius)


def _city(city_key: str) -> RegionInfo:
    city, state = city_key.rsplit(",", 1)
    label = f"{city.strip().title()}, {state.strip().upper()}"
    lat, lng = CITY_COORDS[city_key]
    return RegionInfo(label, lat, lng, DEFAULT_CITY_RADIUS_MILES)


def resolve_region(raw_input: str) -> RegionInfo | None:
    """
    Resolve a region or "City, ST" label to a named center.

    Cities keep their own label and a metro-sized radius; states and
    aliases collapse to their canonical region.
    """
    if not raw_input or not raw_input.strip():
        return None

    cleaned = _clean(raw_input)

    if cleaned in REGION_ALIASES:
        return _region(REGION_ALIASES[cleaned])

    for name in REGION_CENTERS:
        if cleaned == name.lower():
            return _region(name)

    if cleaned in CITY_COORDS:
        return _city(cleaned)

    if len(cleaned) == 2 and cleaned.upper() in STATE_TO_REGION:
        return _region(STATE_TO_REGION[cleaned.upper()])

    if "," in cleaned:
        state = cleaned.rsplit(",", 1)[1].strip().upper()
        city_match = process.extractOne(
            cleaned, _CITY_KEYS, scorer=fuzz.WRatio, score_cutoff=88
        )
        if city_match:
            city_key, _score, _idx = city_match
            return _city(city_key)
        if state in STATE_TO_REGION:
            return _region(STATE_TO_REGION[state])

    match = process.extractOne(
        cleaned, _ALIAS_KEYS, scorer=fuzz.WRatio, score_cutoff=80
    )
    if match:
        alias, _score, _idx = match
        log.debug("Fuzzy region match '%s' -> '%s'", raw_input, alias)
        return _region(REGION_ALIASES[alias])

    return None


def normalize_region(raw_input: str) -> str:
    """Canonical label for a region, or the trimmed input when unknown."""
    info = resolve_region(raw_input)
    return info.name if info else raw_input.strip()


def default_regions() -> list[str]:
    return list(DEFAULT_REGIONS)
