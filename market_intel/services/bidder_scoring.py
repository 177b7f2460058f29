"""
Bidder efficiency and network-contribution scores. Live scoring service
when BIDDER_SCORING_URL is set, deterministic mock scores otherwise.
"""

import hashlib
import logging
from typing import Optional

import httpx
from cachetools import TTLCache

from market_intel.models.enums import BidderType
from market_intel.models.market_data import BidderScores
from market_intel.utils.http import get_json

log = logging.getLogger(__name__)

def _mock_score(*parts: str) -> float:
    digest = hashlib.sha256("|".join(parts).encode()).digest()
    return round(40 + 60 * int.from_bytes(digest[:2], "big") / 65535, 1)


def _clamp_score(value) -> float:
    return max(0.0, min(100.0, float(value)))


class BidderScoringClient:
    def __init__(
        self,
        base_url: str = "",
        timeout: float = 5.0,
        score_cache: Optional[TTLCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.score_cache = (
            score_cache if score_cache is not None else TTLCache(maxsize=2048, ttl=600)
        )

    async def score(
        self, bidder_id: str, bidder_type: str, load_id: str
    ) -> BidderScores:
        cache_key = (bidder_id, load_id)
        if cache_key in self.score_cache:
            return self.score_cache[cache_key]

        if not self.base_url:
            result = BidderScores(
                efficiency=_mock_score("eff", bidder_id, load_id),
                network_contribution=_mock_score("net", bidder_id, load_id),
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                data = await get_json(
                    client,
                    f"{self.base_url}/bidders/{bidder_id}/scores",
                    {"bidder_type": BidderType(bidder_type).value, "load_id": load_id},
                )
            result = BidderScores(
                efficiency=_clamp_score(data.get("efficiency", 0)),
                network_contribution=_clamp_score(
                    data.get("network_contribution", 0)
                ),
            )
            log.debug("Scores for %s on %s: %s", bidder_id, load_id, result)
        self.score_cache[cache_key] = result
        return result
