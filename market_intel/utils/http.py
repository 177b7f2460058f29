import asyncio
import logging
from typing import Any, Optional

import httpx

from market_intel.errors import ExternalServiceError

log = logging.getLogger(__name__)

_RETRY_ATTEMPTS = 3
_RETRY_INITIAL_DELAY = 0.5  # seconds
_RETRY_BACKOFF = 2.0
_RETRY_MAX_DELAY = 10.0


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[dict[str, Any]] = None,
    attempts: int = _RETRY_ATTEMPTS,
    initial_delay: float = _RETRY_INITIAL_DELAY,
) -> Any:
    """GET with retry and exponential backoff.

    4xx responses other than 429 are not retried. Raises
    ExternalServiceError once attempts are exhausted.
    """
    delay = initial_delay
    last_error = ""
    for attempt in range(1, attempts + 1):
        try:
            resp = await client.get(url, params=params)
            if resp.status_code == 200:
                return resp.json()
            last_error = f"HTTP {resp.status_code}"
            log.warning(
                "GET %s attempt %d/%d: %s", url, attempt, attempts, last_error
            )
            if 400 <= resp.status_code < 500 and resp.status_code != 429:
                break
        except (httpx.HTTPError, ValueError) as exc:
            last_error = str(exc) or type(exc).__name__
            log.warning(
                "GET %s attempt %d/%d failed: %s", url, attempt, attempts, exc
            )
        if attempt < attempts:
            await asyncio.sleep(delay)
            delay = min(delay * _RETRY_BACKOFF, _RETRY_MAX_DELAY)

    raise ExternalServiceError(f"GET {url} failed: {last_error}")
