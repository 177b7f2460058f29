"""
Domain event publishing. Delivery is best effort: a failed publish is
logged and never fails the operation that produced the event.
"""

import logging
from typing import Any

import httpx

from market_intel.models.enums import EventType
from market_intel.services.interfaces import EventSink
from market_intel.utils.dates import utc_now

log = logging.getLogger(__name__)


class LoggingEventSink:
    async def publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        log.info("event %s %s", EventType(event_type).value, payload)


class WebhookEventSink:
    """POSTs each event as JSON to a single webhook URL."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        body = {
            "type": EventType(event_type).value,
            "occurred_at": utc_now().isoformat(),
            "data": payload,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json=body)
            resp.raise_for_status()


async def publish_safely(
    sink: EventSink, event_type: EventType, payload: dict[str, Any]
) -> None:
    try:
        await sink.publish(event_type, payload)
    except Exception as exc:
        log.warning(
            "Failed to publish %s: %s", EventType(event_type).value, exc
        )
