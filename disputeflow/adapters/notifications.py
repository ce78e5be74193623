"""Notification / event sink.

Timeline events are persisted by the state machine; sinks only fan them out
after commit and must never hold up or fail a transition.
"""

from abc import ABC, abstractmethod
from typing import Any
import uuid

import httpx

from disputeflow.config import settings
from disputeflow.core.logging import log
from disputeflow.tasks.background import fire_and_forget


class EventSink(ABC):
    @abstractmethod
    async def emit(self, dispute_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        ...


class LogEventSink(EventSink):
    """Writes events to the application log."""

    async def emit(self, dispute_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        log.info(f"Dispute event {event_type}", dispute_id=str(dispute_id), payload=payload)


class WebhookEventSink(EventSink):
    """POSTs events to the marketplace notification service."""

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def emit(self, dispute_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        body = {"dispute_id": str(dispute_id), "event_type": event_type, "payload": payload}
        if self._client is not None:
            response = await self._client.post(self.url, json=body, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.url, json=body, timeout=self.timeout)
        if response.status_code >= 400:
            log.warning(f"Notification webhook rejected {event_type}: {response.status_code} - {response.text}")


def default_sink() -> EventSink:
    url = settings.get("NOTIFICATION_WEBHOOK_URL", "")
    if url:
        return WebhookEventSink(url)
    return LogEventSink()


def publish(sink: EventSink, dispute_id: uuid.UUID, events: list[tuple[str, dict[str, Any]]]) -> None:
    """Hand committed events to the sink in the background, in order."""
    if not events:
        return

    async def _emit_all():
        for event_type, payload in events:
            try:
                await sink.emit(dispute_id, event_type, payload)
            except Exception as e:
                log.warning(f"Event sink failed on {event_type} for dispute {dispute_id}: {e}")

    fire_and_forget(_emit_all(), label="notify")
