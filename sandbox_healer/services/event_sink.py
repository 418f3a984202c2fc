"""
Event Sink
==========
Best-effort progress notifications emitted by the heal loop.

Sinks:
    - LoggingEventSink  → writes every event to the log
    - TimelineEventSink → keeps events in memory (API status view, tests)
    - WebhookEventSink  → POSTs events as JSON to EVENT_WEBHOOK_URL

Delivery is at-most-once. A failing sink never stops the loop; callers log
and swallow notify() errors.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from sandbox_healer.core.config import EVENT_WEBHOOK_URL

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PHASE_STARTED = "phase_started"
    SANDBOX_ITERATION = "sandbox_iteration"
    SANDBOX_FIX = "sandbox_fix"
    ENV_REQUIRED = "env_required"
    SANDBOX_PASSED = "sandbox_passed"
    SANDBOX_FAILED = "sandbox_failed"
    PHASE_FAILED = "phase_failed"
    PHASE_COMPLETE = "phase_complete"


class EventSink(Protocol):
    async def notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None: ...


def build_event(project_id: str, event_type: EventType, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "project_id": project_id,
        "type": event_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


class LoggingEventSink:
    async def notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        logger.info("[EVENT] %s | %s | %s", project_id, event_type.value, payload)


class TimelineEventSink:
    """Keeps every event in memory, newest last."""

    def __init__(self) -> None:
        self.timeline: List[Dict[str, Any]] = []

    async def notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.timeline.append(build_event(project_id, event_type, payload))

    def events_for(self, project_id: str, event_type: Optional[EventType] = None) -> List[Dict[str, Any]]:
        return [
            e for e in self.timeline
            if e["project_id"] == project_id
            and (event_type is None or e["type"] == event_type.value)
        ]


class WebhookEventSink:
    """POSTs each event to a webhook. Raises on HTTP errors; the caller decides what to do."""

    def __init__(self, url: str = EVENT_WEBHOOK_URL, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = {"User-Agent": "Sandbox-Healer"}

    async def notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        if not self.url:
            return
        async with httpx.AsyncClient(headers=self.headers, timeout=self.timeout) as client:
            response = await client.post(self.url, json=build_event(project_id, event_type, payload))
            response.raise_for_status()


class FanOutEventSink:
    """Delivers to every sink in order; one sink failing does not block the others."""

    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self.sinks = list(sinks)

    async def notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.notify(project_id, event_type, payload)
            except Exception as e:
                logger.warning(
                    "Event sink %s failed for %s: %s",
                    type(sink).__name__, event_type.value, e, exc_info=True,
                )
