"""
Typed controller events and a small publish/subscribe bus.

Consumers either register a callback for one event type or open an
asyncio queue with ``stream()`` and read every event in order.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, DefaultDict, List, Optional


class EventType(str, Enum):
    INITIALIZED = "initialized"
    HEALTH_CHECK = "health_check"
    ENDPOINT_FAILED = "endpoint_failed"
    ENDPOINT_RECOVERED = "endpoint_recovered"
    FAILOVER_COMPLETED = "failover_completed"
    FAILOVER_FAILED = "failover_failed"
    NO_HEALTHY_ENDPOINTS = "no_healthy_endpoints"
    STOPPED = "stopped"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ControllerEvent:
    event_type: EventType
    message: str
    severity: Severity = Severity.INFO
    detail: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


Subscriber = Callable[[ControllerEvent], None]


class EventBus:
    """Fan-out of controller events to callbacks and queue streams."""

    def __init__(self, history_limit: int = 500) -> None:
        self._subscribers: DefaultDict[EventType, List[Subscriber]] = defaultdict(list)
        self._streams: list[asyncio.Queue] = []
        self._history: deque[ControllerEvent] = deque(maxlen=history_limit)

    def subscribe(self, event_type: EventType, handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def stream(self, maxsize: int = 0) -> asyncio.Queue:
        """Open a queue that receives every published event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._streams.append(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue) -> None:
        if queue in self._streams:
            self._streams.remove(queue)

    def publish(self, event: ControllerEvent) -> None:
        self._history.append(event)
        for handler in list(self._subscribers.get(event.event_type, [])):
            handler(event)
        for queue in list(self._streams):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer; oldest event is dropped
                queue.get_nowait()
                queue.put_nowait(event)

    def events(self, event_type: Optional[EventType] = None) -> list[ControllerEvent]:
        """Events published so far, optionally filtered by type."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.event_type == event_type]
