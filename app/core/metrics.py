"""
Request/event observability sinks.

The application holds one sink instance (see app.main) and hands it to whatever
needs to record events; nothing here is a module-level mutable buffer.
"""
from collections import Counter, deque
from typing import Any, Deque, Dict, Protocol

import structlog

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    def record(self, event: Dict[str, Any]) -> None: ...


class LoggingEventSink:
    """Forward every event to the structured log."""

    def record(self, event: Dict[str, Any]) -> None:
        payload = dict(event)
        event_type = payload.pop("type", "event")
        logger.debug(f"{event_type}_event", **payload)


class InMemoryEventSink:
    """Bounded in-memory sink backing the /metrics endpoint and tests."""

    def __init__(self, max_samples: int = 1000):
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max_samples)

    def record(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))

    def summary(self) -> Dict[str, Any]:
        requests = [e for e in self.events if e.get("type") == "request"]
        durations = sorted(e.get("duration", 0.0) for e in requests)
        by_status = Counter(str(e.get("status_code")) for e in requests)

        p95 = durations[int(len(durations) * 0.95) - 1] if durations else 0.0
        return {
            "samples": len(self.events),
            "requests": len(requests),
            "errors": sum(1 for e in requests if e.get("status_code", 0) >= 500),
            "by_status": dict(by_status),
            "avg_duration": round(sum(durations) / len(durations), 3) if durations else 0.0,
            "p95_duration": p95,
        }


class FanOutEventSink:
    def __init__(self, *sinks: EventSink):
        self.sinks = sinks

    def record(self, event: Dict[str, Any]) -> None:
        for sink in self.sinks:
            sink.record(event)
