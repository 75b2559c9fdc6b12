from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from rebalancer.automation.audit import EngineEvent
from rebalancer.persistence.interfaces import EventStore, PositionSnapshotStore
from rebalancer.portfolio.position import Position


class MemoryEventStore(EventStore):
    """Keeps events in process memory; used when DATABASE_URL is not set."""

    def __init__(self) -> None:
        self._events: list[EngineEvent] = []

    def log_event(
        self,
        *,
        event_type: str,
        message: str,
        severity: str = "info",
        event_time: datetime | None = None,
        context_json: str | None = None,
    ) -> None:
        self._events.append(
            EngineEvent(
                event_type=event_type,  # type: ignore[arg-type]
                message=message,
                severity=severity,  # type: ignore[arg-type]
                timestamp=event_time or datetime.now(timezone.utc),
                context=json.loads(context_json) if context_json else {},
            )
        )

    def get_events(
        self,
        *,
        event_type: str | None = None,
        start: datetime | None = None,
        limit: int = 1000,
    ) -> Sequence[EngineEvent]:
        events = [
            e
            for e in reversed(self._events)
            if (event_type is None or e.event_type == event_type) and (start is None or e.timestamp >= start)
        ]
        return events[:limit]


class MemoryPositionStore(PositionSnapshotStore):
    def __init__(self) -> None:
        self._latest: Optional[Position] = None

    def save_position(self, *, position: Position) -> None:
        self._latest = replace(position)

    def load_position(self) -> Optional[Position]:
        return self._latest
