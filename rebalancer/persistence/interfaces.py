from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from rebalancer.automation.audit import EngineEvent
from rebalancer.portfolio.position import Position


class EventStore(Protocol):
    def log_event(
        self,
        *,
        event_type: str,
        message: str,
        severity: str = "info",
        event_time: datetime | None = None,
        context_json: str | None = None,
    ) -> None:
        """Persist an audit event (liquidity, swaps, rebalances, errors)."""

    def get_events(
        self,
        *,
        event_type: str | None = None,
        start: datetime | None = None,
        limit: int = 1000,
    ) -> Sequence[EngineEvent]:
        """List events, newest first, with optional filters."""


class PositionSnapshotStore(Protocol):
    def save_position(self, *, position: Position) -> None:
        """Persist the latest committed position."""

    def load_position(self) -> Optional[Position]:
        """Fetch the most recent position snapshot, if any."""
