"""Append-only audit trail for engine events.

The core only depends on `EventRecorder.record(event)`. `AuditLogger` keeps an
in-memory copy for the API and forwards each event to an optional persistent
`EventStore`.

All timestamps use timezone-aware UTC datetimes for consistency.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal, Optional, Protocol

if TYPE_CHECKING:
    from rebalancer.persistence.interfaces import EventStore

logger = logging.getLogger(__name__)

EventType = Literal[
    "LiquidityAdded",
    "LiquidityRemoved",
    "SwapExecuted",
    "Rebalanced",
    "ImpermanentLossMitigation",
    "StopLossTriggered",
    "PolicyUpdated",
    "Deposited",
    "Withdrawn",
    "DegenerateState",
    "Error",
]

Severity = Literal["debug", "info", "warning", "error"]


@dataclass(frozen=True)
class EngineEvent:
    """Structured audit event carrying the literal amounts involved."""

    event_type: EventType
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: Severity = "info"
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineEvent:
        data = dict(data)
        timestamp_value = data.get("timestamp")
        if isinstance(timestamp_value, str):
            ts = timestamp_value
            if ts.endswith("Z"):
                ts = ts[:-1] + "+00:00"
            try:
                data["timestamp"] = datetime.fromisoformat(ts)
            except ValueError:
                data.pop("timestamp", None)
        return cls(**data)


class EventRecorder(Protocol):
    def record(self, event: EngineEvent) -> None:
        """Append an event to the audit trail."""


class AuditLogger:
    """In-memory audit log, optionally mirrored to a persistent store."""

    def __init__(self, store: Optional[EventStore] = None) -> None:
        self.events: list[EngineEvent] = []
        self._store = store

    def record(self, event: EngineEvent) -> None:
        self.events.append(event)
        logger.log(_LEVELS[event.severity], f"{event.event_type}: {event.message}")
        if self._store is None:
            return
        try:
            self._store.log_event(
                event_type=event.event_type,
                message=event.message,
                severity=event.severity,
                event_time=event.timestamp,
                context_json=json.dumps(event.context, default=str),
            )
        except Exception:
            # In-memory trail is authoritative; store failures never fail the action.
            logger.exception(f"Failed to persist {event.event_type} event")

    def log_liquidity_added(self, *, amount_a: int, amount_b: int, units: int) -> None:
        self.record(
            EngineEvent(
                event_type="LiquidityAdded",
                message=f"Added {amount_a}/{amount_b} for {units} pool units",
                context={"amount_a": amount_a, "amount_b": amount_b, "units": units},
            )
        )

    def log_liquidity_removed(self, *, units: int, amount_a: int, amount_b: int) -> None:
        self.record(
            EngineEvent(
                event_type="LiquidityRemoved",
                message=f"Burned {units} pool units for {amount_a}/{amount_b}",
                context={"units": units, "amount_a": amount_a, "amount_b": amount_b},
            )
        )

    def log_swap_executed(
        self,
        *,
        asset_in: str,
        asset_out: str,
        amount_in: int,
        amount_out: int,
        venue_id: str,
    ) -> None:
        self.record(
            EngineEvent(
                event_type="SwapExecuted",
                message=f"Swapped {amount_in} {asset_in} -> {amount_out} {asset_out} on {venue_id}",
                context={
                    "asset_in": asset_in,
                    "asset_out": asset_out,
                    "amount_in": amount_in,
                    "amount_out": amount_out,
                    "venue_id": venue_id,
                },
            )
        )

    def log_rebalanced(self, *, previous_price: int, new_price: int, units_removed: int, units_added: int) -> None:
        self.record(
            EngineEvent(
                event_type="Rebalanced",
                message=f"Reference price {previous_price} -> {new_price}",
                context={
                    "previous_price": previous_price,
                    "new_price": new_price,
                    "units_removed": units_removed,
                    "units_added": units_added,
                },
            )
        )

    def log_stop_loss(self, *, price: int, units: int) -> None:
        self.record(
            EngineEvent(
                event_type="StopLossTriggered",
                message=f"Stop-loss at price {price}, withdrew {units} units",
                severity="warning",
                context={"price": price, "units": units},
            )
        )

    def log_mitigation(self, *, impermanent_loss_bps: int, units: int) -> None:
        self.record(
            EngineEvent(
                event_type="ImpermanentLossMitigation",
                message=f"Mitigation at IL {impermanent_loss_bps} bps, withdrew {units} units",
                context={"impermanent_loss_bps": impermanent_loss_bps, "units": units},
            )
        )

    def log_transfer(self, *, event_type: Literal["Deposited", "Withdrawn"], asset: str, amount: int) -> None:
        self.record(
            EngineEvent(
                event_type=event_type,
                message=f"{event_type} {amount} {asset}",
                context={"asset": asset, "amount": amount},
            )
        )

    def log_degenerate_state(self, reason: str) -> None:
        self.record(EngineEvent(event_type="DegenerateState", message=reason, severity="warning"))

    def log_error(self, error_message: str, context: Optional[dict[str, Any]] = None) -> None:
        self.record(
            EngineEvent(
                event_type="Error",
                message=error_message,
                severity="error",
                context=context or {},
            )
        )

    def get_events(
        self,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
    ) -> list[EngineEvent]:
        return [
            e
            for e in self.events
            if (event_type is None or e.event_type == event_type) and (severity is None or e.severity == severity)
        ]

    def to_json_list(self) -> list[dict[str, Any]]:
        return [event.to_dict() for event in self.events]


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
