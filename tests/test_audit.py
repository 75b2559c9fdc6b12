"""Tests for the audit trail."""

import json
from datetime import datetime, timezone
from unittest.mock import Mock

from rebalancer.automation.audit import AuditLogger, EngineEvent


def test_event_round_trips_through_dict() -> None:
    event = EngineEvent(
        event_type="SwapExecuted",
        message="swap",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        context={"amount_out": 1005},
    )
    data = event.to_dict()

    assert data["timestamp"] == "2024-01-01T00:00:00+00:00"
    assert EngineEvent.from_dict(data) == event


def test_from_dict_accepts_zulu_suffix() -> None:
    event = EngineEvent.from_dict({"event_type": "Error", "message": "x", "timestamp": "2024-01-01T00:00:00Z"})
    assert event.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_filters_by_type_and_severity() -> None:
    audit = AuditLogger()
    audit.log_swap_executed(asset_in="WETH", asset_out="USDC", amount_in=1, amount_out=2, venue_id="a")
    audit.log_error("boom")
    audit.log_stop_loss(price=10, units=0)

    assert [e.event_type for e in audit.get_events(severity="error")] == ["Error"]
    assert [e.event_type for e in audit.get_events(event_type="StopLossTriggered")] == ["StopLossTriggered"]
    assert len(audit.to_json_list()) == 3


def test_forwards_to_store() -> None:
    store = Mock()
    audit = AuditLogger(store=store)

    audit.log_liquidity_added(amount_a=1, amount_b=2, units=3)

    kwargs = store.log_event.call_args.kwargs
    assert kwargs["event_type"] == "LiquidityAdded"
    assert json.loads(kwargs["context_json"]) == {"amount_a": 1, "amount_b": 2, "units": 3}


def test_store_failure_keeps_in_memory_event() -> None:
    store = Mock()
    store.log_event.side_effect = RuntimeError("db down")
    audit = AuditLogger(store=store)

    audit.log_transfer(event_type="Deposited", asset="WETH", amount=5)

    assert [e.event_type for e in audit.events] == ["Deposited"]
