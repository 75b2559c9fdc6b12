"""Tests for the operator API endpoints over a paper engine."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from rebalancer.automation.scheduler import TickResult
from rebalancer.engine import create_paper_engine
from rebalancer.storage.noop_stores import MemoryEventStore

from conftest import OPERATOR

HEADERS = {"X-Operator": OPERATOR}
WETH = 10**18
USDC = 10**6


@pytest.fixture
def api_engine(engine_config, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    engine = create_paper_engine(engine_config, price=2_000 * 10**8)
    with patch("api.main._engine", engine), patch("api.main._stores", None):
        yield engine


@pytest.fixture
def client(api_engine) -> TestClient:
    from api.main import app

    return TestClient(app)


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["scheduler_state"] == "idle"
    assert data["database"] == {"configured": False}


def test_position_and_policy(client: TestClient) -> None:
    position = client.get("/position").json()
    policy = client.get("/policy").json()

    assert position["balances"] == {"WETH": 0, "USDC": 0}
    assert position["last_reference_price"] == 0
    assert policy["rebalance_threshold_bps"] == 200


def test_policy_update(client: TestClient) -> None:
    response = client.put("/policy/stop_loss_threshold_bps", json={"value": 750}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["stop_loss_threshold_bps"] == 750


def test_policy_update_requires_operator(client: TestClient) -> None:
    response = client.put("/policy/stop_loss_threshold_bps", json={"value": 750})

    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


def test_policy_update_rejects_negative_and_unknown(client: TestClient) -> None:
    assert client.put("/policy/stop_loss_threshold_bps", json={"value": -1}, headers=HEADERS).status_code == 422
    assert client.put("/policy/leverage", json={"value": 1}, headers=HEADERS).status_code == 400


def test_fund_provide_and_swap(client: TestClient) -> None:
    assert client.post("/deposit", json={"asset": "WETH", "amount": 5 * WETH}, headers=HEADERS).json() == {
        "asset": "WETH",
        "balance": 5 * WETH,
    }
    client.post("/deposit", json={"asset": "USDC", "amount": 10_000 * USDC}, headers=HEADERS)

    provided = client.post(
        "/liquidity/provide", json={"amount_a": 2 * WETH, "amount_b": 4_000 * USDC}, headers=HEADERS
    ).json()
    assert provided["status"] == "executed"
    assert provided["units"] > 0

    swapped = client.post("/swap", json={"amount_in": WETH, "path": ["WETH", "USDC"]}, headers=HEADERS).json()
    assert swapped["status"] == "executed"
    assert len(swapped["quotes"]) == 2

    removed = client.post("/liquidity/remove", json={"units": provided["units"]}, headers=HEADERS).json()
    assert removed["status"] == "executed"

    events = client.get("/events", params={"event_type": "SwapExecuted"}).json()["events"]
    assert len(events) == 1


def test_swap_invalid_path(client: TestClient) -> None:
    response = client.post("/swap", json={"amount_in": 1, "path": ["WETH", "DAI"]}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


def test_withdraw_more_than_held(client: TestClient) -> None:
    response = client.post("/withdraw", json={"asset": "WETH", "amount": 1}, headers=HEADERS)
    assert response.status_code == 400


def test_rebalance_then_upkeep(client: TestClient, api_engine) -> None:
    rebalanced = client.post("/rebalance", headers=HEADERS).json()
    assert rebalanced["price"] == 2_000 * 10**8

    api_engine.oracle.set_price(2_100 * 10**8)
    upkeep = client.get("/upkeep").json()
    assert upkeep["needed"] is True
    assert upkeep["decision"] == "rebalance"
    assert upkeep["price_diff_bps"] == 500


def test_tick(client: TestClient) -> None:
    response = client.post("/tick", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["decision"] == "none"
    assert data["states"] == ["evaluating", "idle"]


def test_tick_in_progress_is_conflict(client: TestClient, api_engine) -> None:
    rejected = TickResult(status="rejected", started_at=datetime.now(timezone.utc), reason="tick already in progress")
    with patch.object(api_engine, "tick", AsyncMock(return_value=rejected)):
        response = client.post("/tick", headers=HEADERS)

    assert response.status_code == 409
    assert response.json()["error"] == "tick_in_progress"


def test_mitigate_queue_and_direct(client: TestClient, api_engine) -> None:
    queued = client.post(
        "/mitigate", json={"impermanent_loss_bps": 700, "queue_for_next_tick": True}, headers=HEADERS
    ).json()
    assert queued["queued"] is True
    assert api_engine.scheduler.pending_signal.impermanent_loss_bps == 700

    direct = client.post("/mitigate", json={"impermanent_loss_bps": 700}, headers=HEADERS).json()
    assert direct["fired"] is False
    assert direct["outcome"]["status"] == "no_action"


def test_engine_without_database_uses_memory_stores(monkeypatch) -> None:
    from api import main

    monkeypatch.setenv("REBALANCER_OPERATOR", OPERATOR)
    monkeypatch.setenv("REBALANCER_MAX_ORDER_SIZE", str(10**24))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with patch("api.main._engine", None), patch("api.main._stores", None):
        client = TestClient(main.app)
        client.post("/deposit", json={"asset": "WETH", "amount": WETH}, headers=HEADERS)
        events = client.get("/events").json()["events"]
        engine = main._engine

    assert isinstance(engine.event_store, MemoryEventStore)
    assert [e["event_type"] for e in events] == ["Deposited"]


def test_events_served_from_store(engine_config) -> None:
    from api.main import app

    store = MemoryEventStore()
    store.log_event(event_type="Rebalanced", message="before restart")
    engine = create_paper_engine(engine_config, price=2_000 * 10**8, event_store=store)
    with patch("api.main._engine", engine), patch("api.main._stores", None):
        events = TestClient(app).get("/events").json()["events"]

    assert engine.events == []
    assert [e["message"] for e in events] == ["before restart"]
