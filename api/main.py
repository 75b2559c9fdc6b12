"""FastAPI operator API for the liquidity rebalancing engine.

Endpoints:
- GET /health - Engine status (scheduler state, position, database)
- GET /position - Current position snapshot
- GET /policy - Current policy thresholds
- PUT /policy/{field} - Update one policy threshold
- GET /events - Audit trail (newest first)
- GET /upkeep - Read-only upkeep check against the oracle
- POST /tick - Run one scheduler tick
- POST /rebalance - Reset the reference price to the oracle price
- POST /liquidity/provide, POST /liquidity/remove
- POST /swap - Best-execution swap across venues
- POST /mitigate - Impermanent-loss mitigation with an operator signal
- POST /deposit, POST /withdraw - Fund or drain the position

Requirements:
- REBALANCER_OPERATOR must be set; mutating calls carry it in the X-Operator header
- REBALANCER_MAX_ORDER_SIZE must be set
- DATABASE_URL is optional; when set, events and position snapshots are persisted,
  otherwise they are kept in process memory
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Path, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text

from rebalancer.config import EngineConfig
from rebalancer.engine import POLICY_FIELDS, LiquidityEngine, create_paper_engine
from rebalancer.errors import InvalidInput, TickInProgress, Unauthorized
from rebalancer.persistence.interfaces import EventStore, PositionSnapshotStore
from rebalancer.storage.noop_stores import MemoryEventStore, MemoryPositionStore
from rebalancer.storage.postgres.config import PostgresConfig
from rebalancer.storage.postgres.stores import PostgresStores
from rebalancer.types import LiquidityResult, RouteResult, VolatilitySignal

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Liquidity Rebalancer API",
    description="Operator API for liquidity rebalancing and best-execution routing",
    version="1.0.0",
)

# Global engine instance (initialized on first use)
_engine: LiquidityEngine | None = None

# Global store instance, only when DATABASE_URL is set
_stores: PostgresStores | None = None


def _get_stores() -> Optional[PostgresStores]:
    """Get or initialize the database stores (None without DATABASE_URL)."""
    global _stores
    if _stores is None and os.environ.get("DATABASE_URL"):
        _stores = PostgresStores(config=PostgresConfig.from_env())
    return _stores


def _get_engine() -> LiquidityEngine:
    """Get or initialize the engine over paper collaborators."""
    global _engine
    if _engine is None:
        stores = _get_stores()
        event_store: EventStore = stores if stores is not None else MemoryEventStore()
        snapshot_store: PositionSnapshotStore = stores if stores is not None else MemoryPositionStore()
        _engine = create_paper_engine(EngineConfig.from_env(), event_store=event_store, snapshot_store=snapshot_store)
    return _engine


class AmountsRequest(BaseModel):
    amount_a: int = Field(..., gt=0)
    amount_b: int = Field(..., gt=0)


class UnitsRequest(BaseModel):
    units: int = Field(..., gt=0)


class SwapRequest(BaseModel):
    amount_in: int = Field(..., gt=0)
    path: list[str] = Field(..., min_length=2)
    min_acceptable_out: int = Field(0, ge=0)


class MitigateRequest(BaseModel):
    impermanent_loss_bps: int = Field(..., ge=0)
    source: str = Field("operator", min_length=1)
    queue_for_next_tick: bool = False


class TransferRequest(BaseModel):
    asset: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)


class PolicyUpdateRequest(BaseModel):
    value: int = Field(..., ge=0)


def _liquidity_to_response(result: LiquidityResult) -> dict[str, Any]:
    return {
        "status": result.status,
        "reason": result.reason,
        "amount_a": result.amount_a,
        "amount_b": result.amount_b,
        "units": result.units,
        "price": result.price,
    }


def _route_to_response(result: RouteResult) -> dict[str, Any]:
    return {
        "status": result.status,
        "reason": result.reason,
        "amount_in": result.amount_in,
        "route": list(result.route),
        "venue_id": result.venue_id,
        "amount_out": result.amount_out,
        "edge_bps": result.edge_bps,
        "quotes": [
            {
                "venue_id": q.venue_id,
                "priority": q.priority,
                "amount_out": q.amount_out,
                "latency_ms": q.latency_ms,
                "error": q.error,
            }
            for q in result.quotes
        ],
    }


@app.exception_handler(InvalidInput)
async def invalid_input_handler(_request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"error": "invalid_input", "message": str(exc)})


@app.exception_handler(Unauthorized)
async def unauthorized_handler(_request, exc: Unauthorized):
    return JSONResponse(status_code=403, content={"error": "unauthorized", "message": str(exc)})


@app.exception_handler(TickInProgress)
async def tick_in_progress_handler(_request, exc: TickInProgress):
    return JSONResponse(status_code=409, content={"error": "tick_in_progress", "message": str(exc)})


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Scheduler state, pool-share units and, when configured, database connectivity.

    Raises:
        HTTPException: If the configured database cannot be reached.
    """
    engine = _get_engine()
    result: dict[str, Any] = {
        "status": "ok",
        "scheduler_state": engine.scheduler.state,
        "pool_share_units": engine.position.pool_share_units,
        "database": {"configured": False},
    }

    stores = _get_stores()
    if stores is None:
        return result

    try:
        with stores._get_engine().begin() as conn:  # noqa: SLF001
            conn.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "database": {"configured": True, "connected": False, "error": str(e)}},
        ) from e

    result["database"] = {"configured": True, "connected": True}
    return result


@app.get("/position")
async def get_position() -> dict[str, Any]:
    return _get_engine().position.to_dict()


@app.get("/policy")
async def get_policy() -> dict[str, Any]:
    policy = _get_engine().policy
    return {name: getattr(policy, name) for name in POLICY_FIELDS}


@app.put("/policy/{field}")
async def update_policy(
    request: PolicyUpdateRequest,
    field: str = Path(..., description="Policy field, e.g. rebalance_threshold_bps"),
    x_operator: str = Header(""),
) -> dict[str, Any]:
    policy = _get_engine().update_policy(x_operator, field, request.value)
    return {name: getattr(policy, name) for name in POLICY_FIELDS}


@app.get("/events")
async def get_events(
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    limit: int = Query(100, ge=1, le=1000),
) -> dict[str, Any]:
    """Audit trail, newest first (from the database when configured)."""
    events = _get_engine().recent_events(event_type=event_type, limit=limit)
    return {"events": [e.to_dict() for e in events]}


@app.get("/upkeep")
async def get_upkeep() -> dict[str, Any]:
    check = await _get_engine().check_upkeep()
    return {
        "needed": check.needed,
        "decision": check.decision.decision,
        "reason": check.decision.reason,
        "price_diff_bps": check.decision.price_diff_bps,
        "price": check.observation.price,
    }


@app.post("/tick")
async def run_tick(x_operator: str = Header("")) -> dict[str, Any]:
    result = await _get_engine().tick(x_operator)
    if result.status == "rejected":
        raise TickInProgress(result.reason)
    return {
        "status": result.status,
        "reason": result.reason,
        "decision": result.decision.decision if result.decision else None,
        "price": result.observation.price if result.observation else None,
        "states": result.states,
        "outcome": _liquidity_to_response(result.outcome) if result.outcome else None,
    }


@app.post("/rebalance")
async def rebalance(x_operator: str = Header("")) -> dict[str, Any]:
    return _liquidity_to_response(await _get_engine().rebalance_now(x_operator))


@app.post("/liquidity/provide")
async def provide_liquidity(request: AmountsRequest, x_operator: str = Header("")) -> dict[str, Any]:
    result = await _get_engine().provide_liquidity(x_operator, request.amount_a, request.amount_b)
    return _liquidity_to_response(result)


@app.post("/liquidity/remove")
async def remove_liquidity(request: UnitsRequest, x_operator: str = Header("")) -> dict[str, Any]:
    return _liquidity_to_response(await _get_engine().remove_liquidity(x_operator, request.units))


@app.post("/swap")
async def swap(request: SwapRequest, x_operator: str = Header("")) -> dict[str, Any]:
    result = await _get_engine().swap(
        x_operator,
        request.amount_in,
        request.path,
        min_acceptable_out=request.min_acceptable_out,
    )
    return _route_to_response(result)


@app.post("/mitigate")
async def mitigate(request: MitigateRequest, x_operator: str = Header("")) -> dict[str, Any]:
    """Mitigate now, or queue the signal for the next tick."""
    engine = _get_engine()
    signal = VolatilitySignal(
        impermanent_loss_bps=request.impermanent_loss_bps,
        observed_at=datetime.now(timezone.utc),
        source=request.source,
    )
    if request.queue_for_next_tick:
        engine.submit_volatility_signal(x_operator, signal)
        return {"queued": True, "fired": False, "outcome": None}

    fired, result = await engine.mitigate(x_operator, signal)
    return {"queued": False, "fired": fired, "outcome": _liquidity_to_response(result)}


@app.post("/deposit")
async def deposit(request: TransferRequest, x_operator: str = Header("")) -> dict[str, Any]:
    balance = await _get_engine().deposit(x_operator, request.asset, request.amount)
    return {"asset": request.asset, "balance": balance}


@app.post("/withdraw")
async def withdraw(request: TransferRequest, x_operator: str = Header("")) -> dict[str, Any]:
    balance = await _get_engine().withdraw(x_operator, request.asset, request.amount)
    return {"asset": request.asset, "balance": balance}


@app.exception_handler(Exception)
async def global_exception_handler(_request, exc):
    """Global exception handler to ensure consistent error responses."""
    logger.exception(f"Unhandled API error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
