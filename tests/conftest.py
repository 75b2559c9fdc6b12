"""Shared test fixtures for pytest.

Provides fake venues and ledgers, a funded position and factories for the
router, controller and scheduler wired around one position book.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import pytest

from rebalancer.automation.audit import AuditLogger
from rebalancer.automation.rules import PolicyConfig, PolicySettings
from rebalancer.automation.safety import OperatorAuth
from rebalancer.automation.scheduler import Scheduler, SchedulerConfig
from rebalancer.config import EngineConfig
from rebalancer.engine import create_paper_engine
from rebalancer.execution.interfaces import LiquidityReceipt, WithdrawalReceipt
from rebalancer.execution.paper import StaticPriceOracle
from rebalancer.execution.router import ExecutionRouter
from rebalancer.liquidity.controller import RebalanceController
from rebalancer.portfolio.position import Position, PositionBook

OPERATOR = "operator-1"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeVenue:
    """Venue with a fixed quote; records execute calls."""

    def __init__(
        self,
        venue_id: str,
        amount_out: Optional[int] = None,
        *,
        delay: float = 0.0,
        quote_error: Optional[Exception] = None,
        execute_error: Optional[Exception] = None,
        fill: Optional[int] = None,
    ) -> None:
        self.venue_id = venue_id
        self.amount_out = amount_out
        self.delay = delay
        self.quote_error = quote_error
        self.execute_error = execute_error
        self.fill = fill
        self.quote_calls = 0
        self.execute_calls: list[tuple[tuple[str, ...], int, int, datetime]] = []

    async def quote(self, path: Sequence[str], amount_in: int) -> Any:
        self.quote_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.quote_error is not None:
            raise self.quote_error
        return self.amount_out

    async def execute(self, path: Sequence[str], amount_in: int, min_out: int, deadline: datetime) -> int:
        self.execute_calls.append((tuple(path), amount_in, min_out, deadline))
        if self.execute_error is not None:
            raise self.execute_error
        return self.fill if self.fill is not None else self.amount_out


class FakeLedger:
    """Ledger recording approvals and transfers."""

    def __init__(self) -> None:
        self.approvals: list[tuple[str, str, int]] = []
        self.transfers: list[tuple[str, str, int]] = []

    async def balance_of(self, asset: str) -> int:
        return 0

    async def approve(self, spender: str, asset: str, amount: int) -> None:
        self.approvals.append((spender, asset, amount))

    async def transfer_in(self, asset: str, amount: int) -> None:
        self.transfers.append(("in", asset, amount))

    async def transfer_out(self, asset: str, amount: int) -> None:
        self.transfers.append(("out", asset, amount))


class FakePool:
    """Pool that uses half of each deposit per unit pair and returns fixed receipts."""

    venue_id = "pool"
    share_token = "pool-LP"

    def __init__(self, *, add_error: Optional[Exception] = None, remove_error: Optional[Exception] = None) -> None:
        self.add_error = add_error
        self.remove_error = remove_error
        self.add_calls: list[tuple[int, int]] = []
        self.remove_calls: list[int] = []

    async def add_liquidity(self, amount_a: int, amount_b: int, min_a: int, min_b: int, deadline: datetime) -> LiquidityReceipt:
        self.add_calls.append((amount_a, amount_b))
        if self.add_error is not None:
            raise self.add_error
        return LiquidityReceipt(amount_a=amount_a, amount_b=amount_b, units=min(amount_a, amount_b))

    async def remove_liquidity(self, units: int, min_a: int, min_b: int, deadline: datetime) -> WithdrawalReceipt:
        self.remove_calls.append(units)
        if self.remove_error is not None:
            raise self.remove_error
        return WithdrawalReceipt(units=units, amount_a=units, amount_b=units)


@pytest.fixture
def auth() -> OperatorAuth:
    return OperatorAuth(OPERATOR)


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def settings(auth: OperatorAuth, audit_logger: AuditLogger) -> PolicySettings:
    config = PolicyConfig(
        max_order_size=1_000_000,
        min_profit_threshold_bps=0,
        rebalance_threshold_bps=200,
        stop_loss_threshold_bps=1000,
        mitigation_threshold_bps=500,
    )
    return PolicySettings(config=config, auth=auth, recorder=audit_logger)


@pytest.fixture
def position() -> Position:
    return Position(asset_a="WETH", asset_b="USDC", balance_a=10_000, balance_b=10_000, last_reference_price=1000)


@pytest.fixture
def book(position: Position) -> PositionBook:
    return PositionBook(position)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def make_router(ledger, book, settings, audit_logger, auth):
    """Factory for a router over the given venues."""

    def _make(venues: Sequence[Any], **kwargs: Any) -> ExecutionRouter:
        kwargs.setdefault("clock", lambda: NOW)
        return ExecutionRouter(
            venues=venues,
            ledger=ledger,
            book=book,
            settings=settings,
            audit_logger=audit_logger,
            auth=auth,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_controller(pool, ledger, book, settings, audit_logger, auth):
    def _make(**kwargs: Any) -> RebalanceController:
        kwargs.setdefault("clock", lambda: NOW)
        return RebalanceController(
            pool=pool,
            ledger=ledger,
            book=book,
            settings=settings,
            audit_logger=audit_logger,
            auth=auth,
            **kwargs,
        )

    return _make


@pytest.fixture
def oracle() -> StaticPriceOracle:
    return StaticPriceOracle(price=1000, clock=lambda: NOW)


@pytest.fixture
def make_scheduler(oracle, book, settings, audit_logger, auth, make_controller):
    def _make(controller: Optional[RebalanceController] = None, **kwargs: Any) -> Scheduler:
        kwargs.setdefault("clock", lambda: NOW)
        return Scheduler(
            oracle=oracle,
            controller=controller or make_controller(),
            book=book,
            settings=settings,
            audit_logger=audit_logger,
            auth=auth,
            config=kwargs.pop("config", SchedulerConfig(poll_interval=0)),
            **kwargs,
        )

    return _make


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        operator=OPERATOR,
        policy=PolicyConfig(max_order_size=10**24),
        scheduler=SchedulerConfig(poll_interval=0, max_iterations=1),
    )


@pytest.fixture
def paper_engine(engine_config: EngineConfig):
    """Paper engine at 2000.00000000 with the operator holding 100 WETH / 200k USDC."""
    return create_paper_engine(engine_config, price=2_000 * 10**8)
