"""Engine facade wiring policy, position, controller, router and scheduler.

All operator actions run inside the position critical section, so they are
serialised with each other and with scheduler ticks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from rebalancer.automation.audit import AuditLogger, EngineEvent
from rebalancer.automation.policy import should_mitigate
from rebalancer.automation.rules import PolicyConfig, PolicySettings
from rebalancer.automation.safety import OperatorAuth
from rebalancer.automation.scheduler import Scheduler, TickResult, UpkeepCheck
from rebalancer.config import EngineConfig
from rebalancer.errors import InvalidInput
from rebalancer.execution.interfaces import LedgerAdapter, LiquidityPool, PriceOracle, VenueAdapter
from rebalancer.execution.router import ExecutionRouter
from rebalancer.liquidity.controller import RebalanceController
from rebalancer.liquidity.strategies import RebalanceStrategy, WithdrawalStrategy
from rebalancer.persistence.interfaces import EventStore, PositionSnapshotStore
from rebalancer.portfolio.position import Position, PositionBook
from rebalancer.types import LiquidityResult, RouteResult, VolatilitySignal

logger = logging.getLogger(__name__)

POLICY_FIELDS = {
    "max_order_size": "update_max_order_size",
    "min_profit_threshold_bps": "update_min_profit_threshold",
    "rebalance_threshold_bps": "update_rebalance_threshold",
    "stop_loss_threshold_bps": "update_stop_loss_threshold",
    "mitigation_threshold_bps": "update_mitigation_threshold",
}


def initial_position(assets: Sequence[str]) -> Position:
    return Position(
        asset_a=assets[0],
        asset_b=assets[1],
        asset_c=assets[2] if len(assets) > 2 else None,
    )


class LiquidityEngine:
    """Single decision-maker over one position."""

    def __init__(
        self,
        *,
        config: EngineConfig,
        oracle: PriceOracle,
        venues: Sequence[VenueAdapter],
        pool: LiquidityPool,
        ledger: LedgerAdapter,
        position: Optional[Position] = None,
        rebalance_strategy: Optional[RebalanceStrategy] = None,
        withdrawal_strategy: Optional[WithdrawalStrategy] = None,
        event_store: Optional[EventStore] = None,
        snapshot_store: Optional[PositionSnapshotStore] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.oracle = oracle
        self.pool = pool
        self.ledger = ledger
        self.event_store = event_store
        self.snapshot_store = snapshot_store
        self.auth = OperatorAuth(config.operator)
        self.audit_logger = AuditLogger(store=event_store)
        self.settings = PolicySettings(config=config.policy, auth=self.auth, recorder=self.audit_logger)

        if position is None and snapshot_store is not None:
            position = snapshot_store.load_position()
            if position is not None:
                logger.info("Restored position from the latest snapshot")
        if position is None:
            position = initial_position(config.assets)
        if position.assets != tuple(config.assets):
            raise InvalidInput(f"Position assets {position.assets} do not match configured {config.assets}")

        on_commit = None
        if snapshot_store is not None:
            on_commit = lambda p: snapshot_store.save_position(position=p)  # noqa: E731
        self.book = PositionBook(position, on_commit=on_commit)

        self.router = ExecutionRouter(
            venues=venues,
            ledger=ledger,
            book=self.book,
            settings=self.settings,
            audit_logger=self.audit_logger,
            auth=self.auth,
            quote_timeout_seconds=config.quote_timeout_seconds,
            deadline_seconds=config.deadline_seconds,
            slippage_tolerance_bps=config.slippage_tolerance_bps,
            clock=clock,
        )
        self.controller = RebalanceController(
            pool=pool,
            ledger=ledger,
            book=self.book,
            settings=self.settings,
            audit_logger=self.audit_logger,
            auth=self.auth,
            rebalance_strategy=rebalance_strategy,
            withdrawal_strategy=withdrawal_strategy,
            deadline_seconds=config.deadline_seconds,
            clock=clock,
        )
        self.scheduler = Scheduler(
            oracle=oracle,
            controller=self.controller,
            book=self.book,
            settings=self.settings,
            audit_logger=self.audit_logger,
            auth=self.auth,
            config=config.scheduler,
            clock=clock,
        )

    # ---- read side

    @property
    def position(self) -> Position:
        return self.book.position

    @property
    def policy(self) -> PolicyConfig:
        return self.settings.current

    @property
    def events(self) -> list[EngineEvent]:
        return list(self.audit_logger.events)

    def recent_events(self, event_type: Optional[str] = None, limit: int = 100) -> list[EngineEvent]:
        """Audit trail, newest first; read from the event store when one is attached."""
        if self.event_store is not None:
            return list(self.event_store.get_events(event_type=event_type, limit=limit))
        events = [e for e in reversed(self.audit_logger.events) if event_type is None or e.event_type == event_type]
        return events[:limit]

    async def check_upkeep(self) -> UpkeepCheck:
        return await self.scheduler.check_upkeep()

    # ---- scheduler surface

    async def tick(self, caller: str, now: Optional[datetime] = None) -> TickResult:
        return await self.scheduler.tick(caller, now)

    def submit_volatility_signal(self, caller: str, signal: VolatilitySignal) -> None:
        self.scheduler.submit_volatility_signal(caller, signal)

    # ---- operator actions

    async def rebalance_now(self, caller: str) -> LiquidityResult:
        """Reset the reference price to the current oracle price (seeds a fresh engine)."""
        self.auth.require(caller)

        async def _run() -> LiquidityResult:
            observation = await self.oracle.current_price()
            return await self.controller.rebalance(caller, observation.price, observation.observed_at)

        return await self.book.run_critical(_run)

    async def provide_liquidity(self, caller: str, amount_a: int, amount_b: int) -> LiquidityResult:
        self.auth.require(caller)
        return await self.book.run_critical(lambda: self.controller.provide_liquidity(caller, amount_a, amount_b))

    async def remove_liquidity(self, caller: str, units: int) -> LiquidityResult:
        self.auth.require(caller)
        return await self.book.run_critical(lambda: self.controller.remove_liquidity(caller, units))

    async def swap(
        self,
        caller: str,
        amount_in: int,
        path: Sequence[str],
        min_acceptable_out: int = 0,
    ) -> RouteResult:
        self.auth.require(caller)
        return await self.book.run_critical(
            lambda: self.router.route(caller, amount_in, path, min_acceptable_out=min_acceptable_out)
        )

    async def mitigate(self, caller: str, signal: VolatilitySignal) -> tuple[bool, LiquidityResult]:
        """Run the impermanent-loss predicate now and mitigate when it fires."""
        self.auth.require(caller)

        async def _run() -> tuple[bool, LiquidityResult]:
            if not should_mitigate(self.book.position, signal, self.settings.current):
                return False, LiquidityResult(status="no_action", reason="mitigation not warranted")
            return True, await self.controller.mitigate_impermanent_loss(caller, signal)

        return await self.book.run_critical(_run)

    async def deposit(self, caller: str, asset: str, amount: int) -> int:
        self.auth.require(caller)
        return await self.book.run_critical(lambda: self.controller.deposit(caller, asset, amount))

    async def withdraw(self, caller: str, asset: str, amount: int) -> int:
        self.auth.require(caller)
        return await self.book.run_critical(lambda: self.controller.withdraw(caller, asset, amount))

    def update_policy(self, caller: str, field_name: str, value: int) -> PolicyConfig:
        setter = POLICY_FIELDS.get(field_name)
        if setter is None:
            raise InvalidInput(f"Unknown policy field: {field_name}")
        return getattr(self.settings, setter)(caller, value)


def create_paper_engine(
    config: EngineConfig,
    *,
    reserve_a: int = 1_000 * 10**18,
    reserve_b: int = 2_000_000 * 10**6,
    operator_funds: Optional[dict[str, int]] = None,
    price: int = 0,
    event_store: Optional[EventStore] = None,
    snapshot_store: Optional[PositionSnapshotStore] = None,
) -> LiquidityEngine:
    """Engine over in-memory collaborators: two competing pools and a paper ledger.

    Uses `HttpPriceOracle` when `config.oracle_url` is set, else a static oracle.
    """
    from rebalancer.execution.paper import PaperLedger, PaperPool, StaticPriceOracle
    from rebalancer.market_data.oracle import HttpPriceOracle

    asset_a, asset_b = config.assets[0], config.assets[1]
    funds = operator_funds if operator_funds is not None else {asset_a: reserve_a // 10, asset_b: reserve_b // 10}
    ledger = PaperLedger(operator_balances=funds)
    primary = PaperPool(
        venue_id="paper-primary",
        asset_a=asset_a,
        asset_b=asset_b,
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        fee_bps=30,
        ledger=ledger,
    )
    secondary = PaperPool(
        venue_id="paper-secondary",
        asset_a=asset_a,
        asset_b=asset_b,
        reserve_a=reserve_a // 2,
        reserve_b=reserve_b // 2,
        fee_bps=5,
        ledger=ledger,
    )

    oracle: PriceOracle
    if config.oracle_url:
        oracle = HttpPriceOracle(url=config.oracle_url, field_path=config.oracle_field)
    else:
        oracle = StaticPriceOracle(price=price)

    return LiquidityEngine(
        config=config,
        oracle=oracle,
        venues=[primary, secondary],
        pool=primary,
        ledger=ledger,
        event_store=event_store,
        snapshot_store=snapshot_store,
    )
