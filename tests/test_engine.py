"""End-to-end tests for the engine facade over paper collaborators."""

from datetime import datetime, timezone

import pytest

from rebalancer.config import EngineConfig
from rebalancer.engine import LiquidityEngine, create_paper_engine
from rebalancer.errors import InvalidInput, Unauthorized
from rebalancer.liquidity.strategies import FractionalWithdrawal
from rebalancer.portfolio.position import Position
from rebalancer.storage.noop_stores import MemoryEventStore, MemoryPositionStore
from rebalancer.types import VolatilitySignal

from conftest import OPERATOR

WETH = 10**18
USDC = 10**6
PRICE = 2_000 * 10**8


async def _funded(engine: LiquidityEngine) -> LiquidityEngine:
    await engine.deposit(OPERATOR, "WETH", 20 * WETH)
    await engine.deposit(OPERATOR, "USDC", 40_000 * USDC)
    await engine.provide_liquidity(OPERATOR, 10 * WETH, 20_000 * USDC)
    await engine.rebalance_now(OPERATOR)
    return engine


async def _assert_ledger_matches(engine: LiquidityEngine) -> None:
    for asset in engine.position.assets:
        assert await engine.ledger.balance_of(asset) == engine.position.balance_of(asset)
    assert await engine.ledger.balance_of(engine.pool.share_token) == engine.position.pool_share_units


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_fresh_engine_tick_is_degenerate(self, paper_engine: LiquidityEngine) -> None:
        result = await paper_engine.tick(OPERATOR)

        assert result.status == "completed"
        assert result.decision.degenerate is True
        assert [e.event_type for e in paper_engine.events] == ["DegenerateState"]

    @pytest.mark.asyncio
    async def test_fund_provide_and_seed(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)

        assert engine.position.balance_of("WETH") == 10 * WETH
        assert engine.position.balance_of("USDC") == 20_000 * USDC
        assert engine.position.pool_share_units > 0
        assert engine.position.last_reference_price == PRICE
        assert [e.event_type for e in engine.events] == ["Deposited", "Deposited", "LiquidityAdded", "Rebalanced"]
        await _assert_ledger_matches(engine)

    @pytest.mark.asyncio
    async def test_swap_routes_to_best_pool(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)
        usdc_before = engine.position.balance_of("USDC")

        result = await engine.swap(OPERATOR, 1 * WETH, ["WETH", "USDC"])

        assert result.status == "executed"
        assert result.venue_id == "paper-secondary"
        assert engine.position.balance_of("USDC") == usdc_before + result.amount_out
        assert engine.events[-1].event_type == "SwapExecuted"
        await _assert_ledger_matches(engine)

    @pytest.mark.asyncio
    async def test_single_pool_swap_across_decimals(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)
        engine.router._venues[1].offline = True  # noqa: SLF001

        sell = await engine.swap(OPERATOR, 1 * WETH, ["WETH", "USDC"])
        buy = await engine.swap(OPERATOR, 1_000 * USDC, ["USDC", "WETH"], min_acceptable_out=WETH)

        assert sell.status == "executed"
        assert sell.venue_id == "paper-primary"
        assert 1_900 * USDC < sell.amount_out < 2_000 * USDC
        assert buy.status == "no_profitable_route"
        assert buy.amount_out < WETH
        await _assert_ledger_matches(engine)

    @pytest.mark.asyncio
    async def test_rebalance_and_stop_loss_ticks(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)

        engine.oracle.set_price(PRICE * 103 // 100)
        rebalanced = await engine.tick(OPERATOR)
        assert rebalanced.decision.decision == "rebalance"
        assert engine.position.last_reference_price == PRICE * 103 // 100

        engine.oracle.set_price(PRICE // 2)
        stopped = await engine.tick(OPERATOR)
        assert stopped.decision.decision == "stop_loss"
        assert stopped.outcome.status == "no_action"
        assert engine.events[-1].event_type == "StopLossTriggered"

    @pytest.mark.asyncio
    async def test_check_upkeep_agrees_with_tick(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)
        engine.oracle.set_price(PRICE * 110 // 100)

        check = await engine.check_upkeep()
        result = await engine.tick(OPERATOR)

        assert check.needed is True
        assert check.decision == result.decision


class TestMitigation:
    @pytest.mark.asyncio
    async def test_mitigate_fires_above_threshold(self, engine_config: EngineConfig) -> None:
        engine = await _funded(create_paper_engine(engine_config, price=PRICE))
        engine.controller.withdrawal_strategy = FractionalWithdrawal(mitigation_bps=5_000)
        units = engine.position.pool_share_units
        signal = VolatilitySignal(impermanent_loss_bps=600, observed_at=datetime.now(timezone.utc))

        fired, result = await engine.mitigate(OPERATOR, signal)

        assert fired is True
        assert result.status == "executed"
        assert engine.position.pool_share_units == units - units // 2
        await _assert_ledger_matches(engine)

    @pytest.mark.asyncio
    async def test_mitigate_below_threshold_is_noop(self, paper_engine: LiquidityEngine) -> None:
        engine = await _funded(paper_engine)
        signal = VolatilitySignal(impermanent_loss_bps=100, observed_at=datetime.now(timezone.utc))

        fired, result = await engine.mitigate(OPERATOR, signal)

        assert fired is False
        assert result.status == "no_action"


class TestOperatorSurface:
    @pytest.mark.asyncio
    async def test_non_operator_rejected_everywhere(self, paper_engine: LiquidityEngine) -> None:
        with pytest.raises(Unauthorized):
            await paper_engine.swap("intruder", 1, ["WETH", "USDC"])
        with pytest.raises(Unauthorized):
            await paper_engine.deposit("intruder", "WETH", 1)
        with pytest.raises(Unauthorized):
            paper_engine.update_policy("intruder", "max_order_size", 1)
        with pytest.raises(Unauthorized):
            await paper_engine.tick("intruder")

    def test_update_policy(self, paper_engine: LiquidityEngine) -> None:
        policy = paper_engine.update_policy(OPERATOR, "rebalance_threshold_bps", 300)
        assert policy.rebalance_threshold_bps == 300
        assert paper_engine.policy.rebalance_threshold_bps == 300

    def test_update_unknown_policy_field(self, paper_engine: LiquidityEngine) -> None:
        with pytest.raises(InvalidInput):
            paper_engine.update_policy(OPERATOR, "leverage", 10)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_events_and_snapshots_persisted(self, engine_config: EngineConfig) -> None:
        events = MemoryEventStore()
        snapshots = MemoryPositionStore()
        engine = create_paper_engine(engine_config, price=PRICE, event_store=events, snapshot_store=snapshots)

        await engine.deposit(OPERATOR, "WETH", 5 * WETH)

        assert events.get_events()[0].event_type == "Deposited"
        assert snapshots.load_position() == engine.position

    @pytest.mark.asyncio
    async def test_position_restored_from_snapshot(self, engine_config: EngineConfig) -> None:
        snapshots = MemoryPositionStore()
        first = create_paper_engine(engine_config, price=PRICE, snapshot_store=snapshots)
        await first.deposit(OPERATOR, "USDC", 1_000 * USDC)

        second = create_paper_engine(engine_config, price=PRICE, snapshot_store=snapshots)

        assert second.position.balance_of("USDC") == 1_000 * USDC

    def test_snapshot_with_other_assets_rejected(self, engine_config: EngineConfig) -> None:
        snapshots = MemoryPositionStore()
        snapshots.save_position(position=Position(asset_a="WBTC", asset_b="USDC"))

        with pytest.raises(InvalidInput):
            create_paper_engine(engine_config, snapshot_store=snapshots)
