"""Liquidity add/remove orchestration against the ledger and the pool venue.

Each public action validates locally first, then marks the position book as
touched before the first ledger call, and commits a complete new `Position`
only after the pool confirms. A failing pool call leaves the position as it
was and returns a `failed` result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from rebalancer.automation.audit import AuditLogger
from rebalancer.automation.rules import PolicySettings
from rebalancer.automation.safety import (
    BalanceCheck,
    OperatorAuth,
    OrderSizeCheck,
    PoolShareCheck,
    PositiveAmountCheck,
    enforce,
)
from rebalancer.errors import InvalidInput
from rebalancer.execution.interfaces import LedgerAdapter, LiquidityPool
from rebalancer.portfolio.position import PositionBook
from rebalancer.types import LiquidityResult, VolatilitySignal

from .strategies import HoldLiquidity, RebalanceStrategy, WithdrawalReason, WithdrawalStrategy, ZeroWithdrawal

logger = logging.getLogger(__name__)


class RebalanceController:
    def __init__(
        self,
        *,
        pool: LiquidityPool,
        ledger: LedgerAdapter,
        book: PositionBook,
        settings: PolicySettings,
        audit_logger: AuditLogger,
        auth: OperatorAuth,
        rebalance_strategy: Optional[RebalanceStrategy] = None,
        withdrawal_strategy: Optional[WithdrawalStrategy] = None,
        deadline_seconds: int = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._pool = pool
        self._ledger = ledger
        self._book = book
        self._settings = settings
        self._audit = audit_logger
        self._auth = auth
        self.rebalance_strategy: RebalanceStrategy = rebalance_strategy or HoldLiquidity()
        self.withdrawal_strategy: WithdrawalStrategy = withdrawal_strategy or ZeroWithdrawal()
        self._deadline_seconds = deadline_seconds
        self._clock = clock

    def _deadline(self) -> datetime:
        return self._clock() + timedelta(seconds=self._deadline_seconds)

    # ---- liquidity

    async def provide_liquidity(self, caller: str, amount_a: int, amount_b: int) -> LiquidityResult:
        self._auth.require(caller)
        return await self._provide(amount_a, amount_b)

    async def _provide(self, amount_a: int, amount_b: int) -> LiquidityResult:
        position = self._book.position
        max_order_size = self._settings.current.max_order_size
        enforce(PositiveAmountCheck("amount_a", amount_a), PositiveAmountCheck("amount_b", amount_b))
        enforce(
            OrderSizeCheck("amount_a", amount_a, max_order_size),
            OrderSizeCheck("amount_b", amount_b, max_order_size),
            BalanceCheck(position, position.asset_a, amount_a),
            BalanceCheck(position, position.asset_b, amount_b),
        )

        self._book.mark_ledger_touched()
        try:
            await self._ledger.approve(self._pool.venue_id, position.asset_a, amount_a)
            await self._ledger.approve(self._pool.venue_id, position.asset_b, amount_b)
            receipt = await self._pool.add_liquidity(amount_a, amount_b, 0, 0, self._deadline())
        except Exception as exc:
            return self._failed("add liquidity", exc, amount_a=amount_a, amount_b=amount_b)

        if receipt.amount_a > amount_a or receipt.amount_b > amount_b or receipt.units < 0:
            return self._failed(
                "add liquidity",
                InvalidInput(f"pool reported {receipt.amount_a}/{receipt.amount_b} for {amount_a}/{amount_b}"),
                amount_a=amount_a,
                amount_b=amount_b,
            )

        position = self._book.position
        self._book.commit(
            position.with_balance_changes(
                {position.asset_a: -receipt.amount_a, position.asset_b: -receipt.amount_b}
            ).with_pool_shares(receipt.units)
        )
        self._audit.log_liquidity_added(amount_a=receipt.amount_a, amount_b=receipt.amount_b, units=receipt.units)
        return LiquidityResult(
            status="executed",
            reason="liquidity added",
            amount_a=receipt.amount_a,
            amount_b=receipt.amount_b,
            units=receipt.units,
        )

    async def remove_liquidity(self, caller: str, units: int) -> LiquidityResult:
        self._auth.require(caller)
        return await self._remove(units)

    async def _remove(self, units: int) -> LiquidityResult:
        position = self._book.position
        enforce(PositiveAmountCheck("units", units))
        enforce(PoolShareCheck(position, units))

        self._book.mark_ledger_touched()
        try:
            await self._ledger.approve(self._pool.venue_id, self._pool.share_token, units)
            receipt = await self._pool.remove_liquidity(units, 0, 0, self._deadline())
        except Exception as exc:
            return self._failed("remove liquidity", exc, units=units)

        if receipt.units != units:
            logger.warning(f"Pool burned {receipt.units} units, requested {units}")

        position = self._book.position
        self._book.commit(
            position.with_balance_changes(
                {position.asset_a: receipt.amount_a, position.asset_b: receipt.amount_b}
            ).with_pool_shares(-receipt.units)
        )
        self._audit.log_liquidity_removed(units=receipt.units, amount_a=receipt.amount_a, amount_b=receipt.amount_b)
        return LiquidityResult(
            status="executed",
            reason="liquidity removed",
            amount_a=receipt.amount_a,
            amount_b=receipt.amount_b,
            units=receipt.units,
        )

    # ---- decisions

    async def rebalance(self, caller: str, current_price: int, now: Optional[datetime] = None) -> LiquidityResult:
        """Apply the strategy plan, then reset the reference price.

        The reference price only moves when every planned step succeeded.
        """
        self._auth.require(caller)
        if isinstance(current_price, bool) or not isinstance(current_price, int) or current_price < 0:
            raise InvalidInput(f"current_price must be a non-negative integer, got {current_price!r}")
        now = now or self._clock()

        position = self._book.position
        plan = self.rebalance_strategy.plan(position=position, current_price=current_price)

        removed = LiquidityResult(status="no_action", reason="nothing to remove")
        remove_units = min(plan.remove_units, position.pool_share_units)
        if remove_units > 0:
            removed = await self._remove(remove_units)
            if not removed.ok:
                return removed

        position = self._book.position
        cap = self._settings.current.max_order_size
        add_a = min(
            plan.add_amount_a + (removed.amount_a if plan.readd_withdrawn else 0),
            cap,
            position.balance_of(position.asset_a),
        )
        add_b = min(
            plan.add_amount_b + (removed.amount_b if plan.readd_withdrawn else 0),
            cap,
            position.balance_of(position.asset_b),
        )
        added = LiquidityResult(status="no_action", reason="nothing to add")
        if add_a > 0 and add_b > 0:
            added = await self._provide(add_a, add_b)
            if not added.ok:
                return added

        previous_price = self._book.position.last_reference_price
        self._book.commit(self._book.position.with_reference_price(current_price, now))
        self._audit.log_rebalanced(
            previous_price=previous_price,
            new_price=current_price,
            units_removed=removed.units,
            units_added=added.units,
        )
        logger.info(f"Rebalanced: reference price {previous_price} -> {current_price}")
        return LiquidityResult(
            status="executed",
            reason="rebalanced",
            amount_a=added.amount_a,
            amount_b=added.amount_b,
            units=added.units - removed.units,
            price=current_price,
        )

    async def trigger_stop_loss(self, caller: str, current_price: int) -> LiquidityResult:
        self._auth.require(caller)
        result = await self._protective_withdrawal("stop_loss")
        if result.ok:
            self._audit.log_stop_loss(price=current_price, units=result.units)
        return result

    async def mitigate_impermanent_loss(self, caller: str, signal: VolatilitySignal) -> LiquidityResult:
        self._auth.require(caller)
        result = await self._protective_withdrawal("mitigation")
        if result.ok:
            self._audit.log_mitigation(impermanent_loss_bps=signal.impermanent_loss_bps, units=result.units)
        return result

    async def _protective_withdrawal(self, reason: WithdrawalReason) -> LiquidityResult:
        position = self._book.position
        units = self.withdrawal_strategy.units_to_withdraw(position=position, reason=reason)
        units = max(0, min(units, position.pool_share_units))
        if units == 0:
            return LiquidityResult(status="no_action", reason=f"{reason}: no units to withdraw")
        return await self._remove(units)

    # ---- funding

    async def deposit(self, caller: str, asset: str, amount: int) -> int:
        """Pull `amount` of a held asset from the operator into the position."""
        self._auth.require(caller)
        position = self._book.position
        enforce(PositiveAmountCheck("amount", amount))
        if not position.holds(asset):
            raise InvalidInput(f"Asset {asset} is not held by the position")

        self._book.mark_ledger_touched()
        await self._ledger.transfer_in(asset, amount)
        self._book.commit(self._book.position.with_balance_changes({asset: amount}))
        self._audit.log_transfer(event_type="Deposited", asset=asset, amount=amount)
        return self._book.position.balance_of(asset)

    async def withdraw(self, caller: str, asset: str, amount: int) -> int:
        """Send `amount` of a held asset back to the operator."""
        self._auth.require(caller)
        position = self._book.position
        enforce(PositiveAmountCheck("amount", amount))
        enforce(BalanceCheck(position, asset, amount))

        self._book.mark_ledger_touched()
        await self._ledger.transfer_out(asset, amount)
        self._book.commit(self._book.position.with_balance_changes({asset: -amount}))
        self._audit.log_transfer(event_type="Withdrawn", asset=asset, amount=amount)
        return self._book.position.balance_of(asset)

    def _failed(self, action: str, exc: Exception, **context: int) -> LiquidityResult:
        reason = f"{action} failed: {type(exc).__name__}: {exc}"
        logger.error(reason)
        self._audit.log_error(reason, context=dict(context))
        return LiquidityResult(status="failed", reason=reason)
