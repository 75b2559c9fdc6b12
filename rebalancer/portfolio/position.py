"""Position state owned by the engine.

`Position` is an immutable value. Every mutation builds a complete new value
and swaps it into the `PositionBook`, so balances are never partially updated.
The book also carries the critical-section lock and the "ledger touched" flag
used to decide whether an in-flight tick may still be abandoned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from rebalancer.errors import InvalidInput

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Position:
    """Balances of the two (optionally three) held assets plus pool shares."""

    asset_a: str
    asset_b: str
    asset_c: Optional[str] = None
    balance_a: int = 0
    balance_b: int = 0
    balance_c: Optional[int] = None
    pool_share_units: int = 0
    last_reference_price: int = 0  # 8-decimal fixed point, 0 until the first rebalance
    last_rebalance_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.asset_c is not None and self.balance_c is None:
            object.__setattr__(self, "balance_c", 0)
        if self.asset_c is None and self.balance_c is not None:
            raise InvalidInput("balance_c requires asset_c")
        for name in ("balance_a", "balance_b", "balance_c", "pool_share_units", "last_reference_price"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidInput(f"{name} must be non-negative, got {value}")

    @property
    def assets(self) -> tuple[str, ...]:
        if self.asset_c is None:
            return (self.asset_a, self.asset_b)
        return (self.asset_a, self.asset_b, self.asset_c)

    def holds(self, asset: str) -> bool:
        return asset in self.assets

    def _slot(self, asset: str) -> str:
        if asset == self.asset_a:
            return "balance_a"
        if asset == self.asset_b:
            return "balance_b"
        if self.asset_c is not None and asset == self.asset_c:
            return "balance_c"
        raise InvalidInput(f"Asset {asset} is not held by the position")

    def balance_of(self, asset: str) -> int:
        return getattr(self, self._slot(asset)) or 0

    def with_balance_changes(self, changes: dict[str, int]) -> Position:
        """Apply signed per-asset deltas, all or nothing."""
        updates: dict[str, int] = {}
        for asset, delta in changes.items():
            slot = self._slot(asset)
            current = updates.get(slot, getattr(self, slot) or 0)
            new_value = current + delta
            if new_value < 0:
                raise InvalidInput(f"{asset} balance would become negative ({new_value})")
            updates[slot] = new_value
        return replace(self, **updates)

    def with_pool_shares(self, delta: int) -> Position:
        units = self.pool_share_units + delta
        if units < 0:
            raise InvalidInput(f"pool_share_units would become negative ({units})")
        return replace(self, pool_share_units=units)

    def with_reference_price(self, price: int, at: datetime) -> Position:
        # Rebalance timestamps only move forward.
        if self.last_rebalance_at is not None and at < self.last_rebalance_at:
            at = self.last_rebalance_at
        return replace(self, last_reference_price=price, last_rebalance_at=at)

    def to_dict(self) -> dict[str, Any]:
        balances = {self.asset_a: self.balance_a, self.asset_b: self.balance_b}
        if self.asset_c is not None:
            balances[self.asset_c] = self.balance_c
        return {
            "balances": balances,
            "pool_share_units": self.pool_share_units,
            "last_reference_price": self.last_reference_price,
            "last_rebalance_at": self.last_rebalance_at.isoformat() if self.last_rebalance_at else None,
        }


class PositionBook:
    """Single owner of the live `Position`.

    Only code running inside `lock` may call `commit`.
    """

    def __init__(
        self,
        position: Position,
        *,
        on_commit: Optional[Callable[[Position], None]] = None,
    ) -> None:
        self._position = position
        self._on_commit = on_commit
        self.lock = asyncio.Lock()
        self._ledger_touched = False

    @property
    def position(self) -> Position:
        return self._position

    def commit(self, position: Position) -> None:
        self._position = position
        if self._on_commit is None:
            return
        try:
            self._on_commit(position)
        except Exception:
            logger.exception("Failed to persist position snapshot")

    @property
    def ledger_touched(self) -> bool:
        return self._ledger_touched

    def mark_ledger_touched(self) -> None:
        """Record that a mutating external call has been issued in this critical section."""
        self._ledger_touched = True

    async def run_critical(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` while holding the lock.

        If the caller is cancelled before any ledger-mutating call was issued the
        operation is cancelled too. Once a mutating call is out, the operation
        runs to completion and the cancellation is re-raised afterwards.
        """
        async with self.lock:
            self._ledger_touched = False
            task = asyncio.ensure_future(operation())
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if self._ledger_touched and not task.done():
                    logger.warning("Cancelled after a ledger call was issued; finishing the operation first")
                    while not task.done():
                        try:
                            await asyncio.shield(task)
                        except asyncio.CancelledError:
                            if task.cancelled():
                                raise
                else:
                    task.cancel()
                raise
