"""Operator authorisation and pre-trade input checks.

Every mutating entry point takes the caller identity explicitly and passes it
to `OperatorAuth.require`. Input checks run before any collaborator call so a
rejected request never has side effects.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Protocol, Sequence

from rebalancer.errors import InvalidInput, Unauthorized
from rebalancer.portfolio.position import Position


@dataclass(frozen=True)
class OperatorAuth:
    """Single trusted operator identity."""

    operator: str

    def is_operator(self, caller: str) -> bool:
        if not caller:
            return False
        return hmac.compare_digest(caller.encode(), self.operator.encode())

    def require(self, caller: str) -> None:
        if not self.is_operator(caller):
            raise Unauthorized("caller is not the configured operator")


@dataclass(frozen=True)
class SafetyResult:
    ok: bool
    reason: str


class SafetyCheck(Protocol):
    def check(self) -> SafetyResult:
        """Return whether the pending operation may proceed."""


def run_safety_checks(*, checks: Sequence[SafetyCheck]) -> SafetyResult:
    for check in checks:
        res = check.check()
        if not res.ok:
            return res
    return SafetyResult(ok=True, reason="ok")


def enforce(*checks: SafetyCheck) -> None:
    """Run checks and raise `InvalidInput` with the first failing reason."""
    result = run_safety_checks(checks=checks)
    if not result.ok:
        raise InvalidInput(result.reason)


# ========== Concrete Check Implementations ==========


@dataclass
class PositiveAmountCheck:
    """Amounts must be strictly positive integers."""

    name: str
    amount: int

    def check(self) -> SafetyResult:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            return SafetyResult(ok=False, reason=f"{self.name} must be an integer")
        if self.amount <= 0:
            return SafetyResult(ok=False, reason=f"{self.name} must be positive, got {self.amount}")
        return SafetyResult(ok=True, reason=f"{self.name} positive")


@dataclass
class OrderSizeCheck:
    """Check that a single trade or liquidity operation is within maxOrderSize."""

    name: str
    amount: int
    max_order_size: int

    def check(self) -> SafetyResult:
        if self.amount > self.max_order_size:
            return SafetyResult(
                ok=False,
                reason=f"{self.name} {self.amount} exceeds max order size {self.max_order_size}",
            )
        return SafetyResult(ok=True, reason="Order size within limits")


@dataclass
class PathCheck:
    """A route needs at least two hops and must start and end in held assets."""

    path: Sequence[str]
    position: Position

    def check(self) -> SafetyResult:
        if len(self.path) < 2:
            return SafetyResult(ok=False, reason=f"Route needs at least 2 assets, got {len(self.path)}")
        if any(not asset for asset in self.path):
            return SafetyResult(ok=False, reason="Route contains an empty asset id")
        if self.path[0] == self.path[-1]:
            return SafetyResult(ok=False, reason="Route must end in a different asset than it starts")
        for asset in (self.path[0], self.path[-1]):
            if not self.position.holds(asset):
                return SafetyResult(ok=False, reason=f"Asset {asset} is not held by the position")
        return SafetyResult(ok=True, reason="Route valid")


@dataclass
class BalanceCheck:
    """The position must hold at least `amount` of `asset`."""

    position: Position
    asset: str
    amount: int

    def check(self) -> SafetyResult:
        available = self.position.balance_of(self.asset)
        if available < self.amount:
            return SafetyResult(
                ok=False,
                reason=f"Insufficient {self.asset} balance: {available} < {self.amount}",
            )
        return SafetyResult(ok=True, reason="Balance sufficient")


@dataclass
class PoolShareCheck:
    """Withdrawals can burn at most the pool-share units held."""

    position: Position
    units: int

    def check(self) -> SafetyResult:
        if self.units > self.position.pool_share_units:
            return SafetyResult(
                ok=False,
                reason=f"Cannot burn {self.units} units, only {self.position.pool_share_units} held",
            )
        return SafetyResult(ok=True, reason="Pool shares sufficient")
