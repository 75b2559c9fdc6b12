"""Pluggable sizing strategies for the rebalance controller.

`RebalanceStrategy` decides what liquidity to move before a reference price
reset; `WithdrawalStrategy` sizes stop-loss and impermanent-loss withdrawals.
The defaults move nothing, so a bare engine only resets the reference price
and reports zero-unit protective actions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from rebalancer.errors import InvalidInput
from rebalancer.portfolio.position import Position
from rebalancer.types import BPS_DENOMINATOR, RebalancePlan

WithdrawalReason = Literal["stop_loss", "mitigation"]


class RebalanceStrategy(Protocol):
    def plan(self, *, position: Position, current_price: int) -> RebalancePlan:
        """Return the liquidity adjustment to perform for `current_price`."""


class WithdrawalStrategy(Protocol):
    def units_to_withdraw(self, *, position: Position, reason: WithdrawalReason) -> int:
        """Return how many pool-share units to burn (0 means no action)."""


@dataclass(frozen=True)
class HoldLiquidity:
    """Keep the pool position as is; only the reference price moves."""

    def plan(self, *, position: Position, current_price: int) -> RebalancePlan:
        return RebalancePlan()


@dataclass(frozen=True)
class ZeroWithdrawal:
    def units_to_withdraw(self, *, position: Position, reason: WithdrawalReason) -> int:
        return 0


@dataclass(frozen=True)
class FractionalWithdrawal:
    """Burn a fixed share of the held pool units, separately sized per reason."""

    stop_loss_bps: int = BPS_DENOMINATOR
    mitigation_bps: int = BPS_DENOMINATOR // 2

    def __post_init__(self) -> None:
        for name in ("stop_loss_bps", "mitigation_bps"):
            value = getattr(self, name)
            if not 0 <= value <= BPS_DENOMINATOR:
                raise InvalidInput(f"{name} must be within 0..{BPS_DENOMINATOR}, got {value}")

    def units_to_withdraw(self, *, position: Position, reason: WithdrawalReason) -> int:
        share = self.stop_loss_bps if reason == "stop_loss" else self.mitigation_bps
        return position.pool_share_units * share // BPS_DENOMINATOR


@dataclass(frozen=True)
class RecenterLiquidity:
    """Pull a share of the pool on each rebalance and re-add it at the new price.

    `recenter_bps` of the held units are burned; the returned amounts are
    re-provided by the controller so the position re-enters at the new ratio.
    """

    recenter_bps: int = 2_500

    def __post_init__(self) -> None:
        if not 0 <= self.recenter_bps <= BPS_DENOMINATOR:
            raise InvalidInput(f"recenter_bps must be within 0..{BPS_DENOMINATOR}, got {self.recenter_bps}")

    def plan(self, *, position: Position, current_price: int) -> RebalancePlan:
        return RebalancePlan(
            remove_units=position.pool_share_units * self.recenter_bps // BPS_DENOMINATOR,
            readd_withdrawn=True,
        )
