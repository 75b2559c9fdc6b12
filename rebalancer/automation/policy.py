from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from rebalancer.portfolio.position import Position
from rebalancer.types import BPS_DENOMINATOR, DecisionType, VolatilitySignal

from .rules import PolicyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyDecision:
    decision: DecisionType
    reason: str
    price_diff_bps: Optional[int] = None
    adverse: bool = False
    degenerate: bool = False


def price_diff_bps(reference_price: int, current_price: int) -> int:
    """Absolute deviation of `current_price` from `reference_price` in bps (floored)."""
    return abs(current_price - reference_price) * BPS_DENOMINATOR // reference_price


def evaluate(position: Position, config: PolicyConfig, current_price: int) -> PolicyDecision:
    """Pure decision logic mapping position, config and price to an action.

    Stop-loss wins over rebalance. An uninitialised reference price yields
    `none` with the degenerate flag set instead of dividing by zero.
    """
    reference = position.last_reference_price
    if reference == 0:
        logger.warning("Policy evaluated without a reference price; forcing no action")
        return PolicyDecision(
            decision="none",
            reason="degenerate state: no reference price recorded yet",
            degenerate=True,
        )

    diff = price_diff_bps(reference, current_price)
    adverse = current_price < reference

    if adverse and diff > config.stop_loss_threshold_bps:
        return PolicyDecision(
            decision="stop_loss",
            reason=f"adverse move {diff} bps > stop-loss {config.stop_loss_threshold_bps} bps",
            price_diff_bps=diff,
            adverse=True,
        )

    if diff >= config.rebalance_threshold_bps:
        return PolicyDecision(
            decision="rebalance",
            reason=f"move {diff} bps >= rebalance {config.rebalance_threshold_bps} bps",
            price_diff_bps=diff,
            adverse=adverse,
        )

    return PolicyDecision(
        decision="none",
        reason=f"move {diff} bps within thresholds",
        price_diff_bps=diff,
        adverse=adverse,
    )


def should_mitigate(position: Position, signal: VolatilitySignal, config: PolicyConfig) -> bool:
    """Operator-fed impermanent-loss predicate, independent of the price deviation."""
    if position.pool_share_units == 0:
        return False
    return signal.impermanent_loss_bps >= config.mitigation_threshold_bps


@dataclass(frozen=True)
class ThresholdPolicy:
    """Bundles the decision functions so the scheduler and upkeep check share one."""

    name: str = "threshold"

    def decide(
        self,
        *,
        position: Position,
        config: PolicyConfig,
        current_price: int,
        signal: Optional[VolatilitySignal] = None,
    ) -> PolicyDecision:
        decision = evaluate(position, config, current_price)
        if decision.decision != "none" or decision.degenerate or signal is None:
            return decision
        if should_mitigate(position, signal, config):
            return PolicyDecision(
                decision="mitigate",
                reason=(
                    f"impermanent loss {signal.impermanent_loss_bps} bps >= "
                    f"mitigation {config.mitigation_threshold_bps} bps"
                ),
                price_diff_bps=decision.price_diff_bps,
                adverse=decision.adverse,
            )
        return decision
