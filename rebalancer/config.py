"""Engine configuration loaded from the environment.

Environment:
    REBALANCER_OPERATOR          - Required. Operator identity for mutating calls.
    REBALANCER_ASSETS            - Comma-separated asset ids (2 or 3), default "WETH,USDC"
    REBALANCER_MAX_ORDER_SIZE    - Required. Max single trade/liquidity amount (base units)
    REBALANCER_MIN_PROFIT_BPS    - Router edge over the runner-up quote
    REBALANCER_REBALANCE_BPS     - Rebalance threshold
    REBALANCER_STOP_LOSS_BPS     - Stop-loss threshold (adverse moves only)
    REBALANCER_MITIGATION_BPS    - Impermanent-loss mitigation threshold
    REBALANCER_POLL_INTERVAL     - Seconds between scheduler iterations
    REBALANCER_TRIGGER_MODE      - "interval" or "upkeep"
    REBALANCER_QUOTE_TIMEOUT     - Per-venue quote timeout in seconds
    REBALANCER_DEADLINE_SECONDS  - Execution deadline offset in seconds
    REBALANCER_SLIPPAGE_BPS      - Slippage tolerance applied to the winning quote
    REBALANCER_ORACLE_URL        - Optional JSON price endpoint
    REBALANCER_ORACLE_FIELD      - Dot path of the price in the oracle response
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from rebalancer.automation.rules import PolicyConfig
from rebalancer.automation.scheduler import SchedulerConfig
from rebalancer.errors import InvalidInput
from rebalancer.execution.router import (
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_QUOTE_TIMEOUT_SECONDS,
    DEFAULT_SLIPPAGE_TOLERANCE_BPS,
)


@dataclass
class EngineConfig:
    """Top-level configuration for one engine instance."""

    operator: str
    assets: tuple[str, ...] = ("WETH", "USDC")
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    quote_timeout_seconds: float = DEFAULT_QUOTE_TIMEOUT_SECONDS
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    slippage_tolerance_bps: int = DEFAULT_SLIPPAGE_TOLERANCE_BPS
    oracle_url: Optional[str] = None
    oracle_field: str = "price"

    def __post_init__(self) -> None:
        if not self.operator:
            raise InvalidInput("operator identity is required")
        if len(self.assets) not in (2, 3):
            raise InvalidInput(f"Position holds two or three assets, got {len(self.assets)}")
        if len(set(self.assets)) != len(self.assets):
            raise InvalidInput(f"Duplicate assets: {self.assets}")
        if self.scheduler.trigger_mode not in ("interval", "upkeep"):
            raise InvalidInput(f"Unknown trigger mode: {self.scheduler.trigger_mode}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> EngineConfig:
        env = os.environ if env is None else env

        operator = env.get("REBALANCER_OPERATOR", "")
        if not operator:
            raise RuntimeError("REBALANCER_OPERATOR environment variable is required")
        if not env.get("REBALANCER_MAX_ORDER_SIZE"):
            raise RuntimeError("REBALANCER_MAX_ORDER_SIZE environment variable is required")

        assets = tuple(a.strip() for a in env.get("REBALANCER_ASSETS", "WETH,USDC").split(",") if a.strip())
        defaults = PolicyConfig()
        policy = PolicyConfig(
            max_order_size=_int(env, "REBALANCER_MAX_ORDER_SIZE", defaults.max_order_size),
            min_profit_threshold_bps=_int(env, "REBALANCER_MIN_PROFIT_BPS", defaults.min_profit_threshold_bps),
            rebalance_threshold_bps=_int(env, "REBALANCER_REBALANCE_BPS", defaults.rebalance_threshold_bps),
            stop_loss_threshold_bps=_int(env, "REBALANCER_STOP_LOSS_BPS", defaults.stop_loss_threshold_bps),
            mitigation_threshold_bps=_int(env, "REBALANCER_MITIGATION_BPS", defaults.mitigation_threshold_bps),
        )
        scheduler = SchedulerConfig(
            poll_interval=float(env.get("REBALANCER_POLL_INTERVAL", "60")),
            trigger_mode=env.get("REBALANCER_TRIGGER_MODE", "interval"),  # type: ignore[arg-type]
        )

        return cls(
            operator=operator,
            assets=assets,
            policy=policy,
            scheduler=scheduler,
            quote_timeout_seconds=float(env.get("REBALANCER_QUOTE_TIMEOUT", str(DEFAULT_QUOTE_TIMEOUT_SECONDS))),
            deadline_seconds=_int(env, "REBALANCER_DEADLINE_SECONDS", DEFAULT_DEADLINE_SECONDS),
            slippage_tolerance_bps=_int(env, "REBALANCER_SLIPPAGE_BPS", DEFAULT_SLIPPAGE_TOLERANCE_BPS),
            oracle_url=env.get("REBALANCER_ORACLE_URL") or None,
            oracle_field=env.get("REBALANCER_ORACLE_FIELD", "price"),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidInput(f"{name} must be an integer, got {raw!r}") from exc
