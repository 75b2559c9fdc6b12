from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, Sequence

PRICE_DECIMALS = 8
BPS_DENOMINATOR = 10_000

DecisionType = Literal["none", "rebalance", "stop_loss", "mitigate"]
RouteStatus = Literal["executed", "no_profitable_route", "execution_failed"]
LiquidityStatus = Literal["executed", "no_action", "failed"]
TickStatus = Literal["completed", "failed", "rejected"]
SchedulerState = Literal[
    "idle",
    "evaluating",
    "rebalance_in_flight",
    "stop_loss_in_flight",
    "mitigation_check",
]


@dataclass(frozen=True)
class PriceObservation:
    """Oracle reading as an integer with fixed decimals (8, like the feed)."""

    price: int
    observed_at: datetime
    decimals: int = PRICE_DECIMALS


@dataclass(frozen=True)
class VolatilitySignal:
    """Externally computed impermanent-loss/volatility reading."""

    impermanent_loss_bps: int
    observed_at: datetime
    source: str = "operator"


@dataclass(frozen=True)
class TradeIntent:
    amount_in: int
    route: tuple[str, ...]
    min_acceptable_out: int = 0

    @property
    def asset_in(self) -> str:
        return self.route[0]

    @property
    def asset_out(self) -> str:
        return self.route[-1]


@dataclass(frozen=True)
class VenueQuote:
    venue_id: str
    priority: int
    amount_out: Optional[int]
    latency_ms: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.amount_out is not None


@dataclass(frozen=True)
class RouteResult:
    status: RouteStatus
    reason: str
    amount_in: int
    route: tuple[str, ...]
    venue_id: Optional[str] = None
    amount_out: Optional[int] = None
    edge_bps: Optional[int] = None
    quotes: Sequence[VenueQuote] = field(default_factory=tuple)

    @property
    def executed(self) -> bool:
        return self.status == "executed"


@dataclass(frozen=True)
class LiquidityResult:
    """Outcome of a controller action. `no_action` is a valid zero-sized result."""

    status: LiquidityStatus
    reason: str
    amount_a: int = 0
    amount_b: int = 0
    units: int = 0
    price: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass(frozen=True)
class RebalancePlan:
    """Liquidity adjustments a strategy asks for before a reference price reset."""

    remove_units: int = 0
    add_amount_a: int = 0
    add_amount_b: int = 0
    readd_withdrawn: bool = False  # Re-provide whatever the removal returned

    @property
    def is_empty(self) -> bool:
        return self.remove_units == 0 and self.add_amount_a == 0 and self.add_amount_b == 0
