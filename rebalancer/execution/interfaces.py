from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence

from rebalancer.types import PriceObservation


@dataclass(frozen=True)
class LiquidityReceipt:
    """What the pool actually took when adding liquidity (may be less than requested)."""

    amount_a: int
    amount_b: int
    units: int


@dataclass(frozen=True)
class WithdrawalReceipt:
    units: int
    amount_a: int
    amount_b: int


class PriceOracle(Protocol):
    """Reference price feed. Zero or repeated prices are valid readings."""

    async def current_price(self) -> PriceObservation:
        """Return the latest observation (8-decimal fixed point)."""
        ...


class VenueAdapter(Protocol):
    """Execution venue able to quote and fill a swap along an asset path."""

    venue_id: str

    async def quote(self, path: Sequence[str], amount_in: int) -> int:
        """Return the amount of path[-1] that `amount_in` of path[0] would buy."""
        ...

    async def execute(
        self,
        path: Sequence[str],
        amount_in: int,
        min_out: int,
        deadline: datetime,
    ) -> int:
        """Fill the swap and return the realised output.

        Raises `DeadlineExpired` when `deadline` (absolute, UTC) has passed and
        `SlippageExceeded` when the fill would be below `min_out`.
        """
        ...


class LiquidityPool(Protocol):
    """Pool venue for the asset A/B pair."""

    venue_id: str
    share_token: str

    async def add_liquidity(
        self,
        amount_a: int,
        amount_b: int,
        min_a: int,
        min_b: int,
        deadline: datetime,
    ) -> LiquidityReceipt:
        ...

    async def remove_liquidity(
        self,
        units: int,
        min_a: int,
        min_b: int,
        deadline: datetime,
    ) -> WithdrawalReceipt:
        ...


class LedgerAdapter(Protocol):
    """Fungible-token ledger for the held assets and pool-share tokens."""

    async def balance_of(self, asset: str) -> int:
        ...

    async def approve(self, spender: str, asset: str, amount: int) -> None:
        ...

    async def transfer_in(self, asset: str, amount: int) -> None:
        """Pull `amount` of `asset` from the operator into the engine."""
        ...

    async def transfer_out(self, asset: str, amount: int) -> None:
        """Send `amount` of `asset` from the engine back to the operator."""
        ...
