"""In-memory paper collaborators for dry runs and tests.

- `PaperLedger`: engine/operator balances plus spender allowances
- `PaperPool`: constant-product A/B pool acting as swap venue and liquidity pool
- `PaperVenue`: chains several paper pools for multi-hop routes
- `StaticPriceOracle`: settable reference price

Nothing here places real orders or moves real funds.
"""

from __future__ import annotations

import asyncio
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from rebalancer.errors import DeadlineExpired, InvalidInput, SlippageExceeded, VenueUnavailable
from rebalancer.execution.interfaces import LiquidityReceipt, WithdrawalReceipt
from rebalancer.types import BPS_DENOMINATOR, PriceObservation

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaperLedger:
    """Fungible balances for the engine and the operator, with allowances."""

    def __init__(
        self,
        *,
        engine_balances: Optional[dict[str, int]] = None,
        operator_balances: Optional[dict[str, int]] = None,
    ) -> None:
        self._engine: dict[str, int] = defaultdict(int, engine_balances or {})
        self._operator: dict[str, int] = defaultdict(int, operator_balances or {})
        self._allowances: dict[tuple[str, str], int] = defaultdict(int)

    async def balance_of(self, asset: str) -> int:
        return self._engine[asset]

    def operator_balance_of(self, asset: str) -> int:
        return self._operator[asset]

    def allowance(self, spender: str, asset: str) -> int:
        return self._allowances[(spender, asset)]

    async def approve(self, spender: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise InvalidInput("Approval amount must be non-negative")
        self._allowances[(spender, asset)] = amount

    async def transfer_in(self, asset: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInput("Transfer amount must be positive")
        if self._operator[asset] < amount:
            raise InvalidInput(f"Operator holds {self._operator[asset]} {asset}, cannot transfer {amount}")
        self._operator[asset] -= amount
        self._engine[asset] += amount

    async def transfer_out(self, asset: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInput("Transfer amount must be positive")
        if self._engine[asset] < amount:
            raise InvalidInput(f"Engine holds {self._engine[asset]} {asset}, cannot transfer {amount}")
        self._engine[asset] -= amount
        self._operator[asset] += amount

    def spend(self, spender: str, asset: str, amount: int) -> None:
        """Pull `amount` from the engine against the spender's allowance."""
        key = (spender, asset)
        if self._allowances[key] < amount:
            raise InvalidInput(f"{spender} allowance for {asset} is {self._allowances[key]}, needs {amount}")
        if self._engine[asset] < amount:
            raise InvalidInput(f"Engine holds {self._engine[asset]} {asset}, cannot spend {amount}")
        self._allowances[key] -= amount
        self._engine[asset] -= amount

    def credit(self, asset: str, amount: int) -> None:
        self._engine[asset] += amount


class PaperPool:
    """Constant-product pool (x * y = k) with a swap fee in basis points.

    When a `ledger` is attached, swaps and liquidity moves spend the engine's
    allowances and update its balances, so the ledger mirrors the position.
    """

    def __init__(
        self,
        *,
        venue_id: str,
        asset_a: str,
        asset_b: str,
        reserve_a: int = 0,
        reserve_b: int = 0,
        fee_bps: int = 30,
        ledger: Optional[PaperLedger] = None,
        quote_delay_seconds: float = 0.0,
        clock: Clock = _utcnow,
    ) -> None:
        if not 0 <= fee_bps < BPS_DENOMINATOR:
            raise InvalidInput(f"fee_bps out of range: {fee_bps}")
        self.venue_id = venue_id
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.share_token = f"{venue_id}-LP"
        self.reserve_a = reserve_a
        self.reserve_b = reserve_b
        self.total_units = math.isqrt(reserve_a * reserve_b)
        self.fee_bps = fee_bps
        self.ledger = ledger
        self.quote_delay_seconds = quote_delay_seconds
        self.offline = False
        self._clock = clock

    @property
    def pair(self) -> frozenset[str]:
        return frozenset((self.asset_a, self.asset_b))

    def _reserves(self, asset_in: str, asset_out: str) -> tuple[int, int]:
        if (asset_in, asset_out) == (self.asset_a, self.asset_b):
            return self.reserve_a, self.reserve_b
        if (asset_in, asset_out) == (self.asset_b, self.asset_a):
            return self.reserve_b, self.reserve_a
        raise VenueUnavailable(f"{self.venue_id} does not trade {asset_in}->{asset_out}")

    def amount_out(self, asset_in: str, asset_out: str, amount_in: int) -> int:
        reserve_in, reserve_out = self._reserves(asset_in, asset_out)
        if reserve_in == 0 or reserve_out == 0:
            raise VenueUnavailable(f"{self.venue_id} has no liquidity")
        with_fee = amount_in * (BPS_DENOMINATOR - self.fee_bps)
        return with_fee * reserve_out // (reserve_in * BPS_DENOMINATOR + with_fee)

    def apply_swap(self, asset_in: str, amount_in: int, amount_out: int) -> None:
        if asset_in == self.asset_a:
            self.reserve_a += amount_in
            self.reserve_b -= amount_out
        else:
            self.reserve_b += amount_in
            self.reserve_a -= amount_out

    def _check_online(self) -> None:
        if self.offline:
            raise VenueUnavailable(f"{self.venue_id} is offline")

    # ---- VenueAdapter

    async def quote(self, path: Sequence[str], amount_in: int) -> int:
        self._check_online()
        if self.quote_delay_seconds:
            await asyncio.sleep(self.quote_delay_seconds)
        if len(path) != 2:
            raise VenueUnavailable(f"{self.venue_id} only quotes single-hop routes")
        return self.amount_out(path[0], path[1], amount_in)

    async def execute(self, path: Sequence[str], amount_in: int, min_out: int, deadline: datetime) -> int:
        self._check_online()
        if self._clock() > deadline:
            raise DeadlineExpired(f"{self.venue_id}: deadline {deadline.isoformat()} passed")
        if len(path) != 2:
            raise VenueUnavailable(f"{self.venue_id} only executes single-hop routes")
        out = self.amount_out(path[0], path[1], amount_in)
        if out < min_out:
            raise SlippageExceeded(f"{self.venue_id}: output {out} below minimum {min_out}")
        if self.ledger is not None:
            self.ledger.spend(self.venue_id, path[0], amount_in)
            self.ledger.credit(path[1], out)
        self.apply_swap(path[0], amount_in, out)
        return out

    # ---- LiquidityPool

    async def add_liquidity(
        self,
        amount_a: int,
        amount_b: int,
        min_a: int,
        min_b: int,
        deadline: datetime,
    ) -> LiquidityReceipt:
        self._check_online()
        if self._clock() > deadline:
            raise DeadlineExpired(f"{self.venue_id}: deadline {deadline.isoformat()} passed")

        if self.total_units == 0:
            used_a, used_b = amount_a, amount_b
            units = math.isqrt(used_a * used_b)
        else:
            optimal_b = amount_a * self.reserve_b // self.reserve_a
            if optimal_b <= amount_b:
                used_a, used_b = amount_a, optimal_b
            else:
                used_a, used_b = amount_b * self.reserve_a // self.reserve_b, amount_b
            units = min(used_a * self.total_units // self.reserve_a, used_b * self.total_units // self.reserve_b)

        if used_a < min_a or used_b < min_b:
            raise SlippageExceeded(f"{self.venue_id}: pool ratio moved, would use {used_a}/{used_b}")
        if units == 0:
            raise InvalidInput(f"{self.venue_id}: deposit too small to mint pool units")

        if self.ledger is not None:
            self.ledger.spend(self.venue_id, self.asset_a, used_a)
            self.ledger.spend(self.venue_id, self.asset_b, used_b)
            self.ledger.credit(self.share_token, units)
        self.reserve_a += used_a
        self.reserve_b += used_b
        self.total_units += units
        return LiquidityReceipt(amount_a=used_a, amount_b=used_b, units=units)

    async def remove_liquidity(
        self,
        units: int,
        min_a: int,
        min_b: int,
        deadline: datetime,
    ) -> WithdrawalReceipt:
        self._check_online()
        if self._clock() > deadline:
            raise DeadlineExpired(f"{self.venue_id}: deadline {deadline.isoformat()} passed")
        if units <= 0 or units > self.total_units:
            raise InvalidInput(f"{self.venue_id}: cannot burn {units} of {self.total_units} units")

        amount_a = units * self.reserve_a // self.total_units
        amount_b = units * self.reserve_b // self.total_units
        if amount_a < min_a or amount_b < min_b:
            raise SlippageExceeded(f"{self.venue_id}: withdrawal {amount_a}/{amount_b} below minimum")

        if self.ledger is not None:
            self.ledger.spend(self.venue_id, self.share_token, units)
            self.ledger.credit(self.asset_a, amount_a)
            self.ledger.credit(self.asset_b, amount_b)
        self.reserve_a -= amount_a
        self.reserve_b -= amount_b
        self.total_units -= units
        return WithdrawalReceipt(units=units, amount_a=amount_a, amount_b=amount_b)


class PaperVenue:
    """Multi-hop venue routing each hop through the matching paper pool."""

    def __init__(
        self,
        *,
        venue_id: str,
        pools: Iterable[PaperPool],
        ledger: Optional[PaperLedger] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.venue_id = venue_id
        self._pools = {pool.pair: pool for pool in pools}
        self.ledger = ledger
        self._clock = clock

    def _hops(self, path: Sequence[str]) -> list[tuple[PaperPool, str, str]]:
        hops = []
        for asset_in, asset_out in zip(path, path[1:]):
            pool = self._pools.get(frozenset((asset_in, asset_out)))
            if pool is None:
                raise VenueUnavailable(f"{self.venue_id} has no pool for {asset_in}/{asset_out}")
            hops.append((pool, asset_in, asset_out))
        return hops

    def _simulate(self, path: Sequence[str], amount_in: int) -> list[int]:
        amounts = [amount_in]
        for pool, asset_in, asset_out in self._hops(path):
            pool._check_online()
            amounts.append(pool.amount_out(asset_in, asset_out, amounts[-1]))
        return amounts

    async def quote(self, path: Sequence[str], amount_in: int) -> int:
        return self._simulate(path, amount_in)[-1]

    async def execute(self, path: Sequence[str], amount_in: int, min_out: int, deadline: datetime) -> int:
        if self._clock() > deadline:
            raise DeadlineExpired(f"{self.venue_id}: deadline {deadline.isoformat()} passed")
        amounts = self._simulate(path, amount_in)
        if amounts[-1] < min_out:
            raise SlippageExceeded(f"{self.venue_id}: output {amounts[-1]} below minimum {min_out}")
        if self.ledger is not None:
            self.ledger.spend(self.venue_id, path[0], amount_in)
            self.ledger.credit(path[-1], amounts[-1])
        for (pool, asset_in, _), hop_in, hop_out in zip(self._hops(path), amounts, amounts[1:]):
            pool.apply_swap(asset_in, hop_in, hop_out)
        return amounts[-1]


@dataclass
class StaticPriceOracle:
    """Oracle returning whatever price was last set (8-decimal fixed point)."""

    price: int = 0
    clock: Clock = _utcnow

    def set_price(self, price: int) -> None:
        self.price = price

    async def current_price(self) -> PriceObservation:
        return PriceObservation(price=self.price, observed_at=self.clock())
