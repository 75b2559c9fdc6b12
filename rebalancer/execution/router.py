"""Best-execution router across an open list of venues.

Quotes are gathered concurrently with a per-venue timeout; failing venues are
excluded, never retried. Only the winning venue is asked to execute, and the
position is updated in a single commit only after that venue confirms.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from rebalancer.automation.audit import AuditLogger
from rebalancer.automation.rules import PolicySettings
from rebalancer.automation.safety import (
    BalanceCheck,
    OperatorAuth,
    OrderSizeCheck,
    PathCheck,
    PositiveAmountCheck,
    enforce,
)
from rebalancer.errors import DeadlineExpired, InvalidInput, SlippageExceeded
from rebalancer.execution.interfaces import LedgerAdapter, VenueAdapter
from rebalancer.portfolio.position import PositionBook
from rebalancer.types import BPS_DENOMINATOR, RouteResult, TradeIntent, VenueQuote

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_TIMEOUT_SECONDS = 3.0
DEFAULT_DEADLINE_SECONDS = 60
DEFAULT_SLIPPAGE_TOLERANCE_BPS = 50


def edge_bps(amount_out: int, baseline: int) -> Optional[int]:
    """Edge of `amount_out` over `baseline` in bps; None when the baseline is zero."""
    if baseline <= 0:
        return None
    return (amount_out - baseline) * BPS_DENOMINATOR // baseline


def rank_quotes(quotes: Sequence[VenueQuote]) -> list[VenueQuote]:
    """Usable quotes, best first; equal outputs keep the lower priority index first."""
    usable = [q for q in quotes if q.ok and q.amount_out > 0]
    return sorted(usable, key=lambda q: (-q.amount_out, q.priority))


class ExecutionRouter:
    """Queries every venue, selects the best quote and executes it."""

    def __init__(
        self,
        *,
        venues: Sequence[VenueAdapter],
        ledger: LedgerAdapter,
        book: PositionBook,
        settings: PolicySettings,
        audit_logger: AuditLogger,
        auth: OperatorAuth,
        quote_timeout_seconds: float = DEFAULT_QUOTE_TIMEOUT_SECONDS,
        deadline_seconds: int = DEFAULT_DEADLINE_SECONDS,
        slippage_tolerance_bps: int = DEFAULT_SLIPPAGE_TOLERANCE_BPS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not venues:
            raise InvalidInput("ExecutionRouter needs at least one venue")
        ids = [v.venue_id for v in venues]
        if len(set(ids)) != len(ids):
            raise InvalidInput(f"Duplicate venue ids: {ids}")
        if not 0 <= slippage_tolerance_bps < BPS_DENOMINATOR:
            raise InvalidInput(f"slippage_tolerance_bps out of range: {slippage_tolerance_bps}")

        self._venues = list(venues)
        self._ledger = ledger
        self._book = book
        self._settings = settings
        self._audit = audit_logger
        self._auth = auth
        self._quote_timeout = quote_timeout_seconds
        self._deadline_seconds = deadline_seconds
        self._slippage_tolerance_bps = slippage_tolerance_bps
        self._clock = clock

    @property
    def venue_ids(self) -> list[str]:
        return [v.venue_id for v in self._venues]

    def build_intent(self, amount_in: int, path: Sequence[str], min_acceptable_out: int = 0) -> TradeIntent:
        """Validate a trade request against the limits and the current position."""
        position = self._book.position
        config = self._settings.current
        route = tuple(path)

        enforce(PositiveAmountCheck("amount_in", amount_in))
        enforce(
            OrderSizeCheck("amount_in", amount_in, config.max_order_size),
            PathCheck(route, position),
        )
        enforce(BalanceCheck(position, route[0], amount_in))
        if min_acceptable_out < 0:
            raise InvalidInput(f"min_acceptable_out must be non-negative, got {min_acceptable_out}")

        return TradeIntent(amount_in=amount_in, route=route, min_acceptable_out=min_acceptable_out)

    async def gather_quotes(self, intent: TradeIntent) -> list[VenueQuote]:
        return list(
            await asyncio.gather(
                *(self._quote_one(priority, venue, intent) for priority, venue in enumerate(self._venues))
            )
        )

    async def _quote_one(self, priority: int, venue: VenueAdapter, intent: TradeIntent) -> VenueQuote:
        started = time.perf_counter()
        amount_out: Optional[int] = None
        error: Optional[str] = None
        try:
            amount_out = await asyncio.wait_for(
                venue.quote(intent.route, intent.amount_in),
                timeout=self._quote_timeout,
            )
        except asyncio.TimeoutError:
            error = f"quote timed out after {self._quote_timeout}s"
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"

        if error is None and (isinstance(amount_out, bool) or not isinstance(amount_out, int) or amount_out < 0):
            error = f"invalid quote {amount_out!r}"
            amount_out = None

        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        if error is not None:
            logger.warning(f"Venue {venue.venue_id} unavailable: {error}")
        else:
            logger.debug(f"Venue {venue.venue_id} quoted {amount_out} in {latency_ms}ms")

        return VenueQuote(
            venue_id=venue.venue_id,
            priority=priority,
            amount_out=amount_out,
            latency_ms=latency_ms,
            error=error,
        )

    async def route(
        self,
        caller: str,
        amount_in: int,
        path: Sequence[str],
        *,
        min_acceptable_out: int = 0,
    ) -> RouteResult:
        """Route a swap to the best venue.

        Returns `no_profitable_route` without side effects when no quote clears
        the profit gate, and `execution_failed` (position untouched, no
        fallback) when the selected venue fails.

        The gate compares the best quote with the runner-up. With a single
        usable quote the baseline is `min_acceptable_out`, the caller's value
        of not trading in output-asset units; a zero baseline passes.
        """
        self._auth.require(caller)
        intent = self.build_intent(amount_in, path, min_acceptable_out)
        config = self._settings.current

        quotes = await self.gather_quotes(intent)
        ranked = rank_quotes(quotes)
        if not ranked:
            return self._no_route(intent, quotes, "no venue returned a usable quote")

        best = ranked[0]
        baseline = ranked[1].amount_out if len(ranked) > 1 else intent.min_acceptable_out
        edge = edge_bps(best.amount_out, baseline)
        if edge is not None and edge < config.min_profit_threshold_bps:
            return self._no_route(
                intent,
                quotes,
                f"best edge {edge} bps below {config.min_profit_threshold_bps} bps",
                venue_id=best.venue_id,
                amount_out=best.amount_out,
                edge=edge,
            )

        tolerated = best.amount_out * (BPS_DENOMINATOR - self._slippage_tolerance_bps) // BPS_DENOMINATOR
        min_out = max(intent.min_acceptable_out, tolerated)
        if min_out > best.amount_out:
            return self._no_route(
                intent,
                quotes,
                f"best quote {best.amount_out} below minimum acceptable {intent.min_acceptable_out}",
                venue_id=best.venue_id,
                amount_out=best.amount_out,
                edge=edge,
            )

        return await self._execute(intent, best, min_out, edge, quotes)

    async def _execute(
        self,
        intent: TradeIntent,
        best: VenueQuote,
        min_out: int,
        edge: Optional[int],
        quotes: Sequence[VenueQuote],
    ) -> RouteResult:
        venue = self._venues[best.priority]
        deadline = self._clock() + timedelta(seconds=self._deadline_seconds)
        logger.info(
            f"Routing {intent.amount_in} {intent.asset_in} -> {intent.asset_out} via {venue.venue_id} "
            f"(quote={best.amount_out}, min_out={min_out})"
        )

        self._book.mark_ledger_touched()
        try:
            await self._ledger.approve(venue.venue_id, intent.asset_in, intent.amount_in)
            amount_out = await venue.execute(intent.route, intent.amount_in, min_out, deadline)
        except DeadlineExpired as exc:
            return self._failed(intent, best, quotes, edge, f"deadline_expired: {exc}")
        except SlippageExceeded as exc:
            return self._failed(intent, best, quotes, edge, f"slippage_exceeded: {exc}")
        except Exception as exc:
            return self._failed(intent, best, quotes, edge, f"venue_error: {type(exc).__name__}: {exc}")

        if isinstance(amount_out, bool) or not isinstance(amount_out, int):
            return self._failed(intent, best, quotes, edge, f"venue_error: invalid fill {amount_out!r}")
        if amount_out < min_out:
            return self._failed(intent, best, quotes, edge, f"slippage_exceeded: fill {amount_out} below {min_out}")

        position = self._book.position
        self._book.commit(
            position.with_balance_changes({intent.asset_in: -intent.amount_in, intent.asset_out: amount_out})
        )
        self._audit.log_swap_executed(
            asset_in=intent.asset_in,
            asset_out=intent.asset_out,
            amount_in=intent.amount_in,
            amount_out=amount_out,
            venue_id=venue.venue_id,
        )
        return RouteResult(
            status="executed",
            reason="filled",
            amount_in=intent.amount_in,
            route=intent.route,
            venue_id=venue.venue_id,
            amount_out=amount_out,
            edge_bps=edge,
            quotes=tuple(quotes),
        )

    def _no_route(
        self,
        intent: TradeIntent,
        quotes: Sequence[VenueQuote],
        reason: str,
        *,
        venue_id: Optional[str] = None,
        amount_out: Optional[int] = None,
        edge: Optional[int] = None,
    ) -> RouteResult:
        logger.info(f"No profitable route for {intent.amount_in} {intent.asset_in}: {reason}")
        return RouteResult(
            status="no_profitable_route",
            reason=reason,
            amount_in=intent.amount_in,
            route=intent.route,
            venue_id=venue_id,
            amount_out=amount_out,
            edge_bps=edge,
            quotes=tuple(quotes),
        )

    def _failed(
        self,
        intent: TradeIntent,
        best: VenueQuote,
        quotes: Sequence[VenueQuote],
        edge: Optional[int],
        reason: str,
    ) -> RouteResult:
        logger.error(f"Execution on {best.venue_id} failed: {reason}")
        self._audit.log_error(
            f"Swap execution failed on {best.venue_id}",
            context={"venue_id": best.venue_id, "amount_in": intent.amount_in, "reason": reason},
        )
        return RouteResult(
            status="execution_failed",
            reason=reason,
            amount_in=intent.amount_in,
            route=intent.route,
            venue_id=best.venue_id,
            edge_bps=edge,
            quotes=tuple(quotes),
        )
