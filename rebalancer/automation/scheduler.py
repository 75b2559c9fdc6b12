"""Scheduler - the driving loop of the engine.

Each tick:
1. Fetches the reference price from the oracle
2. Asks the threshold policy for a decision (read-only)
3. Dispatches to the rebalance controller
4. Returns to idle whatever the outcome

Only one tick may hold the position critical section; a second concurrent tick
is rejected. A tick that has already issued a ledger-mutating call runs to
completion even when its caller is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal, Optional

from rebalancer.execution.interfaces import PriceOracle
from rebalancer.liquidity.controller import RebalanceController
from rebalancer.portfolio.position import PositionBook
from rebalancer.types import LiquidityResult, PriceObservation, SchedulerState, TickStatus, VolatilitySignal

from .audit import AuditLogger
from .policy import PolicyDecision, ThresholdPolicy
from .rules import PolicySettings
from .safety import OperatorAuth

logger = logging.getLogger(__name__)

TriggerMode = Literal["interval", "upkeep"]


@dataclass
class SchedulerConfig:
    """Configuration for the driving loop."""

    # Seconds between ticks (interval mode) or upkeep checks (upkeep mode)
    poll_interval: float = 60

    # "interval": tick on every poll; "upkeep": tick only when check_upkeep() says so
    trigger_mode: TriggerMode = "interval"

    # Stop after N iterations (None = run forever)
    max_iterations: Optional[int] = None


@dataclass
class TickResult:
    """What one tick observed, decided and did."""

    status: TickStatus
    started_at: datetime
    decision: Optional[PolicyDecision] = None
    observation: Optional[PriceObservation] = None
    outcome: Optional[LiquidityResult] = None
    states: list[SchedulerState] = field(default_factory=list)
    reason: str = ""


@dataclass(frozen=True)
class UpkeepCheck:
    needed: bool
    decision: PolicyDecision
    observation: PriceObservation


class Scheduler:
    """Tick-driven state machine over the threshold policy and the controller."""

    def __init__(
        self,
        *,
        oracle: PriceOracle,
        controller: RebalanceController,
        book: PositionBook,
        settings: PolicySettings,
        audit_logger: AuditLogger,
        auth: OperatorAuth,
        policy: Optional[ThresholdPolicy] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.oracle = oracle
        self.controller = controller
        self.book = book
        self.settings = settings
        self.audit_logger = audit_logger
        self.auth = auth
        self.policy = policy or ThresholdPolicy()
        self.config = config or SchedulerConfig()
        self._clock = clock

        self._state: SchedulerState = "idle"
        self._pending_signal: Optional[VolatilitySignal] = None
        self._running = False
        self._iteration = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def pending_signal(self) -> Optional[VolatilitySignal]:
        return self._pending_signal

    def submit_volatility_signal(self, caller: str, signal: VolatilitySignal) -> None:
        """Hand the next tick an impermanent-loss reading from external monitoring."""
        self.auth.require(caller)
        self._pending_signal = signal
        logger.info(f"Volatility signal queued: IL {signal.impermanent_loss_bps} bps from {signal.source}")

    def decide(self, price: int) -> PolicyDecision:
        """The single predicate shared by `tick` and `check_upkeep`."""
        return self.policy.decide(
            position=self.book.position,
            config=self.settings.current,
            current_price=price,
            signal=self._pending_signal,
        )

    async def check_upkeep(self) -> UpkeepCheck:
        """Read-only upkeep signal; never mutates state."""
        observation = await self.oracle.current_price()
        decision = self.decide(observation.price)
        return UpkeepCheck(needed=decision.decision != "none", decision=decision, observation=observation)

    async def tick(self, caller: str, now: Optional[datetime] = None) -> TickResult:
        self.auth.require(caller)
        started_at = now or self._clock()

        if self.book.lock.locked():
            logger.warning("Tick rejected: another tick is in progress")
            return TickResult(status="rejected", started_at=started_at, reason="tick already in progress")

        return await self.book.run_critical(lambda: self._run_tick(caller, started_at))

    async def _run_tick(self, caller: str, now: datetime) -> TickResult:
        result = TickResult(status="completed", started_at=now)
        try:
            self._enter("evaluating", result)
            observation = await self.oracle.current_price()
            result.observation = observation

            signal = self._pending_signal
            decision = self.decide(observation.price)
            self._pending_signal = None
            result.decision = decision
            logger.info(f"Tick decision: {decision.decision} ({decision.reason})")

            if decision.degenerate:
                self.audit_logger.log_degenerate_state(decision.reason)
            elif decision.decision == "rebalance":
                self._enter("rebalance_in_flight", result)
                result.outcome = await self.controller.rebalance(caller, observation.price, now)
            elif decision.decision == "stop_loss":
                self._enter("stop_loss_in_flight", result)
                result.outcome = await self.controller.trigger_stop_loss(caller, observation.price)
            elif decision.decision == "mitigate" and signal is not None:
                self._enter("mitigation_check", result)
                result.outcome = await self.controller.mitigate_impermanent_loss(caller, signal)

            if result.outcome is not None and not result.outcome.ok:
                result.status = "failed"
                result.reason = result.outcome.reason
            else:
                result.reason = decision.reason
        except Exception as exc:
            logger.exception(f"Tick failed: {exc}")
            self.audit_logger.log_error(f"Tick failed: {type(exc).__name__}: {exc}")
            result.status = "failed"
            result.reason = f"{type(exc).__name__}: {exc}"
        finally:
            self._enter("idle", result)
        return result

    def _enter(self, state: SchedulerState, result: TickResult) -> None:
        self._state = state
        result.states.append(state)

    async def run_once(self, caller: str) -> Optional[TickResult]:
        """One loop iteration: tick, or in upkeep mode tick only when needed."""
        self._iteration += 1
        if self.config.trigger_mode == "upkeep":
            try:
                upkeep = await self.check_upkeep()
            except Exception as exc:
                logger.exception(f"Upkeep check failed: {exc}")
                return None
            if not upkeep.needed:
                logger.debug(f"No upkeep needed: {upkeep.decision.reason}")
                return None
        return await self.tick(caller)

    async def run(self, caller: str) -> None:
        """Run the driving loop until stopped or max_iterations is reached."""
        self.auth.require(caller)
        logger.info(
            f"Starting scheduler: mode={self.config.trigger_mode}, interval={self.config.poll_interval}s"
        )
        self._running = True
        try:
            while self._running:
                await self.run_once(caller)

                if self.config.max_iterations and self._iteration >= self.config.max_iterations:
                    logger.info(f"Reached max iterations ({self.config.max_iterations})")
                    break

                await asyncio.sleep(self.config.poll_interval)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            raise
        finally:
            self._running = False
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Signal the loop to stop after the current iteration."""
        self._running = False
