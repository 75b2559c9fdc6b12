"""Policy configuration and its operator update surface.

`PolicyConfig` is immutable; `PolicySettings` swaps in a new value on each
operator update so readers always see one consistent configuration.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Optional

from rebalancer.errors import InvalidInput

from .audit import EngineEvent, EventRecorder
from .safety import OperatorAuth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyConfig:
    """Thresholds driving the policy and router (all bps values are 1/100 %)."""

    max_order_size: int = 0  # Upper bound on any single trade or liquidity operation
    min_profit_threshold_bps: int = 0  # Edge required over the runner-up (or no-trade) quote
    rebalance_threshold_bps: int = 200  # Deviation in either direction
    stop_loss_threshold_bps: int = 1000  # Adverse deviation only
    mitigation_threshold_bps: int = 500  # Impermanent-loss signal level

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            _require_non_negative_int(name, value)


def _require_non_negative_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative, got {value}")
    return value


class PolicySettings:
    """Holder for the live `PolicyConfig` with operator-only setters."""

    def __init__(
        self,
        *,
        config: PolicyConfig,
        auth: OperatorAuth,
        recorder: Optional[EventRecorder] = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._recorder = recorder

    @property
    def current(self) -> PolicyConfig:
        return self._config

    def update_max_order_size(self, caller: str, value: int) -> PolicyConfig:
        return self._update(caller, "max_order_size", value)

    def update_min_profit_threshold(self, caller: str, value: int) -> PolicyConfig:
        return self._update(caller, "min_profit_threshold_bps", value)

    def update_rebalance_threshold(self, caller: str, value: int) -> PolicyConfig:
        return self._update(caller, "rebalance_threshold_bps", value)

    def update_stop_loss_threshold(self, caller: str, value: int) -> PolicyConfig:
        return self._update(caller, "stop_loss_threshold_bps", value)

    def update_mitigation_threshold(self, caller: str, value: int) -> PolicyConfig:
        return self._update(caller, "mitigation_threshold_bps", value)

    def _update(self, caller: str, field_name: str, value: int) -> PolicyConfig:
        self._auth.require(caller)
        _require_non_negative_int(field_name, value)

        previous = getattr(self._config, field_name)
        self._config = replace(self._config, **{field_name: value})
        logger.info(f"Policy {field_name} updated: {previous} -> {value}")

        if self._recorder is not None:
            self._recorder.record(
                EngineEvent(
                    event_type="PolicyUpdated",
                    message=f"{field_name} set to {value}",
                    context={"field": field_name, "previous": previous, "value": value},
                )
            )
        return self._config
