"""Decision side of the engine.

This package defines the threshold policy, its configuration, operator and
input checks and the audit trail. The scheduler lives in
`rebalancer.automation.scheduler` and is imported from there directly.
"""

from .audit import AuditLogger, EngineEvent, EventRecorder
from .policy import PolicyDecision, ThresholdPolicy, evaluate, price_diff_bps, should_mitigate
from .rules import PolicyConfig, PolicySettings
from .safety import (
    BalanceCheck,
    OperatorAuth,
    OrderSizeCheck,
    PathCheck,
    PoolShareCheck,
    PositiveAmountCheck,
    SafetyCheck,
    SafetyResult,
    enforce,
    run_safety_checks,
)

__all__ = [
    # Policy
    "PolicyDecision",
    "ThresholdPolicy",
    "evaluate",
    "price_diff_bps",
    "should_mitigate",
    # Rules
    "PolicyConfig",
    "PolicySettings",
    # Safety
    "OperatorAuth",
    "SafetyCheck",
    "SafetyResult",
    "run_safety_checks",
    "enforce",
    "PositiveAmountCheck",
    "OrderSizeCheck",
    "PathCheck",
    "BalanceCheck",
    "PoolShareCheck",
    # Audit
    "AuditLogger",
    "EngineEvent",
    "EventRecorder",
]
