from .controller import RebalanceController
from .strategies import (
    FractionalWithdrawal,
    HoldLiquidity,
    RebalanceStrategy,
    RecenterLiquidity,
    WithdrawalStrategy,
    ZeroWithdrawal,
)

__all__ = [
    "RebalanceController",
    "RebalanceStrategy",
    "WithdrawalStrategy",
    "HoldLiquidity",
    "RecenterLiquidity",
    "ZeroWithdrawal",
    "FractionalWithdrawal",
]
