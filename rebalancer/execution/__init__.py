"""Execution side: collaborator interfaces, router and paper adapters."""

from .interfaces import LedgerAdapter, LiquidityPool, LiquidityReceipt, PriceOracle, VenueAdapter, WithdrawalReceipt
from .paper import PaperLedger, PaperPool, PaperVenue, StaticPriceOracle
from .router import ExecutionRouter

__all__ = [
    "ExecutionRouter",
    "LedgerAdapter",
    "LiquidityPool",
    "LiquidityReceipt",
    "PriceOracle",
    "VenueAdapter",
    "WithdrawalReceipt",
    "PaperLedger",
    "PaperPool",
    "PaperVenue",
    "StaticPriceOracle",
]
