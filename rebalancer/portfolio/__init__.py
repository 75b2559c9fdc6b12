"""Position state owned by the engine."""

from .position import Position, PositionBook

__all__ = ["Position", "PositionBook"]
