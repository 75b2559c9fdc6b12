"""Persistence boundary (interfaces only)."""

from .interfaces import EventStore, PositionSnapshotStore

__all__ = ["EventStore", "PositionSnapshotStore"]
