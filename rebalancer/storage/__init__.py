"""Concrete implementations of the persistence interfaces."""

from .noop_stores import MemoryEventStore, MemoryPositionStore
from .postgres import PostgresConfig, PostgresStores

__all__ = ["MemoryEventStore", "MemoryPositionStore", "PostgresConfig", "PostgresStores"]
