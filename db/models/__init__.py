"""SQLAlchemy models for the rebalancer database."""

from db.models.engine import Base, EngineEventRecord, PositionSnapshot

__all__ = ["Base", "EngineEventRecord", "PositionSnapshot"]
