"""SQLAlchemy models for the engine's audit trail and position snapshots.

Tables:
- engine_events
- position_snapshots

Amounts are base-unit integers that can exceed BIGINT, so they are NUMERIC.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, Index, Numeric, Text, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class EngineEventRecord(Base):
    """Append-only audit event.

    Table: engine_events
    """

    __tablename__ = "engine_events"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    event_type = Column(Text, nullable=False)  # LiquidityAdded|SwapExecuted|Rebalanced|...
    message = Column(Text, nullable=False)
    severity = Column(Text, nullable=False, default="info")
    event_time = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    context_json = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_engine_events_time", "event_time"),
        Index("idx_engine_events_type", "event_type", "event_time"),
    )

    def __repr__(self) -> str:
        return f"<EngineEventRecord(id={self.id}, type={self.event_type}, severity={self.severity})>"


class PositionSnapshot(Base):
    """Position as committed after a successful mutation.

    Table: position_snapshots
    """

    __tablename__ = "position_snapshots"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    asset_a = Column(Text, nullable=False)
    asset_b = Column(Text, nullable=False)
    asset_c = Column(Text, nullable=True)
    balance_a = Column(Numeric(78, 0), nullable=False)
    balance_b = Column(Numeric(78, 0), nullable=False)
    balance_c = Column(Numeric(78, 0), nullable=True)
    pool_share_units = Column(Numeric(78, 0), nullable=False)
    last_reference_price = Column(Numeric(78, 0), nullable=False)
    last_rebalance_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_position_snapshots_created", "created_at"),)

    def __repr__(self) -> str:
        return f"<PositionSnapshot(id={self.id}, units={self.pool_share_units}, ref={self.last_reference_price})>"
