from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import create_engine, text

from rebalancer.automation.audit import EngineEvent
from rebalancer.persistence.interfaces import EventStore, PositionSnapshotStore
from rebalancer.portfolio.position import Position
from rebalancer.storage.postgres.config import PostgresConfig


def _as_utc(dt: datetime) -> datetime:
    """Postgres TIMESTAMP columns come back naive; treat them as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class PostgresStores(EventStore, PositionSnapshotStore):
    """PostgreSQL-backed audit trail and position snapshots.

    Tables are created by `python -m db.init_db`.
    """

    def __init__(self, *, config: PostgresConfig) -> None:
        self._config = config
        self._engine: Any | None = None

    def _get_engine(self) -> Any:
        if self._engine is None:
            # Do not log the URL (it may contain secrets).
            self._engine = create_engine(self._config.database_url, echo=self._config.echo, pool_pre_ping=True)
        return self._engine

    # ---- EventStore

    def log_event(
        self,
        *,
        event_type: str,
        message: str,
        severity: str = "info",
        event_time: datetime | None = None,
        context_json: str | None = None,
    ) -> None:
        engine = self._get_engine()
        stmt = text(
            """
            INSERT INTO engine_events (event_type, message, severity, event_time, context_json)
            VALUES (:event_type, :message, :severity, :event_time, :context_json)
            """
        )
        with engine.begin() as conn:
            conn.execute(
                stmt,
                {
                    "event_type": event_type,
                    "message": message,
                    "severity": severity,
                    "event_time": event_time or datetime.now(timezone.utc),
                    "context_json": context_json,
                },
            )

    def get_events(
        self,
        *,
        event_type: str | None = None,
        start: datetime | None = None,
        limit: int = 1000,
    ) -> Sequence[EngineEvent]:
        engine = self._get_engine()
        clauses = []
        params: dict[str, Any] = {"limit": limit}
        if event_type is not None:
            clauses.append("event_type = :event_type")
            params["event_type"] = event_type
        if start is not None:
            clauses.append("event_time >= :start")
            params["start"] = start
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        stmt = text(
            f"""
            SELECT event_type, message, severity, event_time, context_json
            FROM engine_events
            {where}
            ORDER BY event_time DESC, id DESC
            LIMIT :limit
            """
        )
        with engine.begin() as conn:
            rows = conn.execute(stmt, params).fetchall()

        return [
            EngineEvent(
                event_type=row[0],
                message=row[1],
                severity=row[2],
                timestamp=_as_utc(row[3]),
                context=json.loads(row[4]) if row[4] else {},
            )
            for row in rows
        ]

    # ---- PositionSnapshotStore

    def save_position(self, *, position: Position) -> None:
        engine = self._get_engine()
        stmt = text(
            """
            INSERT INTO position_snapshots (
                asset_a, asset_b, asset_c,
                balance_a, balance_b, balance_c,
                pool_share_units, last_reference_price, last_rebalance_at, created_at
            )
            VALUES (
                :asset_a, :asset_b, :asset_c,
                :balance_a, :balance_b, :balance_c,
                :pool_share_units, :last_reference_price, :last_rebalance_at, :created_at
            )
            """
        )
        with engine.begin() as conn:
            conn.execute(
                stmt,
                {
                    "asset_a": position.asset_a,
                    "asset_b": position.asset_b,
                    "asset_c": position.asset_c,
                    # Amounts can exceed BIGINT; stored as NUMERIC text.
                    "balance_a": str(position.balance_a),
                    "balance_b": str(position.balance_b),
                    "balance_c": None if position.balance_c is None else str(position.balance_c),
                    "pool_share_units": str(position.pool_share_units),
                    "last_reference_price": str(position.last_reference_price),
                    "last_rebalance_at": position.last_rebalance_at,
                    "created_at": datetime.now(timezone.utc),
                },
            )

    def load_position(self) -> Optional[Position]:
        engine = self._get_engine()
        stmt = text(
            """
            SELECT asset_a, asset_b, asset_c,
                   balance_a, balance_b, balance_c,
                   pool_share_units, last_reference_price, last_rebalance_at
            FROM position_snapshots
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """
        )
        with engine.begin() as conn:
            row = conn.execute(stmt).fetchone()

        if row is None:
            return None

        return Position(
            asset_a=row[0],
            asset_b=row[1],
            asset_c=row[2],
            balance_a=int(row[3]),
            balance_b=int(row[4]),
            balance_c=None if row[5] is None else int(row[5]),
            pool_share_units=int(row[6]),
            last_reference_price=int(row[7]),
            last_rebalance_at=None if row[8] is None else _as_utc(row[8]),
        )
