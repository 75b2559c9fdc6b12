#!/usr/bin/env python3
"""Initialize the optional database schema.

Creates the tables declared in db/models (engine_events, position_snapshots)
in the database pointed to by DATABASE_URL. Existing tables are left alone.

Usage:
  python -m db.init_db

Requirements:
  - DATABASE_URL must be set
"""

from __future__ import annotations

import os

from sqlalchemy import create_engine

from db.models import Base


def init_db(database_url: str) -> list[str]:
    """Create missing tables and return the names of all managed tables."""
    engine = create_engine(database_url, echo=False)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()
    return sorted(Base.metadata.tables)


def main() -> int:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise SystemExit("DATABASE_URL is not set")

    tables = init_db(database_url)
    print(f"Database schema applied: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
