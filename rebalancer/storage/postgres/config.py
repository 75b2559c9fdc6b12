from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class PostgresConfig:
    """Connection configuration for the audit/position store.

    `database_url` comes from DATABASE_URL. Never log it.
    """

    database_url: str
    echo: bool = False

    @classmethod
    def from_env(cls) -> PostgresConfig:
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")
        return cls(database_url=database_url, echo=os.environ.get("DATABASE_ECHO", "") == "1")
