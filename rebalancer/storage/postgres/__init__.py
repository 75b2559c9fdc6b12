"""PostgreSQL storage for the audit trail and position snapshots.

Connection URLs are never logged.
"""

from .config import PostgresConfig
from .stores import PostgresStores

__all__ = ["PostgresConfig", "PostgresStores"]
