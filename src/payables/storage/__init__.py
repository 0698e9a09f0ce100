"""Storage layer for PostgreSQL operations."""

from .database import DatabaseClient, SCHEMA_SQL

__all__ = ["DatabaseClient", "SCHEMA_SQL"]
