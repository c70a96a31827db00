"""Soft foreign-key reconciliation for imported sessions.

Historical exports routinely point at users and items that no longer exist
on the server. Such references are set to None and the attempted value is
recorded on the session instead of rejecting the record.
"""

import logging
from typing import Protocol

from .database import REFERENCE_TABLES, Database

logger = logging.getLogger(__name__)


class Resolver(Protocol):
    """Looks up whether ``row_id`` exists in ``table``."""

    async def resolve(self, table: str, row_id: str | None) -> str | None: ...


class DatabaseResolver:
    """Resolver backed by the users/items tables."""

    def __init__(self, db: Database):
        self.db = db

    async def resolve(self, table: str, row_id: str | None) -> str | None:
        if not row_id:
            return None
        if table not in REFERENCE_TABLES:
            raise ValueError(f"Not a reference table: {table}")
        return row_id if await self.db.exists(table, row_id) else None


class ReferenceCheck:
    """Resolves references for one record and keeps the audit trail."""

    def __init__(self, resolver: Resolver):
        self.resolver = resolver
        self.missing_references: list[str] = []

    async def check(self, field: str, table: str, row_id: str | None) -> str | None:
        if not row_id:
            return None
        if table not in REFERENCE_TABLES:
            raise ValueError(f"Not a reference table: {table}")

        try:
            resolved = await self.resolver.resolve(table, row_id)
        except Exception as e:
            logger.warning("Error checking %s existence for '%s': %s", field, row_id, e)
            self.missing_references.append(f"Failed to verify {field} '{row_id}', setting to null: {e}")
            return None

        if resolved is None:
            logger.debug("%s '%s' not found in %s table", field, row_id, table)
            self.missing_references.append(f"{field} '{row_id}' not found in {table} table - setting to null")
        return resolved
