"""Remote record store interface.

The remote backend is a set of named tables reachable through a small async
interface. Filters map column names to a value (equality) or to a list of
values (membership).
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from core.exceptions import NetworkError, SchemaNotProvisionedError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class RecordStore(ABC):
    """Abstract base class for remote record stores."""

    @abstractmethod
    async def fetch_rows(self, table: str, filters: Optional[Filters] = None) -> List[Row]:
        """Return every row of `table` matching `filters`."""

    async def fetch_one(self, table: str, filters: Filters) -> Optional[Row]:
        """Return the first matching row, or None."""
        rows = await self.fetch_rows(table, filters)
        return rows[0] if rows else None

    @abstractmethod
    async def insert_rows(self, table: str, rows: List[Row]) -> List[Row]:
        """Insert rows and return them as stored (with assigned ids)."""

    @abstractmethod
    async def delete_rows(self, table: str, filters: Filters) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    async def upsert_row(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        """Insert or update the row identified by the `on_conflict` columns."""

    async def close(self) -> None:
        pass


def row_matches(row: Row, filters: Optional[Filters]) -> bool:
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryRecordStore(RecordStore):
    """Record store kept in process memory.

    Used for local development and tests. `missing_tables` simulates a backend
    whose schema has not been provisioned; `offline` simulates a lost connection.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[Row]]] = None,
        missing_tables: Iterable[str] = (),
    ):
        self.tables: Dict[str, List[Row]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.missing_tables: Set[str] = set(missing_tables)
        self.offline = False
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple[str, str, Any]] = []

    def fail_on(self, operation: str, table: str, error: Exception) -> None:
        """Make every `operation` on `table` raise `error`."""
        self.failures[(operation, table)] = error

    async def _enter(self, operation: str, table: str, detail: Any) -> List[Row]:
        await asyncio.sleep(0)
        self.calls.append((operation, table, copy.deepcopy(detail)))
        if self.offline:
            raise NetworkError("Network error - please check your connection", table=table)
        if table in self.missing_tables:
            raise SchemaNotProvisionedError(
                f'relation "public.{table}" does not exist', table=table
            )
        error = self.failures.get((operation, table))
        if error is not None:
            raise error
        return self.tables.setdefault(table, [])

    async def fetch_rows(self, table: str, filters: Optional[Filters] = None) -> List[Row]:
        rows = await self._enter("fetch", table, filters)
        return [copy.deepcopy(r) for r in rows if row_matches(r, filters)]

    async def insert_rows(self, table: str, rows: List[Row]) -> List[Row]:
        stored_rows = await self._enter("insert", table, rows)
        inserted = []
        for row in rows:
            stored = copy.deepcopy(row)
            stored.setdefault("id", str(uuid.uuid4()))
            stored_rows.append(stored)
            inserted.append(copy.deepcopy(stored))
        return inserted

    async def delete_rows(self, table: str, filters: Filters) -> int:
        stored_rows = await self._enter("delete", table, filters)
        kept = [r for r in stored_rows if not row_matches(r, filters)]
        removed = len(stored_rows) - len(kept)
        self.tables[table] = kept
        return removed

    async def upsert_row(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        stored_rows = await self._enter("upsert", table, row)
        key = {column: row.get(column) for column in on_conflict}
        for stored in stored_rows:
            if row_matches(stored, key):
                stored.update(copy.deepcopy(row))
                return copy.deepcopy(stored)
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored_rows.append(stored)
        return copy.deepcopy(stored)

    def count_calls(self, operation: str, table: str) -> int:
        return sum(1 for op, t, _ in self.calls if op == operation and t == table)
