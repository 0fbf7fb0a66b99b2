import asyncio
import copy
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from .base import DataStore, QueryResult, Row


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_rows(rows: List[Row], order_by: Sequence[str]) -> List[Row]:
    # Stable sort applied from the least significant key up
    for key in reversed(list(order_by)):
        desc = key.startswith("-")
        col = key.lstrip("-")
        rows.sort(key=lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else ""), reverse=desc)
    return rows


class MemoryStore(DataStore):
    """In-process tables for local development and tests."""

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        self._tables: Dict[str, List[Row]] = {}
        self._lock = asyncio.Lock()
        for name, rows in (tables or {}).items():
            self._tables[name] = [self._stamp(dict(r)) for r in rows]

    @staticmethod
    def _stamp(row: Row) -> Row:
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now_iso())
        return row

    def rows(self, table: str) -> List[Row]:
        """Snapshot of a table (test and debugging helper)."""
        return copy.deepcopy(self._tables.get(table, []))

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> QueryResult:
        async with self._lock:
            rows = [
                copy.deepcopy(r)
                for r in self._tables.get(table, [])
                if all(r.get(k) == v for k, v in (filters or {}).items())
            ]
        if order_by:
            rows = _sort_rows(rows, order_by)
        if limit is not None:
            rows = rows[:limit]
        return QueryResult(data=rows)

    async def insert(self, table: str, rows: Union[Row, List[Row]]) -> QueryResult:
        batch = rows if isinstance(rows, list) else [rows]
        async with self._lock:
            stored = [self._stamp(copy.deepcopy(r)) for r in batch]
            self._tables.setdefault(table, []).extend(stored)
            return QueryResult(data=copy.deepcopy(stored))

    async def update(self, table: str, row_id: Any, values: Row) -> QueryResult:
        async with self._lock:
            for row in self._tables.get(table, []):
                if row.get("id") == row_id:
                    row.update(copy.deepcopy(values))
                    return QueryResult(data=[copy.deepcopy(row)])
        return QueryResult(data=[])

    async def ilike(self, table: str, column: str, pattern: str) -> QueryResult:
        regex = re.compile("^" + re.escape(pattern).replace("%", ".*") + "$", re.IGNORECASE)
        async with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables.get(table, []) if regex.match(str(r.get(column) or ""))]
        return QueryResult(data=rows)
