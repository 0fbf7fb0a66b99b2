from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

Row = Dict[str, Any]


@dataclass
class QueryResult:
    """Outcome of a data-store call; `error` is set instead of raising for query failures."""

    data: Optional[List[Row]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def first(self) -> Optional[Row]:
        if not self.data:
            return None
        return self.data[0]


class DataStore(abc.ABC):
    """Generic table access used by the engine and the API layer.

    Filters are equality matches; `order_by` entries are column names, with a
    leading `-` meaning descending.
    """

    @abc.abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> QueryResult:
        ...

    @abc.abstractmethod
    async def insert(self, table: str, rows: Union[Row, List[Row]]) -> QueryResult:
        ...

    @abc.abstractmethod
    async def update(self, table: str, row_id: Any, values: Row) -> QueryResult:
        ...

    @abc.abstractmethod
    async def ilike(self, table: str, column: str, pattern: str) -> QueryResult:
        """Case-insensitive match where `%` is a wildcard."""
        ...

    async def aclose(self) -> None:
        return None
