import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from .base import DataStore, QueryResult, Row

logger = logging.getLogger("llmbench.store")


def _eq_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class SupabaseStore(DataStore):
    """Supabase tables through the PostgREST HTTP API (`/rest/v1/<table>`)."""

    def __init__(self, url: str, key: str, timeout: float = 10.0):
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase data store")
        self._base = url.rstrip("/") + "/rest/v1"
        self._key = key
        self._timeout = timeout

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
        }
        if write:
            headers["Prefer"] = "return=representation"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: List[Tuple[str, str]],
        body: Optional[Any] = None,
    ) -> QueryResult:
        url = f"{self._base}/{table}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    headers=self._headers(write=method != "GET"),
                    json=body,
                )
        except Exception as e:
            logger.info(json.dumps({"event": "store_request_failed", "table": table, "method": method, "error": type(e).__name__}))
            return QueryResult(error=f"{type(e).__name__}: {e}")
        if resp.status_code >= 400:
            message = resp.text
            try:
                message = resp.json().get("message") or message
            except Exception:
                pass
            logger.info(json.dumps({"event": "store_request_error", "table": table, "method": method, "status": resp.status_code}))
            return QueryResult(error=f"{resp.status_code}: {message}")
        if not resp.content:
            return QueryResult(data=[])
        try:
            data = resp.json()
        except Exception:
            return QueryResult(error="response is not JSON")
        if isinstance(data, dict):
            data = [data]
        return QueryResult(data=list(data or []))

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> QueryResult:
        params: List[Tuple[str, str]] = [("select", "*")]
        for col, value in (filters or {}).items():
            op = "is" if value is None else "eq"
            params.append((col, f"{op}.{_eq_value(value)}"))
        if order_by:
            parts = [f"{k[1:]}.desc" if k.startswith("-") else f"{k}.asc" for k in order_by]
            params.append(("order", ",".join(parts)))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params)

    async def insert(self, table: str, rows: Union[Row, List[Row]]) -> QueryResult:
        batch = rows if isinstance(rows, list) else [rows]
        return await self._request("POST", table, [], body=batch)

    async def update(self, table: str, row_id: Any, values: Row) -> QueryResult:
        return await self._request("PATCH", table, [("id", f"eq.{_eq_value(row_id)}")], body=values)

    async def ilike(self, table: str, column: str, pattern: str) -> QueryResult:
        return await self._request("GET", table, [("select", "*"), (column, f"ilike.{pattern}")])
