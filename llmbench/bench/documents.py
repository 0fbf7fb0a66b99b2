"""Read-side shapes for run status and run results, assembled from plain store reads."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import StoreError
from ..store.base import DataStore, Row


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def run_duration(run: Row, now: Optional[datetime] = None) -> str:
    """Seconds from start to completion (or to now while the run is active), as "<n>s"."""
    start = _parse_ts(run.get("started_at"))
    if start is None:
        return "0s"
    end = _parse_ts(run.get("completed_at")) or now or datetime.now(timezone.utc)
    return f"{round((end - start).total_seconds())}s"


async def _select(store: DataStore, table: str, **kwargs) -> List[Row]:
    res = await store.select(table, **kwargs)
    if not res.ok:
        raise StoreError(f"Failed to fetch {table}: {res.error}", table=table)
    return res.data or []


async def _linked(store: DataStore, link_table: str, target_table: str, key: str, run_id: str, fields: tuple) -> Optional[Dict[str, Any]]:
    links = await _select(store, link_table, filters={"benchmark_run_id": run_id})
    if not links or not links[0].get(key):
        return None
    rows = await _select(store, target_table, filters={"id": links[0][key]})
    if not rows:
        return None
    return {f: rows[0].get(f) for f in fields}


async def status_document(store: DataStore, run: Row) -> Dict[str, Any]:
    run_id = str(run["id"])
    return {
        "id": run_id,
        "status": run.get("status"),
        "progress": run.get("progress") or 0,
        "startTime": run.get("started_at"),
        "endTime": run.get("completed_at"),
        "error": run.get("error"),
        "model": await _linked(store, "benchmark_run_models", "models", "model_id", run_id, ("id", "name", "provider")),
        "benchmark": await _linked(
            store, "benchmark_run_benchmarks", "benchmarks", "benchmark_id", run_id, ("id", "name", "description")
        ),
    }


async def get_run(store: DataStore, run_id: str) -> Optional[Row]:
    rows = await _select(store, "benchmark_runs", filters={"id": run_id})
    return rows[0] if rows else None


async def recent_runs(store: DataStore, limit: int = 10) -> List[Dict[str, Any]]:
    runs = await _select(store, "benchmark_runs", order_by=["-created_at"], limit=limit)
    return [await status_document(store, run) for run in runs]


async def results_document(store: DataStore, run: Row) -> Dict[str, Any]:
    doc = await status_document(store, run)
    rows = await _select(store, "benchmark_results", filters={"benchmark_run_id": doc["id"]}, order_by=["created_at"])
    test_cases: Dict[str, Optional[Row]] = {}
    results = []
    for row in rows:
        tc_id = row.get("test_case_id")
        if tc_id and tc_id not in test_cases:
            found = await _select(store, "test_cases", filters={"id": tc_id})
            test_cases[tc_id] = found[0] if found else None
        tc = test_cases.get(tc_id) if tc_id else None
        results.append({
            "id": row.get("id"),
            "prompt": row.get("prompt"),
            "response": row.get("response"),
            "expectedOutput": row.get("expected_output"),
            "score": row.get("score"),
            "error": row.get("error"),
            "metrics": {
                "latencyMs": row.get("latency_ms"),
                "tokensInput": row.get("tokens_input"),
                "tokensOutput": row.get("tokens_output"),
                **(row.get("metrics") or {}),
            },
            "testCase": {
                "prompt": tc.get("prompt"),
                "expected_output": tc.get("expected_output"),
                "evaluation_criteria": tc.get("evaluation_criteria"),
            } if tc else None,
        })
    doc["results"] = results
    return doc
