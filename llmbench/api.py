import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .bench import documents
from .bench.engine import BenchmarkEngine
from .errors import BenchmarkError, StoreError
from .providers.base import ProviderError
from .store.base import DataStore

logger = logging.getLogger("llmbench.api")

router = APIRouter(prefix="/api")


class RegisterModelBody(BaseModel):
    name: Optional[str] = None
    provider: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    context_length: Optional[int] = None


class RunBenchmarkBody(BaseModel):
    benchmarkId: Optional[str] = None
    benchmarkType: Optional[str] = None
    modelId: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


def _store(request: Request) -> DataStore:
    return request.app.state.store  # type: ignore[attr-defined]


def _engine(request: Request) -> BenchmarkEngine:
    return request.app.state.engine  # type: ignore[attr-defined]


def _error(status: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message, **extra})


# ----- models -----

@router.get("/models", tags=["models"], description="Registered models ordered by provider and name.")
async def list_models(request: Request):
    res = await _store(request).select("models", order_by=["provider", "name"])
    if not res.ok:
        return _error(500, res.error or "Failed to fetch models")
    return res.data or []


@router.post("/models", tags=["models"], description="Register a model.")
async def register_model(body: RegisterModelBody, request: Request):
    if not body.name or not body.provider or not body.version:
        return _error(400, "Name, provider, and version are required")
    store = _store(request)
    existing = await store.select("models", filters={"provider": body.provider, "name": body.name, "version": body.version})
    if not existing.ok:
        return _error(500, existing.error or "Failed to check existing models")
    if existing.data:
        return _error(409, "Model already exists", model=existing.data[0])
    created = await store.insert("models", {
        "name": body.name,
        "provider": body.provider,
        "version": body.version,
        "description": body.description,
        "context_length": body.context_length or 4096,
        "parameters": {},
    })
    if not created.ok or not created.data:
        return _error(500, created.error or "Failed to register model")
    return JSONResponse(status_code=201, content=created.data[0])


@router.get("/models/openrouter", tags=["models"], description="Models offered by the OpenRouter connector.")
async def openrouter_models(request: Request):
    connector = request.app.state.registry.resolve("openrouter")  # type: ignore[attr-defined]
    if connector is None:
        return _error(500, "OpenRouter connector is not configured")
    try:
        models = await connector.get_available_models()
    except ProviderError as e:
        return _error(500, str(e))
    return [m.to_dict() for m in models]


# ----- benchmarks -----

@router.get("/benchmarks/status", tags=["benchmarks"], description="The ten most recent benchmark runs.")
async def benchmark_runs(request: Request):
    try:
        return await documents.recent_runs(_store(request), limit=10)
    except StoreError as e:
        return _error(500, str(e))


@router.get("/benchmarks", tags=["benchmarks"], description="Benchmarks ordered by name.")
async def list_benchmarks(request: Request):
    res = await _store(request).select("benchmarks", order_by=["name"])
    if not res.ok:
        return _error(500, res.error or "Failed to fetch benchmarks")
    return res.data or []


@router.post("/benchmarks/run", tags=["benchmarks"], description="Start a benchmark run in the background.")
async def run_benchmark(body: RunBenchmarkBody, request: Request):
    if not body.modelId:
        return _error(400, "Model ID is required")
    if not body.benchmarkId and not body.benchmarkType:
        return _error(400, "Either Benchmark ID or Benchmark Type is required")

    benchmark_id = body.benchmarkId
    if not benchmark_id:
        found = await _store(request).ilike("benchmarks", "name", body.benchmarkType or "")
        if not found.ok or not found.data:
            return _error(404, f"Benchmark type '{body.benchmarkType}' not found")
        benchmark_id = str(found.data[0]["id"])

    try:
        run_id = await _engine(request).run_benchmark(benchmark_id, body.modelId, body.options)
    except ValueError as e:
        return _error(400, str(e))
    except BenchmarkError as e:
        logger.info(json.dumps({
            "event": "benchmark_run_rejected",
            "requestId": getattr(request.state, "request_id", None),
            "error": str(e),
        }))
        return _error(500, str(e))
    return {"id": run_id, "message": "Benchmark started successfully"}


@router.get("/benchmarks/{benchmark_id}/test-cases", tags=["benchmarks"], description="Test cases of one benchmark.")
async def list_test_cases(benchmark_id: str, request: Request):
    res = await _store(request).select("test_cases", filters={"benchmark_id": benchmark_id}, order_by=["created_at"])
    if not res.ok:
        return _error(500, res.error or "Failed to fetch test cases")
    return res.data or []


# ----- runs -----

@router.get("/benchmark-runs/{run_id}", tags=["runs"], description="Status of one benchmark run.")
async def run_status(run_id: str, request: Request):
    store = _store(request)
    try:
        run = await documents.get_run(store, run_id)
        if run is None:
            return _error(404, "Benchmark run not found")
        doc = await documents.status_document(store, run)
    except StoreError as e:
        return _error(500, str(e))
    doc["duration"] = documents.run_duration(run)
    return doc


@router.get("/benchmark-runs/{run_id}/results", tags=["runs"], description="Per-test-case results of one run.")
async def run_results(run_id: str, request: Request):
    store = _store(request)
    try:
        run = await documents.get_run(store, run_id)
        if run is None:
            return _error(404, "Benchmark run not found")
        return await documents.results_document(store, run)
    except StoreError as e:
        return _error(500, str(e))
