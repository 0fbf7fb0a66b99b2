import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .api import router as api_router
from .bench.engine import BenchmarkEngine
from .bench.models import BenchmarkOptions
from .config import Settings
from .metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from .middleware.request_id import RequestIdMiddleware
from .providers.registry import ConnectorRegistry, build_registry
from .store import DataStore, build_store

# Load environment variables from .env, but avoid during pytest to keep tests deterministic
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

logger = logging.getLogger("llmbench.api")


def configure_logging(level_name: str) -> None:
    """Make the service loggers emit under uvicorn without duplicating its root handlers."""
    lvl = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    for name in ("llmbench.api", "llmbench.engine", "llmbench.providers", "llmbench.store"):
        lg = logging.getLogger(name)
        lg.setLevel(lvl)
        if not lg.handlers:
            h = logging.StreamHandler()
            h.setLevel(lvl)
            h.setFormatter(logging.Formatter("%(message)s"))
            lg.addHandler(h)
        lg.propagate = False


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DataStore] = None,
    registry: Optional[ConnectorRegistry] = None,
) -> FastAPI:
    """Build the service; collaborators not passed in are built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        configure_logging(cfg.log_level)
        app.state.settings = cfg
        app.state.store = store or build_store(cfg)
        app.state.registry = registry or build_registry(cfg)
        app.state.engine = BenchmarkEngine(
            app.state.store,
            app.state.registry,
            defaults=BenchmarkOptions(
                max_concurrent_tests=max(1, cfg.max_concurrent_tests),
                timeout_ms=max(1, cfg.timeout_ms),
                repeat_count=max(1, cfg.repeat_count),
            ),
        )
        logger.info(json.dumps({
            "event": "service_started",
            "dataStore": type(app.state.store).__name__,
            "connectors": app.state.registry.names(),
        }))
        try:
            yield
        finally:
            await app.state.engine.shutdown()
            await app.state.store.aclose()

    app = FastAPI(
        title="LLM Benchmarking API",
        description="Register LLM models and run scripted benchmarks against them.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
        allow_credentials=False,
    )
    app.add_middleware(RequestIdMiddleware)

    @app.middleware("http")
    async def _http_metrics_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method, path=request.url.path, status_class=f"{status_code // 100}xx"
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=request.url.path).observe(
                time.perf_counter() - t0
            )

    @app.get("/", tags=["meta"])
    async def root():
        return {"message": "LLM Benchmarking API", "status": "running", "version": __version__}

    @app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_router)
    return app


app = create_app()
