import os
from dataclasses import dataclass
from typing import Optional


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once from the environment at startup."""

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_timeout_seconds: float = 60.0
    app_origin: str = "http://localhost:3000"
    app_title: str = "LLM Benchmarking Platform"
    # Comma-separated list; "mock" registers the deterministic connector
    ai_provider: str = ""
    default_provider: str = "openrouter"

    max_concurrent_tests: int = 5
    timeout_ms: int = 30000
    repeat_count: int = 1

    data_store: str = "memory"
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_timeout_seconds: float = 10.0

    log_level: str = "INFO"

    @property
    def mock_provider_enabled(self) -> bool:
        names = [p.strip().lower() for p in self.ai_provider.split(",")]
        return "mock" in names or "test" in names

    @classmethod
    def from_env(cls) -> "Settings":
        timeout_raw: Optional[str] = os.getenv("OPENROUTER_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS")
        try:
            or_timeout = float(timeout_raw) if timeout_raw else 60.0
        except Exception:
            or_timeout = 60.0
        supabase_url = _env_str("SUPABASE_URL")
        return cls(
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            openrouter_base_url=_env_str("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1") or "https://openrouter.ai/api/v1",
            openrouter_timeout_seconds=or_timeout,
            app_origin=_env_str("PUBLIC_APP_ORIGIN", "http://localhost:3000") or "http://localhost:3000",
            app_title=_env_str("OPENROUTER_APP_TITLE", "LLM Benchmarking Platform") or "LLM Benchmarking Platform",
            ai_provider=_env_str("AI_PROVIDER"),
            default_provider=(_env_str("DEFAULT_PROVIDER", "openrouter") or "openrouter").lower(),
            max_concurrent_tests=_env_int("BENCH_MAX_CONCURRENT_TESTS", 5),
            timeout_ms=_env_int("BENCH_TIMEOUT_MS", 30000),
            repeat_count=_env_int("BENCH_REPEAT_COUNT", 1),
            data_store=(_env_str("DATA_STORE") or ("supabase" if supabase_url else "memory")).lower(),
            supabase_url=supabase_url,
            supabase_key=_env_str("SUPABASE_KEY"),
            supabase_timeout_seconds=_env_float("SUPABASE_TIMEOUT_SECONDS", 10.0),
            log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        )
