from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..providers.base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BenchmarkOptions:
    max_concurrent_tests: int = 5
    timeout_ms: int = 30000
    repeat_count: int = 1

    def merged(self, raw: Optional[Dict[str, Any]]) -> "BenchmarkOptions":
        """Overlay caller options (camelCase or snake_case keys); unset fields keep these values."""
        raw = raw or {}

        def _pick(camel: str, snake: str, default: int) -> int:
            value = raw.get(camel, raw.get(snake))
            if value is None:
                return default
            # int() would accept True and truncate 2.5
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise ValueError(f"{camel} must be an integer, got {value!r}")
            try:
                number = int(value)
            except (TypeError, ValueError):
                raise ValueError(f"{camel} must be an integer, got {value!r}")
            if number < 1:
                raise ValueError(f"{camel} must be at least 1, got {number}")
            return number

        return BenchmarkOptions(
            max_concurrent_tests=_pick("maxConcurrentTests", "max_concurrent_tests", self.max_concurrent_tests),
            timeout_ms=_pick("timeoutMs", "timeout_ms", self.timeout_ms),
            repeat_count=_pick("repeatCount", "repeat_count", self.repeat_count),
        )


@dataclass(frozen=True)
class TestCase:
    id: str
    benchmark_id: str
    prompt: str
    expected_output: Optional[str] = None
    evaluation_criteria: Optional[Dict[str, Any]] = None
    weight: Optional[float] = None

    __test__ = False  # not a pytest class

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TestCase":
        return cls(
            id=str(row["id"]),
            benchmark_id=str(row.get("benchmark_id") or ""),
            prompt=str(row.get("prompt") or ""),
            expected_output=row.get("expected_output"),
            evaluation_criteria=row.get("evaluation_criteria"),
            weight=row.get("weight"),
        )


@dataclass(frozen=True)
class Model:
    id: str
    name: str
    provider: str
    version: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Model":
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            provider=str(row.get("provider") or ""),
            version=str(row.get("version") or ""),
            parameters=dict(row.get("parameters") or {}),
        )

    @property
    def qualified_name(self) -> str:
        return f"{self.provider}/{self.name}"

    def request_options(self) -> Dict[str, Any]:
        # Model-specific parameters override the deterministic defaults
        return {
            "model": self.qualified_name,
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": DEFAULT_MAX_TOKENS,
            **self.parameters,
        }


@dataclass
class TestResult:
    benchmark_run_id: str
    model_id: str
    benchmark_id: str
    test_case_id: str
    prompt: str
    expected_output: Optional[str]
    score: float
    output: Optional[str] = None
    error: Optional[str] = None
    latency_ms: Optional[int] = None
    tokens_input: int = 0
    tokens_output: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)

    __test__ = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "benchmark_run_id": self.benchmark_run_id,
            "model_id": self.model_id,
            "benchmark_id": self.benchmark_id,
            "test_case_id": self.test_case_id,
            "prompt": self.prompt,
            "response": self.output,
            "expected_output": self.expected_output,
            "score": self.score,
            "error": self.error,
            "metrics": self.metrics,
            "latency_ms": self.latency_ms,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
        }


@dataclass
class AggregateScore:
    benchmark_run_id: str
    model_id: str
    benchmark_id: str
    score: float
    average_latency_ms: Optional[float]
    successful_tests: int
    total_tests: int

    @classmethod
    def from_results(
        cls,
        benchmark_run_id: str,
        model_id: str,
        benchmark_id: str,
        results: List[Dict[str, Any]],
    ) -> Optional["AggregateScore"]:
        """Mean score over stored result rows; None when there are no rows."""
        if not results:
            return None
        total_score = sum(float(r.get("score") or 0) for r in results)
        latencies = [
            r["latency_ms"] for r in results
            if isinstance(r.get("latency_ms"), (int, float)) and not isinstance(r.get("latency_ms"), bool)
        ]
        return cls(
            benchmark_run_id=benchmark_run_id,
            model_id=model_id,
            benchmark_id=benchmark_id,
            score=total_score / len(results),
            average_latency_ms=(sum(latencies) / len(latencies)) if latencies else None,
            successful_tests=sum(1 for r in results if not r.get("error")),
            total_tests=len(results),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "benchmark_run_id": self.benchmark_run_id,
            "model_id": self.model_id,
            "benchmark_id": self.benchmark_id,
            "score": self.score,
            "metrics": {
                "average_latency_ms": self.average_latency_ms,
                "successful_tests": self.successful_tests,
                "total_tests": self.total_tests,
            },
        }
