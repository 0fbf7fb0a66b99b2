import asyncio
import json
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError, NotFoundError, StoreError
from ..metrics import (
    PROVIDER_CALL_SECONDS,
    RUN_SECONDS,
    RUNS_FINISHED_TOTAL,
    RUNS_IN_PROGRESS,
    RUNS_STARTED_TOTAL,
    TEST_CASES_TOTAL,
)
from ..providers.base import GenerationResult, LLMClient
from ..providers.registry import ConnectorRegistry
from ..store.base import DataStore
from .models import AggregateScore, BenchmarkOptions, Model, RunStatus, TestCase, TestResult
from .scoring import parse_criteria, score

logger = logging.getLogger("llmbench.engine")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _percent(done: int, total: int) -> int:
    # Half-up rounding: 1/2 -> 50, 5/8 -> 63
    if total <= 0:
        return 100
    return int(math.floor(100 * done / total + 0.5))


class BenchmarkEngine:
    """Runs benchmarks against models in the background.

    `run_benchmark` creates the run record and returns its id right away; the
    run itself proceeds as a detached task that owns the run's lifecycle
    (pending -> running -> completed | failed). Errors inside the task end up
    in the run record's `error` field, never in the caller.
    """

    def __init__(
        self,
        store: DataStore,
        registry: ConnectorRegistry,
        defaults: Optional[BenchmarkOptions] = None,
    ):
        self.store = store
        self.registry = registry
        self.defaults = defaults or BenchmarkOptions()
        self._tasks: Dict[str, asyncio.Task] = {}

    # ----- public surface -----

    async def run_benchmark(self, benchmark_id: str, model_id: str, options: Optional[Dict[str, Any]] = None) -> str:
        opts = self.defaults.merged(options)
        if self.registry.is_empty():
            raise ConfigurationError("No LLM connector is configured")

        created = await self.store.insert("benchmark_runs", {
            "status": RunStatus.PENDING.value,
            "progress": 0,
            "started_at": _now_iso(),
            "completed_at": None,
            "error": None,
        })
        run = created.first()
        if not created.ok or run is None:
            raise StoreError(f"Failed to create benchmark run: {created.error}", table="benchmark_runs")
        run_id = str(run["id"])

        links = [
            ("benchmark_run_benchmarks", {"benchmark_run_id": run_id, "benchmark_id": benchmark_id}),
            ("benchmark_run_models", {"benchmark_run_id": run_id, "model_id": model_id}),
        ]
        for table, row in links:
            res = await self.store.insert(table, row)
            if not res.ok:
                message = f"Failed to link benchmark run: {res.error}"
                await self._mark_failed(run_id, message)
                raise StoreError(message, table=table)

        RUNS_STARTED_TOTAL.inc()
        logger.info(json.dumps({
            "event": "benchmark_run_created",
            "runId": run_id,
            "benchmarkId": benchmark_id,
            "modelId": model_id,
            "maxConcurrentTests": opts.max_concurrent_tests,
            "timeoutMs": opts.timeout_ms,
            "repeatCount": opts.repeat_count,
        }))

        task = asyncio.create_task(
            self._execute_benchmark(run_id, benchmark_id, model_id, opts),
            name=f"benchmark-run-{run_id}",
        )
        self._tasks[run_id] = task
        task.add_done_callback(lambda _t, rid=run_id: self._tasks.pop(rid, None))
        return run_id

    def active_runs(self) -> List[str]:
        return list(self._tasks.keys())

    async def wait_for_run(self, run_id: str) -> None:
        """Block until the background task for `run_id` settles (no-op if it already has)."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ----- background execution -----

    async def _execute_benchmark(self, run_id: str, benchmark_id: str, model_id: str, opts: BenchmarkOptions) -> None:
        started = time.perf_counter()
        RUNS_IN_PROGRESS.inc()
        try:
            await self._update_run(run_id, {"status": RunStatus.RUNNING.value, "started_at": _now_iso()})

            test_cases = await self._load_test_cases(benchmark_id)
            model = await self._load_model(model_id)
            connector = self.registry.resolve_for_model(model)
            if connector is None:
                raise ConfigurationError(f"No connector available for model: {model.provider}")

            logger.info(json.dumps({
                "event": "benchmark_run_started",
                "runId": run_id,
                "model": model.qualified_name,
                "connector": connector.provider_name,
                "testCases": len(test_cases),
            }))

            total = len(test_cases)
            completed = 0
            batch_size = opts.max_concurrent_tests
            for i in range(0, total, batch_size):
                batch = test_cases[i:i + batch_size]
                outcomes = await asyncio.gather(
                    *(self._run_test_case(run_id, model, tc, connector, opts) for tc in batch),
                    return_exceptions=True,
                )
                # Every test case in the batch has settled; only store failures escape a test case
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome
                completed += len(batch)
                progress = _percent(completed, total)
                await self._update_run(run_id, {"progress": progress})
                logger.info(json.dumps({
                    "event": "benchmark_batch_completed",
                    "runId": run_id,
                    "batchIndex": i // batch_size,
                    "completed": completed,
                    "total": total,
                    "progress": progress,
                }))

            aggregate = await self._calculate_and_save_score(run_id, benchmark_id, model_id)

            await self._update_run(run_id, {
                "status": RunStatus.COMPLETED.value,
                "completed_at": _now_iso(),
                "progress": 100,
            })
            RUNS_FINISHED_TOTAL.labels(status=RunStatus.COMPLETED.value).inc()
            logger.info(json.dumps({
                "event": "benchmark_run_completed",
                "runId": run_id,
                "score": aggregate.score if aggregate else None,
                "totalTests": total,
                "durationMs": int((time.perf_counter() - started) * 1000),
            }))
        except asyncio.CancelledError:
            await self._mark_failed(run_id, "Benchmark run interrupted by service shutdown")
            raise
        except Exception as e:
            await self._mark_failed(run_id, str(e) or type(e).__name__)
        finally:
            RUNS_IN_PROGRESS.dec()
            RUN_SECONDS.observe(time.perf_counter() - started)

    async def _run_test_case(
        self,
        run_id: str,
        model: Model,
        test_case: TestCase,
        connector: LLMClient,
        opts: BenchmarkOptions,
    ) -> TestResult:
        """Call the provider for one test case and persist exactly one result.

        Provider errors and timeouts become a zero-score result; only a failed
        store write is raised.
        """
        request_options = model.request_options()
        criteria = parse_criteria(test_case.evaluation_criteria)
        result = TestResult(
            benchmark_run_id=run_id,
            model_id=model.id,
            benchmark_id=test_case.benchmark_id,
            test_case_id=test_case.id,
            prompt=test_case.prompt,
            expected_output=test_case.expected_output,
            score=0.0,
        )
        try:
            generations: List[GenerationResult] = []
            for _ in range(opts.repeat_count):
                # The provider client has no deadline of its own
                gen = await asyncio.wait_for(
                    connector.generate_text(test_case.prompt, dict(request_options)),
                    timeout=opts.timeout_ms / 1000.0,
                )
                PROVIDER_CALL_SECONDS.labels(provider=connector.provider_name).observe(gen.latency_ms / 1000.0)
                generations.append(gen)

            scores = [score(g.text, test_case.expected_output, criteria) for g in generations]
            last = generations[-1]
            result.output = last.text
            result.score = sum(scores) / len(scores)
            result.latency_ms = int(round(sum(g.latency_ms for g in generations) / len(generations)))
            result.tokens_input = sum(g.usage.prompt_tokens for g in generations)
            result.tokens_output = sum(g.usage.completion_tokens for g in generations)
            result.metrics = {"character_count": len(last.text), **last.usage.to_dict()}
            if opts.repeat_count > 1:
                result.metrics["attempt_scores"] = scores
            TEST_CASES_TOTAL.labels(outcome="success").inc()
        except asyncio.TimeoutError:
            result.error = f"Test case timed out after {opts.timeout_ms}ms"
            TEST_CASES_TOTAL.labels(outcome="timeout").inc()
        except Exception as e:
            result.error = str(e) or type(e).__name__
            TEST_CASES_TOTAL.labels(outcome="error").inc()

        if result.error is not None:
            logger.info(json.dumps({
                "event": "benchmark_test_case_failed",
                "runId": run_id,
                "testCaseId": test_case.id,
                "error": result.error,
            }))

        saved = await self.store.insert("benchmark_results", result.to_row())
        if not saved.ok:
            raise StoreError(f"Failed to save result for test case {test_case.id}: {saved.error}", table="benchmark_results")
        return result

    async def _calculate_and_save_score(self, run_id: str, benchmark_id: str, model_id: str) -> Optional[AggregateScore]:
        res = await self.store.select("benchmark_results", filters={
            "benchmark_run_id": run_id,
            "benchmark_id": benchmark_id,
            "model_id": model_id,
        })
        if not res.ok:
            raise StoreError(f"Failed to fetch benchmark results: {res.error}", table="benchmark_results")
        aggregate = AggregateScore.from_results(run_id, model_id, benchmark_id, res.data or [])
        if aggregate is None:
            return None
        saved = await self.store.insert("model_scores", aggregate.to_row())
        if not saved.ok:
            raise StoreError(f"Failed to save model score: {saved.error}", table="model_scores")
        return aggregate

    # ----- store helpers -----

    async def _load_test_cases(self, benchmark_id: str) -> List[TestCase]:
        bench = await self.store.select("benchmarks", filters={"id": benchmark_id})
        if not bench.ok:
            raise StoreError(f"Failed to fetch benchmark: {bench.error}", table="benchmarks")
        if not bench.data:
            raise NotFoundError(f"Benchmark not found: {benchmark_id}")
        res = await self.store.select("test_cases", filters={"benchmark_id": benchmark_id}, order_by=["created_at"])
        if not res.ok or res.data is None:
            raise StoreError(f"Failed to fetch test cases: {res.error}", table="test_cases")
        return [TestCase.from_row(row) for row in res.data]

    async def _load_model(self, model_id: str) -> Model:
        res = await self.store.select("models", filters={"id": model_id})
        if not res.ok:
            raise StoreError(f"Failed to fetch model: {res.error}", table="models")
        row = res.first()
        if row is None:
            raise NotFoundError(f"Model not found: {model_id}")
        return Model.from_row(row)

    async def _update_run(self, run_id: str, values: Dict[str, Any]) -> None:
        res = await self.store.update("benchmark_runs", run_id, values)
        if not res.ok:
            raise StoreError(f"Failed to update benchmark run: {res.error}", table="benchmark_runs")

    async def _mark_failed(self, run_id: str, message: str) -> None:
        RUNS_FINISHED_TOTAL.labels(status=RunStatus.FAILED.value).inc()
        logger.warning(json.dumps({"event": "benchmark_run_failed", "runId": run_id, "error": message}))
        res = await self.store.update("benchmark_runs", run_id, {
            "status": RunStatus.FAILED.value,
            "completed_at": _now_iso(),
            "error": message,
        })
        if not res.ok:
            logger.error(json.dumps({"event": "benchmark_run_fail_record_error", "runId": run_id, "error": res.error}))
