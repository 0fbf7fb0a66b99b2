import asyncio
from typing import List

import pytest

from conftest import BENCHMARK_ID, MODEL_ID, make_tables
from llmbench.bench.engine import BenchmarkEngine
from llmbench.bench.models import BenchmarkOptions
from llmbench.errors import ConfigurationError
from llmbench.providers.base import GenerationResult, LLMClient, Usage
from llmbench.providers.mock import MockClient
from llmbench.providers.registry import ConnectorRegistry
from llmbench.store.base import QueryResult
from llmbench.store.memory import MemoryStore


class RecordingStore(MemoryStore):
    """Memory store that remembers every run update, in order."""

    def __init__(self, tables=None):
        super().__init__(tables)
        self.run_updates: List[dict] = []

    async def update(self, table, row_id, values):
        if table == "benchmark_runs":
            self.run_updates.append(dict(values))
        return await super().update(table, row_id, values)


class TracingClient(LLMClient):
    """Answers with the uppercased prompt and records start/end order."""

    provider_name = "trace"

    def __init__(self, delays=None):
        self.events: List[tuple] = []
        self.delays = delays or {}
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self):
        return True

    async def get_available_models(self):
        return []

    async def generate_text(self, prompt, options=None):
        self.events.append(("start", prompt))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(prompt, 0.01))
        finally:
            self.in_flight -= 1
        self.events.append(("end", prompt))
        return GenerationResult(text=prompt.upper(), usage=Usage(3, 1, 4), latency_ms=10)


def _engine(store, client, **defaults):
    registry = ConnectorRegistry({"trace": client}, default="trace")
    return BenchmarkEngine(store, registry, defaults=BenchmarkOptions(**defaults))


async def _run(engine, options=None, benchmark_id=BENCHMARK_ID, model_id=MODEL_ID):
    run_id = await engine.run_benchmark(benchmark_id, model_id, options)
    await engine.wait_for_run(run_id)
    return run_id


async def _get_run(store, run_id):
    return (await store.select("benchmark_runs", filters={"id": run_id})).first()


@pytest.mark.asyncio
async def test_seven_cases_in_batches_of_three(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    client = TracingClient()
    engine = _engine(store, client)

    run_id = await _run(engine, {"maxConcurrentTests": 3})

    run = await _get_run(store, run_id)
    assert run["status"] == "completed"
    assert run["progress"] == 100
    assert run["completed_at"] and run["error"] is None

    progress = [u["progress"] for u in store.run_updates if "progress" in u and "status" not in u]
    assert progress == [43, 86, 100]
    assert client.max_in_flight == 3

    # Batch N+1 starts only after every call of batch N ended
    order = [p for kind, p in client.events if kind == "start"]
    assert order == seven_prompts
    for later_start in ("q3", "q6"):
        idx = client.events.index(("start", later_start))
        prior_batch = seven_prompts[:seven_prompts.index(later_start)]
        ended_before = {p for kind, p in client.events[:idx] if kind == "end"}
        assert set(prior_batch) <= ended_before

    results = store.rows("benchmark_results")
    assert len(results) == 7
    assert {r["test_case_id"] for r in results} == {f"tc-{i}" for i in range(7)}
    assert all(r["score"] == 1.0 and r["error"] is None for r in results)
    assert all(r["tokens_input"] == 3 and r["tokens_output"] == 1 for r in results)

    scores = store.rows("model_scores")
    assert len(scores) == 1
    assert scores[0]["score"] == 1.0
    assert scores[0]["metrics"] == {"average_latency_ms": 10.0, "successful_tests": 7, "total_tests": 7}


@pytest.mark.asyncio
async def test_run_lifecycle_statuses(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    engine = _engine(store, TracingClient())

    run_id = await engine.run_benchmark(BENCHMARK_ID, MODEL_ID)
    # Returned before the background task had a chance to run
    assert (await _get_run(store, run_id))["status"] == "pending"
    assert run_id in engine.active_runs()

    await engine.wait_for_run(run_id)
    statuses = [u["status"] for u in store.run_updates if "status" in u]
    assert statuses == ["running", "completed"]
    assert engine.active_runs() == []

    links = store.rows("benchmark_run_benchmarks"), store.rows("benchmark_run_models")
    assert links[0][0]["benchmark_id"] == BENCHMARK_ID
    assert links[1][0]["model_id"] == MODEL_ID


@pytest.mark.asyncio
async def test_progress_never_decreases_and_stays_in_range():
    prompts = [f"p{i}" for i in range(11)]
    store = RecordingStore(make_tables(prompts))
    await _run(_engine(store, TracingClient()), {"maxConcurrentTests": 4})

    progress = [u["progress"] for u in store.run_updates if "progress" in u]
    assert progress == sorted(progress)
    assert all(0 <= p <= 100 for p in progress)
    assert progress[-1] == 100


@pytest.mark.asyncio
async def test_provider_failure_is_recorded_and_later_batches_still_run(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    client = MockClient(answers={p: p.upper() for p in seven_prompts}, failures={"q1"})
    registry = ConnectorRegistry({"mock": client}, default="mock")
    engine = BenchmarkEngine(store, registry)

    run_id = await _run(engine, {"maxConcurrentTests": 2})

    assert (await _get_run(store, run_id))["status"] == "completed"
    results = {r["test_case_id"]: r for r in store.rows("benchmark_results")}
    assert len(results) == 7
    failed = results["tc-1"]
    assert failed["score"] == 0 and failed["response"] is None
    assert "mock provider failure" in failed["error"]
    assert results["tc-6"]["score"] == 1.0

    agg = store.rows("model_scores")[0]
    assert agg["score"] == pytest.approx(6 / 7)
    assert agg["metrics"]["successful_tests"] == 6


@pytest.mark.asyncio
async def test_slow_provider_call_times_out_as_a_failed_test_case():
    store = RecordingStore(make_tables(["fast", "slow"]))
    client = TracingClient(delays={"slow": 5.0})
    engine = _engine(store, client)

    run_id = await _run(engine, {"timeoutMs": 50})

    run = await _get_run(store, run_id)
    assert run["status"] == "completed"
    results = {r["prompt"]: r for r in store.rows("benchmark_results")}
    assert results["slow"]["error"] == "Test case timed out after 50ms"
    assert results["slow"]["score"] == 0
    assert results["slow"]["latency_ms"] is None
    assert results["fast"]["score"] == 1.0
    # Timed-out cases still count toward progress
    assert run["progress"] == 100
    assert store.rows("model_scores")[0]["metrics"]["average_latency_ms"] == 10.0


@pytest.mark.asyncio
async def test_unknown_model_fails_the_run_before_any_batch(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    client = TracingClient()
    engine = _engine(store, client)

    run_id = await _run(engine, model_id="no-such-model")

    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert run["error"] == "Model not found: no-such-model"
    assert run["completed_at"]
    assert client.events == []
    assert store.rows("benchmark_results") == []
    assert store.rows("model_scores") == []


@pytest.mark.asyncio
async def test_unknown_benchmark_fails_the_run(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    run_id = await _run(_engine(store, TracingClient()), benchmark_id="nope")
    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert "Benchmark not found" in run["error"]


@pytest.mark.asyncio
async def test_no_connector_configured_fails_synchronously_without_a_run():
    store = MemoryStore(make_tables(["a"]))
    engine = BenchmarkEngine(store, ConnectorRegistry())
    with pytest.raises(ConfigurationError):
        await engine.run_benchmark(BENCHMARK_ID, MODEL_ID)
    assert store.rows("benchmark_runs") == []


@pytest.mark.asyncio
async def test_no_connector_for_model_fails_the_run():
    store = MemoryStore(make_tables(["a"]))
    # Registered connector is neither the model's provider nor the default
    engine = BenchmarkEngine(store, ConnectorRegistry({"local": MockClient()}, default="openrouter"))
    run_id = await _run(engine)
    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert run["error"] == "No connector available for model: openai"


@pytest.mark.asyncio
async def test_empty_benchmark_completes_without_aggregate():
    store = MemoryStore(make_tables([]))
    run_id = await _run(_engine(store, TracingClient()))
    run = await _get_run(store, run_id)
    assert run["status"] == "completed"
    assert run["progress"] == 100
    assert store.rows("model_scores") == []


@pytest.mark.asyncio
async def test_aggregate_read_failure_fails_the_run(seven_prompts):
    class BrokenResultsStore(MemoryStore):
        async def select(self, table, filters=None, order_by=None, limit=None):
            if table == "benchmark_results":
                return QueryResult(error="connection reset")
            return await super().select(table, filters=filters, order_by=order_by, limit=limit)

    store = BrokenResultsStore(make_tables(seven_prompts))
    run_id = await _run(_engine(store, TracingClient()))
    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert run["error"] == "Failed to fetch benchmark results: connection reset"
    assert store.rows("model_scores") == []


@pytest.mark.asyncio
async def test_result_write_failure_settles_batch_then_fails_the_run(seven_prompts):
    class FlakyResultsStore(MemoryStore):
        def __init__(self, tables=None):
            super().__init__(tables)
            self.writes: List[tuple] = []

        async def insert(self, table, rows):
            if table == "benchmark_results":
                self.writes.append(("insert", rows["test_case_id"]))
                if rows["test_case_id"] == "tc-1":
                    return QueryResult(error="disk full")
            return await super().insert(table, rows)

        async def update(self, table, row_id, values):
            self.writes.append(("update", dict(values)))
            return await super().update(table, row_id, values)

    store = FlakyResultsStore(make_tables(seven_prompts))
    client = TracingClient()
    run_id = await _run(_engine(store, client), {"maxConcurrentTests": 3})

    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert run["error"] == "Failed to save result for test case tc-1: disk full"
    # The first batch settled fully; no later batch started
    assert {p for kind, p in client.events if kind == "start"} == {"q0", "q1", "q2"}
    assert sorted(tc for kind, tc in store.writes if kind == "insert") == ["tc-0", "tc-1", "tc-2"]
    kind, values = store.writes[-1]
    assert kind == "update" and values["status"] == "failed"
    assert not any(kind == "update" and "progress" in values for kind, values in store.writes)
    assert store.rows("model_scores") == []


@pytest.mark.asyncio
async def test_blank_answer_without_expected_output_scores_zero():
    tables = make_tables(["say nothing"])
    tables["test_cases"][0]["expected_output"] = None
    store = MemoryStore(tables)
    engine = BenchmarkEngine(store, ConnectorRegistry({"mock": MockClient(answers={"say nothing": ""})}, default="mock"))

    run_id = await _run(engine)

    assert (await _get_run(store, run_id))["status"] == "completed"
    assert store.rows("benchmark_results")[0]["score"] == 0.0
    assert store.rows("model_scores")[0]["score"] == 0.0


@pytest.mark.asyncio
async def test_model_parameters_and_criteria_flow_into_calls():
    tables = make_tables(["the cat sat"], model_parameters={"temperature": 0.7, "seed": 7}, criteria={"keywords": ["cat", "dog"]})
    store = MemoryStore(tables)
    client = MockClient()
    engine = BenchmarkEngine(store, ConnectorRegistry({"mock": client}, default="mock"))

    await _run(engine)

    assert client.calls[0]["options"] == {"model": "openai/gpt-4o-mini", "temperature": 0.7, "max_tokens": 1000, "seed": 7}
    assert store.rows("benchmark_results")[0]["score"] == 0.5


@pytest.mark.asyncio
async def test_repeat_count_repeats_calls_but_writes_one_result():
    store = MemoryStore(make_tables(["a", "b"]))
    client = TracingClient()
    run_id = await _run(_engine(store, client), {"repeatCount": 3})

    assert len([e for e in client.events if e[0] == "start"]) == 6
    results = store.rows("benchmark_results")
    assert len(results) == 2
    assert all(r["tokens_input"] == 9 and r["metrics"]["attempt_scores"] == [1.0, 1.0, 1.0] for r in results)
    assert (await _get_run(store, run_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_invalid_options_are_rejected_before_a_run_exists():
    store = MemoryStore(make_tables(["a"]))
    engine = _engine(store, TracingClient())
    with pytest.raises(ValueError):
        await engine.run_benchmark(BENCHMARK_ID, MODEL_ID, {"maxConcurrentTests": 0})
    assert store.rows("benchmark_runs") == []


@pytest.mark.asyncio
async def test_engine_defaults_apply_when_options_unset(seven_prompts):
    store = RecordingStore(make_tables(seven_prompts))
    await _run(_engine(store, TracingClient(), max_concurrent_tests=7))
    progress = [u["progress"] for u in store.run_updates if "progress" in u and "status" not in u]
    assert progress == [100]


@pytest.mark.asyncio
async def test_shutdown_marks_interrupted_runs_failed():
    store = MemoryStore(make_tables(["slow"]))
    engine = _engine(store, TracingClient(delays={"slow": 5.0}))
    run_id = await engine.run_benchmark(BENCHMARK_ID, MODEL_ID)
    await asyncio.sleep(0.05)

    await engine.shutdown()

    run = await _get_run(store, run_id)
    assert run["status"] == "failed"
    assert run["error"] == "Benchmark run interrupted by service shutdown"
