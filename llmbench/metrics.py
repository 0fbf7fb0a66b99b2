from prometheus_client import Counter, Gauge, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "llmbench_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "llmbench_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Benchmark run lifecycle
RUNS_STARTED_TOTAL = Counter(
    "llmbench_benchmark_runs_started_total",
    "Benchmark runs created",
)
RUNS_FINISHED_TOTAL = Counter(
    "llmbench_benchmark_runs_finished_total",
    "Benchmark runs reaching a terminal state",
    ["status"],
)
RUNS_IN_PROGRESS = Gauge(
    "llmbench_benchmark_runs_in_progress",
    "Benchmark runs currently executing in the background",
)
RUN_SECONDS = Histogram(
    "llmbench_benchmark_run_seconds",
    "Wall-clock duration of benchmark runs in seconds",
)

# Per test case
TEST_CASES_TOTAL = Counter(
    "llmbench_test_cases_total",
    "Test case outcomes",
    ["outcome"],
)
PROVIDER_CALL_SECONDS = Histogram(
    "llmbench_provider_call_seconds",
    "Latency of successful provider calls in seconds",
    ["provider"],
)
