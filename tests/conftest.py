import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import llmbench.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep developer credentials out of tests
for _name in ("OPENROUTER_API_KEY", "SUPABASE_URL", "SUPABASE_KEY", "AI_PROVIDER", "DATA_STORE"):
    os.environ.pop(_name, None)

BENCHMARK_ID = "bench-geo"
MODEL_ID = "model-1"


def make_tables(prompts, model_parameters=None, criteria=None):
    """Tables for one benchmark whose test cases expect each prompt's uppercase form."""
    return {
        "benchmarks": [{"id": BENCHMARK_ID, "name": "Geography", "description": "Capitals"}],
        "models": [{
            "id": MODEL_ID,
            "name": "gpt-4o-mini",
            "provider": "openai",
            "version": "2024-07",
            "parameters": model_parameters or {},
        }],
        "test_cases": [
            {
                "id": f"tc-{i}",
                "benchmark_id": BENCHMARK_ID,
                "prompt": p,
                "expected_output": p.upper(),
                "evaluation_criteria": criteria,
                "created_at": f"2024-01-01T00:00:{i:02d}+00:00",
            }
            for i, p in enumerate(prompts)
        ],
    }


@pytest.fixture
def seven_prompts():
    return [f"q{i}" for i in range(7)]
