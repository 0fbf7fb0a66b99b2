"""LLM benchmarking service: model registry, benchmark runs, scoring."""

__version__ = "0.1.0"
