"""Benchmark execution: domain records, scoring, the run engine and read-side documents."""
