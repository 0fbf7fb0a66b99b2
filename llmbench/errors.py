class BenchmarkError(Exception):
    """Base class for errors raised by the benchmarking service."""


class ConfigurationError(BenchmarkError):
    """The service cannot start a run with its current configuration (e.g. no connector)."""


class NotFoundError(BenchmarkError):
    """A benchmark, model or run lookup returned nothing."""


class StoreError(BenchmarkError):
    """A data-store call returned an error outcome where the caller needs its data."""

    def __init__(self, message: str, table: str = ""):
        super().__init__(message)
        self.table = table
