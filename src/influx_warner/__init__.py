"""influx-warner — threshold alerts over InfluxDB queries."""

__version__ = "1.0.0"

from .exceptions import (
    ConfigError,
    EvaluationError,
    QueryError,
    SchedulingError,
    WarnerError,
)
from .warner import Warner

__all__ = [
    "__version__",
    "Warner",
    "WarnerError",
    "ConfigError",
    "QueryError",
    "EvaluationError",
    "SchedulingError",
]
