"""Custom exception hierarchy for influx-warner.

All influx-warner exceptions inherit from WarnerError, allowing users
to catch broad or specific errors:

    try:
        warner = Warner(Path("config.yml"))
    except ConfigError as e:
        print(f"Config problem: {e}")
    except WarnerError as e:
        print(f"influx-warner error: {e}")
"""

from __future__ import annotations


class WarnerError(Exception):
    """Base exception for all influx-warner errors."""


class ConfigError(WarnerError):
    """Raised when a config document or a single rule is malformed."""

    def __init__(self, message: str, location: str = "") -> None:
        super().__init__(f"{location}: {message}" if location else message)
        self.location = location


class QueryError(WarnerError):
    """Raised when the store rejects or fails to answer a query."""

    def __init__(self, message: str, ql: str = "") -> None:
        super().__init__(message)
        self.ql = ql


class EvaluationError(WarnerError):
    """Raised when a check expression fails against a result row."""

    def __init__(self, message: str, expression: str = "") -> None:
        super().__init__(message)
        self.expression = expression


class SchedulingError(WarnerError):
    """Raised when the before-check gate rejects a tick."""
