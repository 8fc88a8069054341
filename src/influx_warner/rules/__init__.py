"""Rule descriptors, window gating, query building and check evaluation."""

from .expression import CheckSet, evaluate
from .models import AlertEvent, RuleDescriptor
from .query import build_query, parse_function, parse_where
from .window import is_valid_day, is_valid_time

__all__ = [
    "AlertEvent",
    "CheckSet",
    "RuleDescriptor",
    "build_query",
    "evaluate",
    "is_valid_day",
    "is_valid_time",
    "parse_function",
    "parse_where",
]
