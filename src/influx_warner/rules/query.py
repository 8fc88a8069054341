"""Translate rule descriptors into store queries."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from ..exceptions import ConfigError

if TYPE_CHECKING:
    from ..store import StoreClient, StoreQuery
    from .models import RuleDescriptor

_FUNC_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*$", re.DOTALL)
_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")

WHERE_OPERATORS = ("=", "!=", "<>", "<", "<=", ">", ">=", "=~", "!~")


def parse_function(item: str) -> tuple[str, list[str]]:
    """Split ``count(account)`` into ``("count", ["account"])``."""
    m = _FUNC_RE.match(str(item))
    if not m:
        raise ConfigError(f"invalid func '{item}', expected name(args)")
    args = [a.strip() for a in m.group(2).split(",") if a.strip()]
    if not args:
        raise ConfigError(f"func '{item}' needs at least one argument")
    return m.group(1), args


def parse_where(item: str) -> tuple[str, str, Any]:
    """Split ``"field operator value"`` into its three parts.

    Values that look like plain decimals become floats; anything else
    stays a string.
    """
    parts = str(item).split()
    if len(parts) != 3:
        raise ConfigError(f"invalid where '{item}', expected 'field operator value'")
    key, op, raw = parts
    if op not in WHERE_OPERATORS:
        raise ConfigError(f"unsupported operator '{op}' in where '{item}'")
    value: Any = float(raw) if _NUMERIC_RE.match(raw) else raw
    return key, op, value


def build_query(client: StoreClient, measurement: str, rule: RuleDescriptor) -> StoreQuery:
    """Build the query for one rule against one measurement.

    Raises ConfigError for malformed ``func``/``where`` entries.
    """
    query = client.query(measurement)
    if rule.start or rule.end:
        query.set_range(start=rule.start, end=rule.end)
    for item in rule.func:
        name, args = parse_function(item)
        query.add_function(name, *args)
    for tag in rule.group:
        query.add_group(tag)
    for item in rule.where:
        key, op, value = parse_where(item)
        query.where(key, value, op)
    query.set_format("json")
    return query
