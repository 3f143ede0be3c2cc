"""``data-aggregator`` module: whole-array or grouped aggregations."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from ..errors import ModuleConfigurationError
from .fields import get_path, require_list

logger = logging.getLogger(__name__)


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return value


def _avg(values: List[Any]) -> Optional[float]:
    return sum(values) / len(values) if values else None


AGGREGATIONS: Dict[str, Callable[[List[Any]], Any]] = {
    "sum": lambda values: sum(values),
    "avg": _avg,
    "min": lambda values: min(values) if values else None,
    "max": lambda values: max(values) if values else None,
    "count": len,
    "distinct_count": lambda values: len({_hashable(v) for v in values}),
}

_NUMERIC_OPS = {"sum", "avg"}


def aggregate(items: List[Any], aggregations: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply ``aggregations`` to ``items`` and return one result row."""
    row: Dict[str, Any] = {}
    for rule in aggregations:
        operation = rule.get("operation")
        func = AGGREGATIONS.get(operation)
        if func is None:
            raise ModuleConfigurationError(f"Unsupported aggregation: {operation!r}")
        values = [
            value
            for value in (get_path(item, rule.get("field", "")) for item in items)
            if value is not None
        ]
        if operation in _NUMERIC_OPS:
            values = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
        try:
            row[rule.get("alias") or operation] = func(values)
        except TypeError as e:
            raise ModuleConfigurationError(
                f"Cannot apply {operation} to field {rule.get('field')!r}: {e}"
            ) from e
    return row


def data_aggregator(configuration: Dict[str, Any], input_data: Any) -> List[Dict[str, Any]]:
    items = require_list(input_data, "data-aggregator", configuration.get("source"))
    aggregations = configuration.get("aggregations") or []
    group_by = configuration.get("groupBy") or configuration.get("group_by")

    if not group_by:
        return [aggregate(items, aggregations)]

    groups: Dict[Any, List[Any]] = {}
    keys: Dict[Any, Any] = {}
    for item in items:
        key = get_path(item, group_by)
        marker = _hashable(key)
        keys.setdefault(marker, key)
        groups.setdefault(marker, []).append(item)

    rows: List[Dict[str, Any]] = []
    for marker, members in groups.items():
        row = aggregate(members, aggregations)
        row[group_by] = keys[marker]
        row["count"] = len(members)
        rows.append(row)
    logger.debug(f"Aggregated {len(items)} items into {len(rows)} groups by {group_by}")
    return rows
