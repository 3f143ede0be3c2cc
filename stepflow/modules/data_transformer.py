"""``data-transformer`` module: ordered record transformations."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List

from ..errors import StepflowError
from .expression import evaluate, identifiers, numeric_variables
from .fields import get_path, unwrap_slot

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def rename_fields(record: Record, rule: Dict[str, Any]) -> Record:
    mapping = rule.get("mapping") or {}
    return {mapping.get(key, key): value for key, value in record.items()}


def add_computed_field(record: Record, rule: Dict[str, Any]) -> Record:
    formula = rule["formula"]
    variables = numeric_variables(identifiers(formula), partial(get_path, record))
    try:
        value = evaluate(formula, variables)
    except (StepflowError, ZeroDivisionError, OverflowError) as e:
        logger.error(f"Computed field {rule.get('field')!r} failed: {e}")
        value = None
    updated = dict(record)
    updated[rule["field"]] = value
    return updated


def remove_fields(record: Record, rule: Dict[str, Any]) -> Record:
    dropped = set(rule.get("fields") or [])
    return {key: value for key, value in record.items() if key not in dropped}


def _to_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).date().isoformat()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
        except ValueError:
            return value
    return value


def format_dates(record: Record, rule: Dict[str, Any]) -> Record:
    updated = dict(record)
    for field in rule.get("fields") or []:
        if field in updated and updated[field] is not None:
            updated[field] = _to_date(updated[field])
    return updated


TRANSFORMATIONS: Dict[str, Callable[[Record, Dict[str, Any]], Record]] = {
    "rename_fields": rename_fields,
    "add_computed_field": add_computed_field,
    "remove_fields": remove_fields,
    "format_dates": format_dates,
}


def transform_record(record: Record, transformations: List[Dict[str, Any]]) -> Record:
    for rule in transformations:
        kind = rule.get("type")
        func = TRANSFORMATIONS.get(kind)
        if func is None:
            logger.warning(f"Skipping unknown transformation type {kind!r}")
            continue
        record = func(record, rule)
    return record


def data_transformer(configuration: Dict[str, Any], input_data: Any) -> Any:
    transformations = configuration.get("transformations") or []
    source = configuration.get("source")
    data = get_path(input_data, source) if source else unwrap_slot(input_data)
    if isinstance(data, dict):
        return transform_record(data, transformations)
    if isinstance(data, list):
        return [
            transform_record(item, transformations) if isinstance(item, dict) else item
            for item in data
        ]
    return data
