"""``metric-calculator`` module: per-item arithmetic over numeric fields."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Dict, List, Optional

from ..errors import StepflowError
from .expression import evaluate, identifiers, numeric_variables
from .fields import get_path, require_list

logger = logging.getLogger(__name__)


def format_value(value: float, fmt: Optional[str]) -> Any:
    """Render ``value`` as integer, float, percentage (x100) or currency."""
    if fmt == "integer":
        return int(value)
    if fmt == "percentage":
        return value * 100
    if fmt == "currency":
        return f"{value:.2f}"
    return float(value)


def calculate(item: Dict[str, Any], calculation: Dict[str, Any]) -> Any:
    formula = calculation["formula"]
    variables = numeric_variables(identifiers(formula), partial(get_path, item))
    return format_value(evaluate(formula, variables), calculation.get("format"))


def metric_calculator(configuration: Dict[str, Any], input_data: Any) -> List[Dict[str, Any]]:
    items = require_list(input_data, "metric-calculator", configuration.get("source"))
    calculations = configuration.get("calculations") or []
    results: List[Dict[str, Any]] = []
    for item in items:
        calculated = dict(item) if isinstance(item, dict) else {"value": item}
        for calc in calculations:
            name = calc.get("name")
            try:
                calculated[name] = calculate(item if isinstance(item, dict) else {}, calc)
            except (StepflowError, ZeroDivisionError, KeyError, ValueError, OverflowError) as e:
                logger.error(f"Calculation error for {name}: {e}")
                calculated[name] = None
        results.append(calculated)
    return results
