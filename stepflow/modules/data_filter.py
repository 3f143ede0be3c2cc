"""``data-filter`` module: keep items matching every configured predicate."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List

from .fields import get_path, require_list

logger = logging.getLogger(__name__)


def _ordered(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        try:
            return op(actual, expected)
        except TypeError:
            return False

    return compare


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, (list, tuple, set, dict)):
        return expected in actual
    return False


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple, set)) and actual in expected


def _regex(actual: Any, expected: Any) -> bool:
    if actual is None or not isinstance(expected, str):
        return False
    return re.search(expected, str(actual)) is not None


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, e: a == e,
    "not_equals": lambda a, e: a != e,
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": lambda a, e: isinstance(a, str) and isinstance(e, str) and a.startswith(e),
    "ends_with": lambda a, e: isinstance(a, str) and isinstance(e, str) and a.endswith(e),
    "gt": _ordered(lambda a, e: a > e),
    "gte": _ordered(lambda a, e: a >= e),
    "lt": _ordered(lambda a, e: a < e),
    "lte": _ordered(lambda a, e: a <= e),
    "in": _in,
    "not_in": lambda a, e: not _in(a, e),
    "is_null": lambda a, e: a is None,
    "is_not_null": lambda a, e: a is not None,
    "regex": _regex,
}


def matches(item: Any, predicate: Dict[str, Any]) -> bool:
    """Return ``True`` if ``item`` satisfies ``predicate``.

    Unknown operators let the item through.
    """
    operator = predicate.get("operator")
    check = OPERATORS.get(operator)
    if check is None:
        logger.warning(f"Unknown filter operator {operator!r}; item passes through")
        return True
    actual = get_path(item, predicate.get("field", ""))
    return check(actual, predicate.get("value"))


def data_filter(configuration: Dict[str, Any], input_data: Any) -> List[Any]:
    items = require_list(input_data, "data-filter", configuration.get("source"))
    filters = configuration.get("filters") or []
    return [item for item in items if all(matches(item, f) for f in filters)]
