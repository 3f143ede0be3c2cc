"""Dotted field path helpers shared by the data modules."""

from __future__ import annotations

from typing import Any, Optional

from ..errors import ModuleConfigurationError

_MISSING = object()


def get_path(item: Any, path: str, default: Any = None) -> Any:
    """Resolve ``a.b.0.c`` style paths through dicts and lists."""
    current = item
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def unwrap_slot(value: Any) -> Any:
    """Unwrap a dependency input map holding a single list-valued slot."""
    if isinstance(value, dict) and len(value) == 1:
        (only,) = value.values()
        if isinstance(only, list):
            return only
    return value


def require_list(value: Any, module: str, source: Optional[str] = None) -> list:
    """Return the list a data module operates on.

    ``source`` selects a path inside a dependency input map (``data`` or a
    custom output key).
    """
    value = get_path(value, source) if source else unwrap_slot(value)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ModuleConfigurationError(
            f"{module} expects a list input, got {type(value).__name__}"
        )
    return value
