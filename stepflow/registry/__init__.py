"""Module registry mapping step types to their implementations."""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from ..config import StepflowConfig
from ..errors import StepModuleNotFoundError
from .models import ModuleDescriptor

logger = logging.getLogger(__name__)

StepModule = Callable[[Dict[str, Any], Any], Any]


def is_async_module(module: StepModule) -> bool:
    if inspect.iscoroutinefunction(module):
        return True
    return inspect.iscoroutinefunction(getattr(module, "__call__", None))


def _qualname(module: StepModule) -> str:
    target = module if inspect.isfunction(module) else type(module)
    return f"{target.__module__}.{target.__qualname__}"


class ModuleRegistry:
    """Name -> callable lookup used by the step executor.

    Lookups are lock-free dictionary reads; registration and removal take a
    lock so that concurrent writers do not interleave.
    """

    def __init__(self) -> None:
        self._modules: Dict[str, StepModule] = {}
        self._descriptors: Dict[str, ModuleDescriptor] = {}
        self._lock = threading.Lock()

    def register(
        self, name: str, module: StepModule, description: Optional[str] = None
    ) -> None:
        """Register ``module`` under ``name``, replacing any previous entry."""
        if not callable(module):
            raise TypeError(f"Module {name} is not callable")
        with self._lock:
            if name in self._modules and self._modules[name] is not module:
                logger.warning(f"Overwriting module registration for {name}")
            self._modules[name] = module
            self._descriptors[name] = ModuleDescriptor(
                name=name,
                description=description,
                is_async=is_async_module(module),
                qualname=_qualname(module),
            )
        logger.debug(f"Registered module {name}")

    def lookup(self, name: str) -> Optional[StepModule]:
        return self._modules.get(name)

    def get(self, name: str) -> StepModule:
        module = self._modules.get(name)
        if module is None:
            raise StepModuleNotFoundError(name)
        return module

    def unregister(self, name: str) -> bool:
        with self._lock:
            self._descriptors.pop(name, None)
            return self._modules.pop(name, None) is not None

    def list_names(self) -> List[str]:
        return list(self._modules)

    def describe(self) -> List[ModuleDescriptor]:
        return list(self._descriptors.values())

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)


def create_default_registry(settings: Optional[StepflowConfig] = None, **kwargs: Any) -> ModuleRegistry:
    """Return a registry with all built-in modules registered.

    Extra keyword arguments are forwarded to
    :func:`stepflow.modules.register_builtin_modules`.
    """
    from ..modules import register_builtin_modules

    registry = ModuleRegistry()
    register_builtin_modules(registry, settings, **kwargs)
    return registry


__all__ = [
    "ModuleDescriptor",
    "ModuleRegistry",
    "StepModule",
    "create_default_registry",
    "is_async_module",
]
