"""Dependency graph ordering for workflow steps."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Mapping

from .errors import CircularDependencyError


def topological_sort(graph: Mapping[str, Iterable[str]]) -> List[str]:
    """Linearize ``graph`` so every dependency precedes its dependents.

    Args:
        graph: Mapping of node id to the ids it depends on. Ids that only
            appear as dependencies are treated as nodes too.

    Returns:
        Node ids in execution order. Nodes that become ready together keep
        the order in which they were first seen in ``graph``.

    Raises:
        CircularDependencyError: If the graph has a cycle. No partial order
            is returned.
    """
    # first-seen order doubles as the tie-break rank
    order: Dict[str, int] = {}
    dependencies: Dict[str, List[str]] = {}

    def _see(node: str) -> None:
        if node not in order:
            order[node] = len(order)
            dependencies.setdefault(node, [])

    for node, deps in graph.items():
        _see(node)
        unique: List[str] = []
        for dep in deps:
            _see(dep)
            if dep not in unique:
                unique.append(dep)
        dependencies[node] = unique

    in_degree: Dict[str, int] = {node: len(deps) for node, deps in dependencies.items()}
    dependents: Dict[str, List[str]] = {node: [] for node in order}
    for node, deps in dependencies.items():
        for dep in deps:
            dependents[dep].append(node)
    for children in dependents.values():
        children.sort(key=order.__getitem__)

    queue = deque(node for node in order if in_degree[node] == 0)
    result: List[str] = []
    while queue:
        current = queue.popleft()
        result.append(current)
        for child in dependents[current]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(result) < len(order):
        raise CircularDependencyError(
            node for node, degree in in_degree.items() if degree > 0
        )
    return result


__all__ = ["topological_sort"]
