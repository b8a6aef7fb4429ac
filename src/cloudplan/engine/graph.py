"""Resource dependency graph."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from cloudplan.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed acyclic graph where nodes depend on other nodes.

    Edges point from a node to the nodes it depends on.  Dependencies on
    nodes outside the graph are kept aside in :attr:`external` instead of
    being silently dropped, so callers can report them.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        self._deps: dict[str, set[str]] = {}
        self.external: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = deps & self._nodes
            if outside := deps - self._nodes:
                self.external[node] = outside

    @property
    def nodes(self) -> frozenset[str]:
        return frozenset(self._nodes)

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents_of(self, node: str) -> set[str]:
        return {n for n, deps in self._deps.items() if node in deps}

    def edges(self) -> list[tuple[str, str]]:
        """``(node, dependency)`` pairs in sorted order."""
        return sorted((n, d) for n, deps in self._deps.items() for d in deps)

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree = {n: len(deps) for n, deps in self._deps.items()}
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                dependents[dep].add(node)

        ready = [(self._priorities.get(n, 0), n) for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._priorities.get(child, 0), child))

        if len(order) != len(self._nodes):
            raise DependencyCycleError(self.find_cycle() or sorted(self._nodes - set(order)))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def find_cycle(self) -> list[str]:
        """Return one dependency cycle as ``[a, b, ..., a]``, or ``[]`` if acyclic."""
        visiting: list[str] = []
        on_path: set[str] = set()
        done: set[str] = set()

        def visit(node: str) -> list[str]:
            visiting.append(node)
            on_path.add(node)
            for dep in sorted(self._deps[node]):
                if dep in on_path:
                    return [*visiting[visiting.index(dep) :], dep]
                if dep not in done and (cycle := visit(dep)):
                    return cycle
            on_path.discard(node)
            visiting.pop()
            done.add(node)
            return []

        for node in sorted(self._nodes):
            if node not in done and (cycle := visit(node)):
                return cycle
        return []

    def to_dot(self, name: str = "cloudplan") -> str:
        """Render the graph in Graphviz DOT format (dependent -> dependency)."""
        lines = [f'digraph "{name}" {{', "  rankdir = LR;"]
        lines.extend(f'  "{n}";' for n in sorted(self._nodes))
        lines.extend(f'  "{n}" -> "{d}";' for n, d in self.edges())
        lines.append("}")
        return "\n".join(lines)
