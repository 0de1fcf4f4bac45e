"""Deterministic adjacency-list dependency graph utilities.

Edges point from a dependent to its prerequisite (``dependent -> prerequisite``).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from heapq import heapify, heappop, heappush

from wark.domain.models import Dependency


class CycleError(ValueError):
    """Raised when an edge would close a cycle, or the graph already contains one."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Dependency graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Dependency graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class DependencyGraph:
    """Directed graph with deterministic traversal."""

    __slots__ = ("_nodes", "_prerequisites", "_dependents")

    def __init__(self, edges: Iterable[tuple[str, str]] | None = None) -> None:
        self._nodes: set[str] = set()
        self._prerequisites: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}

        if edges is not None:
            for dependent, prerequisite in edges:
                self.add_edge(dependent, prerequisite)

    @classmethod
    def from_dependencies(cls, dependencies: Iterable[Dependency]) -> DependencyGraph:
        return cls((item.ticket_id, item.depends_on_id) for item in dependencies)

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """All edges as ``(dependent, prerequisite)`` pairs in deterministic order."""
        ordered: list[tuple[str, str]] = []
        for dependent in sorted(self._nodes):
            for prerequisite in sorted(self._prerequisites[dependent]):
                ordered.append((dependent, prerequisite))
        return tuple(ordered)

    def add_node(self, node_id: str) -> None:
        self._validate_node_id(node_id)
        if node_id in self._nodes:
            return
        self._nodes.add(node_id)
        self._prerequisites[node_id] = set()
        self._dependents[node_id] = set()

    def add_edge(self, dependent: str, prerequisite: str) -> None:
        """Add ``dependent -> prerequisite`` without checking for cycles."""
        self.add_node(dependent)
        self.add_node(prerequisite)
        self._prerequisites[dependent].add(prerequisite)
        self._dependents[prerequisite].add(dependent)

    def remove_edge(self, dependent: str, prerequisite: str) -> bool:
        if prerequisite not in self._prerequisites.get(dependent, set()):
            return False
        self._prerequisites[dependent].remove(prerequisite)
        self._dependents[prerequisite].remove(dependent)
        return True

    def prerequisites_of(self, node_id: str) -> tuple[str, ...]:
        return tuple(sorted(self._prerequisites.get(node_id, ())))

    def dependents_of(self, node_id: str) -> tuple[str, ...]:
        return tuple(sorted(self._dependents.get(node_id, ())))

    def find_path(self, start: str, goal: str) -> tuple[str, ...] | None:
        """Depth-first search along prerequisite edges from ``start`` to ``goal``."""
        if start not in self._nodes or goal not in self._nodes:
            return None

        visited: set[str] = {start}
        frames: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(self._prerequisites[start])))]
        path: list[str] = [start]
        if start == goal:
            return (start,)

        while frames:
            _, neighbors = frames[-1]
            try:
                neighbor = next(neighbors)
            except StopIteration:
                frames.pop()
                path.pop()
                continue

            if neighbor == goal:
                return tuple(path + [neighbor])
            if neighbor in visited:
                continue
            visited.add(neighbor)
            path.append(neighbor)
            frames.append((neighbor, iter(sorted(self._prerequisites[neighbor]))))

        return None

    def check_new_edge(self, dependent: str, prerequisite: str) -> None:
        """Raise ``CycleError`` if ``dependent -> prerequisite`` would close a cycle.

        The edge closes a cycle exactly when ``prerequisite`` already reaches
        ``dependent`` through existing edges.
        """
        if dependent == prerequisite:
            raise CycleError([(dependent, dependent)])
        path = self.find_path(prerequisite, dependent)
        if path is not None:
            raise CycleError([(dependent, *path)])

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return cycle paths as closed paths, e.g. ``("A", "B", "A")``."""
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._nodes):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(sorted(self._prerequisites[start])))
            ]

            while frames:
                node, neighbors = frames[-1]
                try:
                    neighbor = next(neighbors)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                neighbor_state = state.get(neighbor, 0)
                if neighbor_state == 0:
                    state[neighbor] = 1
                    stack_index[neighbor] = len(stack)
                    stack.append(neighbor)
                    frames.append((neighbor, iter(sorted(self._prerequisites[neighbor]))))
                elif neighbor_state == 1:
                    cycle = tuple(stack[stack_index[neighbor] :] + [neighbor])
                    cycles[self._canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def topological_sort(self) -> tuple[str, ...]:
        """Prerequisites before dependents; ties broken by node id."""
        indegree: dict[str, int] = {node: len(self._prerequisites[node]) for node in self._nodes}
        ready: list[str] = [node for node, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            node = heappop(ready)
            order.append(node)
            for dependent in sorted(self._dependents[node]):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heappush(ready, dependent)

        if len(order) != len(self._nodes):
            raise CycleError(self.detect_cycles())
        return tuple(order)

    @staticmethod
    def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
        core = tuple(cycle[:-1])
        if len(core) == 1:
            return (core[0], core[0])

        best = core
        for offset in range(1, len(core)):
            rotated = core[offset:] + core[:offset]
            if rotated < best:
                best = rotated
        return best + (best[0],)

    @staticmethod
    def _validate_node_id(node_id: str) -> None:
        if not node_id:
            raise ValueError("Node ID must be non-empty.")


__all__ = ["CycleError", "DependencyGraph"]
