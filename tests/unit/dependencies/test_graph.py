"""Dependency graph traversal and cycle detection tests."""

from __future__ import annotations

import pytest

from wark.dependencies.graph import CycleError, DependencyGraph

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    _HYPOTHESIS_AVAILABLE = False
else:
    _HYPOTHESIS_AVAILABLE = True


def test_edges_and_neighbours_are_deterministic() -> None:
    graph = DependencyGraph([("c", "a"), ("b", "a"), ("c", "b")])
    assert graph.nodes == ("a", "b", "c")
    assert graph.edges == (("b", "a"), ("c", "a"), ("c", "b"))
    assert graph.prerequisites_of("c") == ("a", "b")
    assert graph.dependents_of("a") == ("b", "c")
    assert graph.topological_sort() == ("a", "b", "c")


def test_check_new_edge_rejects_direct_and_transitive_cycles() -> None:
    graph = DependencyGraph([("b", "a"), ("c", "b")])

    with pytest.raises(CycleError) as direct:
        graph.check_new_edge("a", "b")
    assert direct.value.cycles == (("a", "b", "a"),)

    with pytest.raises(CycleError) as transitive:
        graph.check_new_edge("a", "c")
    assert transitive.value.cycles == (("a", "c", "b", "a"),)

    graph.check_new_edge("c", "a")
    assert graph.edges == (("b", "a"), ("c", "b"))


def test_self_edge_is_a_cycle() -> None:
    with pytest.raises(CycleError):
        DependencyGraph().check_new_edge("x", "x")


def test_detect_cycles_returns_canonical_paths() -> None:
    graph = DependencyGraph([("a", "b"), ("b", "c"), ("c", "a"), ("d", "d")])
    assert graph.detect_cycles() == (("a", "b", "c", "a"), ("d", "d"))
    with pytest.raises(CycleError):
        graph.topological_sort()


def test_remove_edge_reports_whether_anything_changed() -> None:
    graph = DependencyGraph([("b", "a")])
    assert graph.remove_edge("b", "a")
    assert not graph.remove_edge("b", "a")
    assert graph.find_path("b", "a") is None


def test_empty_node_ids_are_rejected() -> None:
    with pytest.raises(ValueError):
        DependencyGraph().add_node("")


if _HYPOTHESIS_AVAILABLE:

    @given(
        edges=st.lists(
            st.tuples(st.integers(0, 7), st.integers(0, 7)),
            max_size=25,
        )
    )
    @settings(max_examples=100, derandomize=True, deadline=None)
    def test_property_guarded_insertion_keeps_graph_acyclic(edges: list[tuple[int, int]]) -> None:
        graph = DependencyGraph()
        for dependent, prerequisite in edges:
            a, b = f"n{dependent}", f"n{prerequisite}"
            try:
                graph.check_new_edge(a, b)
            except CycleError:
                continue
            graph.add_edge(a, b)
            assert graph.detect_cycles() == ()

        order = graph.topological_sort()
        position = {node: index for index, node in enumerate(order)}
        for dependent, prerequisite in graph.edges:
            assert position[prerequisite] < position[dependent]
