"""Tests for DependencyGraph validation and ordering."""

import pytest

from crewgate.errors import CycleError, DuplicateNameError, UnknownDependencyError
from crewgate.graph import DependencyGraph
from crewgate.tasks import Task


def _task(name, deps=None):
    return Task(name=name, description=f"Do {name}", agent="a", depends_on=deps or [])


class TestGraphValidation:

    def test_empty_graph(self):
        graph = DependencyGraph([])
        assert len(graph) == 0
        assert graph.order() == []
        assert graph.layers() == []

    def test_duplicate_task_name(self):
        with pytest.raises(DuplicateNameError) as exc:
            DependencyGraph([_task("a"), _task("a")])
        assert exc.value.name == "a"

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc:
            DependencyGraph([_task("a", ["ghost"])])
        assert exc.value.task == "a"
        assert exc.value.dependency == "ghost"

    def test_two_node_cycle(self):
        with pytest.raises(CycleError) as exc:
            DependencyGraph([_task("a", ["b"]), _task("b", ["a"])])
        cycle = exc.value.cycle
        assert cycle == ["b", "a", "b"]
        assert "b -> a -> b" in str(exc.value)

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CycleError) as exc:
            DependencyGraph([_task("a", ["a"])])
        assert exc.value.cycle == ["a", "a"]

    def test_long_cycle_behind_valid_prefix(self):
        tasks = [
            _task("root"),
            _task("x", ["root", "z"]),
            _task("y", ["x"]),
            _task("z", ["y"]),
        ]
        with pytest.raises(CycleError) as exc:
            DependencyGraph(tasks)
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"x", "y", "z"}

    def test_duplicate_dependency_entries_collapse(self):
        task = _task("b", ["a", "a"])
        assert task.depends_on == ["a"]
        graph = DependencyGraph([_task("a"), task])
        assert graph.dependents("a") == ["b"]


class TestGraphOrdering:

    def test_independent_tasks_keep_declared_order(self):
        graph = DependencyGraph([_task("c"), _task("a"), _task("b")])
        assert [t.name for t in graph.order()] == ["c", "a", "b"]

    def test_dependencies_come_first(self):
        graph = DependencyGraph([_task("write", ["research"]), _task("research")])
        assert [t.name for t in graph.order()] == ["research", "write"]

    def test_diamond_layers(self):
        graph = DependencyGraph([
            _task("a"),
            _task("b", ["a"]),
            _task("c", ["a"]),
            _task("d", ["b", "c"]),
        ])
        layers = [[t.name for t in layer] for layer in graph.layers()]
        assert layers == [["a"], ["b", "c"], ["d"]]

    def test_downstream_is_transitive(self):
        graph = DependencyGraph([
            _task("a"),
            _task("b", ["a"]),
            _task("c", ["b"]),
            _task("x"),
        ])
        assert graph.downstream("a") == ["b", "c"]
        assert graph.downstream("x") == []

    def test_index_and_membership(self):
        graph = DependencyGraph([_task("a"), _task("b", ["a"])])
        assert "a" in graph
        assert "zzz" not in graph
        assert graph.index_of("b") == 1
        assert graph.dependencies("b") == ["a"]
