"""Tests for Scheduler dispatch, concurrency limits and failure handling."""

import threading
import time

import pytest

from crewgate.agents import Agent, AgentRegistry, CallableBackend
from crewgate.errors import AgentInvocationError, ConfigError, PropagatedFailureError
from crewgate.graph import DependencyGraph
from crewgate.human import HumanGate, ScriptedResponder
from crewgate.scheduler import Scheduler
from crewgate.tasks import Task, TaskState


def _task(name, agent, deps=None, concurrent=False, checkpoints=()):
    return Task(
        name=name, description=f"Do {name}", agent=agent,
        depends_on=deps or [], concurrent=concurrent, checkpoints=frozenset(checkpoints),
    )


def _run(tasks, agents, **kwargs):
    scheduler = Scheduler(DependencyGraph(tasks), AgentRegistry(agents), **kwargs)
    return scheduler.run()


class TestSchedulerOrdering:

    def test_dependency_finishes_before_dependent_starts(self, make_agent):
        agent, _ = make_agent("w", delay=0.01)
        tasks = [
            _task("a", "w", concurrent=True),
            _task("b", "w", ["a"], concurrent=True),
            _task("c", "w", ["a"]),
            _task("d", "w", ["b", "c"]),
        ]
        results = {r.task: r for r in _run(tasks, [agent])}
        for task in tasks:
            for dep in task.depends_on:
                assert results[dep].finished_at <= results[task.name].started_at
                assert results[dep].sequence < results[task.name].sequence

    def test_sequential_tasks_run_in_declared_order(self, make_agent):
        agent, backend = make_agent("w")
        tasks = [_task("first", "w"), _task("second", "w"), _task("third", "w")]
        results = _run(tasks, [agent])
        assert [r.task for r in results] == ["first", "second", "third"]
        assert [c[0] for c in backend.calls] == ["Do first", "Do second", "Do third"]

    def test_results_carry_declared_index(self, make_agent):
        agent, _ = make_agent("w")
        tasks = [_task("b", "w", ["a"]), _task("a", "w")]
        results = _run(tasks, [agent])
        assert [(r.task, r.declared_index) for r in results] == [("a", 1), ("b", 0)]

    def test_empty_graph(self, make_agent):
        agent, _ = make_agent("w")
        assert _run([], [agent]) == []


class TestSchedulerConcurrency:

    def test_pool_limit_respected(self, make_agent, tracker):
        agents, tasks = [], []
        for i in range(6):
            agent, _ = make_agent(f"w{i}", delay=0.05, tracker=tracker)
            agents.append(agent)
            tasks.append(_task(f"t{i}", f"w{i}", concurrent=True))
        results = _run(tasks, agents, max_concurrency=2)
        assert len(results) == 6
        assert tracker.max_active <= 2

    def test_concurrent_tasks_overlap(self, make_agent, tracker):
        a, _ = make_agent("a", delay=0.2, tracker=tracker)
        b, _ = make_agent("b", delay=0.2, tracker=tracker)
        tasks = [_task("x", "a", concurrent=True), _task("y", "b", concurrent=True)]
        _run(tasks, [a, b], max_concurrency=2)
        assert tracker.max_active == 2

    def test_sequential_tasks_never_overlap(self, make_agent, tracker):
        agents, tasks = [], []
        for i in range(3):
            agent, _ = make_agent(f"s{i}", delay=0.03, tracker=tracker)
            agents.append(agent)
            tasks.append(_task(f"t{i}", f"s{i}"))
        _run(tasks, agents, max_concurrency=4)
        assert tracker.overlaps == []

    def test_each_task_recorded_exactly_once(self, make_agent):
        agents, tasks = [], []
        for i in range(8):
            agent, _ = make_agent(f"w{i}", delay=0.01)
            agents.append(agent)
            tasks.append(_task(f"t{i}", f"w{i}", concurrent=True))
        for _ in range(3):
            results = _run(tasks, agents, max_concurrency=3)
            assert sorted(r.task for r in results) == sorted(t.name for t in tasks)
            assert sorted(r.sequence for r in results) == list(range(8))

    def test_invalid_pool_size(self, make_agent):
        agent, _ = make_agent("w")
        with pytest.raises(ConfigError):
            Scheduler(DependencyGraph([]), AgentRegistry([agent]), max_concurrency=0)


class TestSchedulerFailures:

    def test_failure_only_affects_dependents(self, make_agent):
        bad, _ = make_agent("bad", outputs=[RuntimeError("provider down")])
        good, good_backend = make_agent("good")
        tasks = [
            _task("a", "bad"),
            _task("b", "good", ["a"]),
            _task("c", "good", ["b"]),
            _task("side", "good", concurrent=True),
        ]
        results = {r.task: r for r in _run(tasks, [bad, good])}
        assert results["a"].status == TaskState.FAILED
        assert isinstance(results["a"].error, AgentInvocationError)
        assert results["a"].attempts == 1
        for name in ("b", "c"):
            assert results[name].status == TaskState.FAILED
            assert isinstance(results[name].error, PropagatedFailureError)
            assert results[name].attempts == 0
            assert results[name].started_at is None
        assert results["side"].status == TaskState.COMPLETED
        assert [c[0] for c in good_backend.calls] == ["Do side"]

    def test_unexpected_exception_becomes_task_failure(self, make_agent):
        agent, backend = make_agent("w")
        gate = HumanGate(ScriptedResponder(), on_timeout="reject")
        tasks = [_task("ask", "w", checkpoints=["before-start"]), _task("free", "w")]
        results = {r.task: r for r in _run(tasks, [agent], gate=gate)}
        assert results["ask"].status == TaskState.FAILED
        assert isinstance(results["ask"].error, AgentInvocationError)
        assert "LookupError" in str(results["ask"].error)
        assert results["free"].status == TaskState.COMPLETED


class TestSchedulerEvents:

    def test_event_stream(self, make_agent):
        agent, _ = make_agent("w")
        events = []
        tasks = [_task("a", "w"), _task("b", "w", ["a"])]
        _run(tasks, [agent], on_event=lambda kind, payload: events.append(kind))
        assert events == ["start", "state", "result", "start", "state", "result"]

    def test_broken_event_handler_does_not_abort_run(self, make_agent):
        agent, _ = make_agent("w")

        def explode(kind, payload):
            raise ValueError("renderer bug")

        results = _run([_task("a", "w")], [agent], on_event=explode)
        assert results[0].status == TaskState.COMPLETED


class BlockingResponder:
    """Responder that never answers until cancelled."""

    def __init__(self):
        self.asked = threading.Event()
        self.released = threading.Event()

    def ask(self, request, timeout):
        self.asked.set()
        self.released.wait(timeout)
        return None

    def cancel(self):
        self.released.set()


class TestSchedulerInterrupt:

    def test_interrupt_does_not_wait_for_pending_prompt(self, make_agent):
        gated, gated_backend = make_agent("gated")
        responder = BlockingResponder()

        def interrupted(description, context):
            responder.asked.wait(2)
            raise KeyboardInterrupt

        breaker = Agent(name="breaker", role="r", goal="g", backend=CallableBackend(interrupted))
        gate = HumanGate(responder, on_timeout="approve", default_timeout=30)
        tasks = [
            _task("review-me", "gated", concurrent=True, checkpoints=["before-start"]),
            _task("crash", "breaker", concurrent=True),
        ]
        scheduler = Scheduler(DependencyGraph(tasks), AgentRegistry([gated, breaker]), gate=gate)

        started = time.time()
        try:
            with pytest.raises(KeyboardInterrupt):
                scheduler.run()
            assert time.time() - started < 10
            assert gate.closed
            assert responder.released.is_set()
        finally:
            responder.released.set()
        time.sleep(0.1)
        assert gated_backend.call_count == 0

    def test_closed_gate_refuses_without_asking(self):
        responder = ScriptedResponder()
        gate = HumanGate(responder, on_timeout="approve")
        gate.close()
        result = gate.request_approval("Proceed?")
        assert result.approved is False
        assert responder.asked == []
