"""End-to-end crew behaviour."""

import pytest

from crewgate.config import CrewConfig
from crewgate.crew import Crew
from crewgate.errors import (
    ApprovalRejectedError,
    CycleError,
    DuplicateNameError,
    PropagatedFailureError,
    UnknownAgentError,
    UnknownDependencyError,
)
from crewgate.human import ScriptedResponder
from crewgate.tasks import CrewResult, Task, TaskState, success_rate


def _task(name, agent, deps=None, **kwargs):
    return Task(name=name, description=f"Do {name}", agent=agent, depends_on=deps or [], **kwargs)


class TestSuccessRate:

    def test_empty_crew_scores_zero(self, quiet_config):
        result = Crew("empty", [], [], config=quiet_config).execute()
        assert result.total_tasks == 0
        assert result.success_rate == 0

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 0, 0), (1, 2, 50), (1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 3, 100),
    ])
    def test_rounding(self, completed, total, expected):
        assert success_rate(completed, total) == expected

    def test_threshold_is_caller_policy(self):
        result = CrewResult(crew="c", total_tasks=4)
        assert result.meets(0)
        assert not result.meets(1)


class TestCrewConstruction:

    def test_cycle_fails_before_anything_runs(self, make_agent, quiet_config):
        agent, backend = make_agent("w")
        tasks = [_task("a", "w", ["b"]), _task("b", "w", ["a"])]
        with pytest.raises(CycleError):
            Crew("loop", [agent], tasks, config=quiet_config)
        assert backend.call_count == 0

    def test_unknown_dependency(self, make_agent):
        agent, _ = make_agent("w")
        with pytest.raises(UnknownDependencyError):
            Crew("c", [agent], [_task("a", "w", ["missing"])])

    def test_unknown_agent(self, make_agent):
        agent, _ = make_agent("w")
        with pytest.raises(UnknownAgentError) as exc:
            Crew("c", [agent], [_task("a", "nobody")])
        assert exc.value.agent == "nobody"

    def test_duplicate_agent(self, make_agent):
        first, _ = make_agent("w")
        second, _ = make_agent("w")
        with pytest.raises(DuplicateNameError):
            Crew("c", [first, second], [])

    def test_plan_layers(self, make_agent):
        agent, _ = make_agent("w")
        crew = Crew("c", [agent], [_task("a", "w"), _task("b", "w", ["a"]), _task("c", "w")])
        assert [[t.name for t in layer] for layer in crew.plan()] == [["a", "c"], ["b"]]


class TestCrewScenarios:

    def test_research_then_write(self, make_agent, quiet_config):
        researcher, research_backend = make_agent("researcher", outputs=["X"])
        writer, write_backend = make_agent("writer", outputs=["article"])
        tasks = [
            _task("Research", "researcher"),
            _task("Write", "writer", ["Research"]),
        ]
        result = Crew("content", [researcher, writer], tasks, config=quiet_config).execute()

        assert result.success_rate == 100
        assert result.outputs() == {"Research": "X", "Write": "article"}
        context = write_backend.calls[0][1]
        assert "--- Result from task 'Research' ---\nX" in context
        assert research_backend.calls[0][1] == ""

    def test_failed_dependency_blocks_dependent(self, make_agent, quiet_config):
        a, _ = make_agent("a", outputs=[RuntimeError("boom")])
        b, b_backend = make_agent("b")
        tasks = [_task("A", "a"), _task("B", "b", ["A"])]
        result = Crew("fail", [a, b], tasks, config=quiet_config).execute()

        assert b_backend.call_count == 0
        assert result.get("B").status == TaskState.FAILED
        assert isinstance(result.get("B").error, PropagatedFailureError)
        assert result.success_rate == 0

    def test_before_start_rejection(self, make_agent, quiet_config):
        agent, backend = make_agent("w")
        tasks = [_task("gated", "w", checkpoints={"before-start"}), _task("free", "w")]
        responder = ScriptedResponder(["no"])
        crew = Crew("gated", [agent], tasks, config=quiet_config, responder=responder)
        result = crew.execute()

        gated = result.get("gated")
        assert gated.status == TaskState.FAILED
        assert isinstance(gated.error, ApprovalRejectedError)
        assert "rejected by reviewer" in str(gated.error)
        assert [c[0] for c in backend.calls] == ["Do free"]
        assert result.success_rate == 50
        assert result.human["rejections"] == 1

    def test_context_isolation_with_faster_sibling(self, make_agent, quiet_config):
        fast, _ = make_agent("fast", outputs=["FAST-SECRET"])
        slow, _ = make_agent("slow", outputs=["slow-data"], delay=0.05)
        reader, reader_backend = make_agent("reader")
        tasks = [
            _task("fast", "fast", concurrent=True),
            _task("slow", "slow", concurrent=True),
            _task("reader", "reader", ["slow"]),
        ]
        Crew("iso", [fast, slow, reader], tasks, config=quiet_config).execute()
        context = reader_backend.calls[0][1]
        assert "slow-data" in context
        assert "FAST-SECRET" not in context

    def test_concurrent_results_exactly_once(self, make_agent, quiet_config):
        a, _ = make_agent("a", delay=0.01)
        b, _ = make_agent("b", delay=0.01)
        tasks = [_task("x", "a", concurrent=True), _task("y", "b", concurrent=True)]
        crew = Crew("pair", [a, b], tasks, config=quiet_config)
        for _ in range(5):
            result = crew.execute()
            assert sorted(r.task for r in result.results) == ["x", "y"]
            assert result.success_rate == 100

    def test_rerun_uses_fresh_session(self, make_agent, quiet_config):
        agent, _ = make_agent("w")
        responder = ScriptedResponder(["yes", "yes"])
        crew = Crew("again", [agent], [_task("t", "w", checkpoints={"before-start"})],
                    config=quiet_config, responder=responder)
        first = crew.execute()
        second = crew.execute()
        assert first.human["total_interactions"] == 1
        assert second.human["total_interactions"] == 1
        assert first.human["session_id"] != second.human["session_id"]

    def test_memory_carries_across_runs(self, make_agent):
        agent, backend = make_agent("w", outputs=["first", "second"])
        config = CrewConfig(memory=True, log_file=False)
        crew = Crew("mem", [agent], [_task("t", "w")], config=config)
        crew.execute()
        crew.execute()
        assert crew.memory is not None
        assert backend.calls[0][1] == ""
        assert "first" in backend.calls[1][1]

    def test_retries_use_configured_backoff(self, make_agent):
        agent, backend = make_agent("w", outputs=[RuntimeError("flaky"), "ok"])
        config = CrewConfig(retry_backoff=0.0, log_file=False)
        result = Crew("retry", [agent], [_task("t", "w", max_retries=1)], config=config).execute()
        assert result.results[0].status == TaskState.COMPLETED
        assert result.results[0].attempts == 2

    def test_to_dict(self, make_agent, quiet_config):
        agent, _ = make_agent("w", outputs=["done"])
        result = Crew("d", [agent], [_task("t", "w")], config=quiet_config).execute()
        data = result.to_dict()
        assert data["crew"] == "d"
        assert data["success_rate"] == 100
        assert data["results"][0]["status"] == "completed"
        assert data["results"][0]["output"] == "done"


class TestCrewRendering:

    def test_console_receives_plan_events_and_summary(self, make_agent, quiet_config, mock_console):
        agent, _ = make_agent("w")
        crew = Crew("shown", [agent], [_task("t", "w")], config=quiet_config, console=mock_console)
        crew.render_plan()
        crew.execute()
        # plan panel + start line + done line + summary panel
        assert mock_console.print.call_count >= 4
