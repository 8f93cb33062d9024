"""Tests for agent execution memory."""

from crewgate.memory import (
    MAX_LONG_TERM_PER_KIND,
    MAX_SHORT_TERM,
    AgentMemory,
    MemoryBank,
    classify_task,
    keywords,
)
from crewgate.tasks import Task


def _task(name, description):
    return Task(name=name, description=description, agent="worker")


class TestClassification:

    def test_kinds(self):
        assert classify_task("Research the market") == "research"
        assert classify_task("Analyze the numbers") == "analysis"
        assert classify_task("Write a summary") == "writing"
        assert classify_task("Plan the launch") == "planning"
        assert classify_task("Summarise it") == "general"

    def test_keywords_drop_stopwords_and_short_words(self):
        assert keywords("The state of AI in the market") == {"state", "market"}


class TestAgentMemory:

    def test_same_task_is_always_relevant(self):
        memory = AgentMemory()
        task = _task("brief", "Summarise quarterly results")
        memory.add_execution(task, "Revenue grew", 1.5, True)
        text = memory.relevant_executions(task)
        assert "Task: brief (succeeded)" in text
        assert "Revenue grew" in text

    def test_similar_task_of_same_kind(self):
        memory = AgentMemory()
        memory.add_execution(
            _task("r1", "Research electric vehicle battery suppliers"), "CATL, LG", 2.0, True,
        )
        text = memory.relevant_executions(_task("r2", "Research electric vehicle battery prices"))
        assert "CATL, LG" in text

    def test_unrelated_task_gets_nothing(self):
        memory = AgentMemory()
        memory.add_execution(_task("r1", "Research battery suppliers"), "CATL", 2.0, True)
        assert memory.relevant_executions(_task("w1", "Write a poem about autumn")) is None

    def test_long_output_is_truncated(self):
        memory = AgentMemory()
        task = _task("long", "Summarise it")
        memory.add_execution(task, "x" * 500, 1.0, True)
        text = memory.relevant_executions(task)
        assert "x" * 200 + "..." in text
        assert "x" * 201 not in text

    def test_successes_rank_first(self):
        memory = AgentMemory()
        task = _task("job", "Summarise it")
        memory.add_execution(task, "broken", 1.0, False)
        memory.add_execution(task, "fine", 1.0, True)
        text = memory.relevant_executions(task, limit=1)
        assert "fine" in text
        assert "broken" not in text

    def test_record_listed_once(self):
        memory = AgentMemory()
        task = _task("job", "Research suppliers")
        memory.add_execution(task, "only once", 1.0, True)
        assert memory.relevant_executions(task).count("only once") == 1

    def test_stores_are_capped(self):
        memory = AgentMemory()
        for i in range(MAX_SHORT_TERM + 5):
            memory.add_execution(_task(f"t{i}", "Research suppliers"), "ok", float(i), True)
        stats = memory.stats()
        assert stats["short_term_count"] == MAX_SHORT_TERM
        assert stats["long_term_total"] == MAX_LONG_TERM_PER_KIND
        assert stats["success_rate"] == 100.0

    def test_clear(self):
        memory = AgentMemory()
        task = _task("job", "Summarise it")
        memory.add_execution(task, "ok", 1.0, True)
        memory.clear()
        assert memory.relevant_executions(task) is None


class TestMemoryBank:

    def test_one_memory_per_agent(self):
        bank = MemoryBank()
        assert bank.for_agent("a") is bank.for_agent("a")
        assert bank.for_agent("a") is not bank.for_agent("b")

    def test_stats_and_clear(self):
        bank = MemoryBank()
        bank.for_agent("a").add_execution(_task("job", "Summarise it"), "ok", 1.0, True)
        assert bank.stats()["a"]["short_term_count"] == 1
        bank.clear()
        assert bank.stats()["a"]["short_term_count"] == 0
