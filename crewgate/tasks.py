"""Task definitions, lifecycle states and execution results."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union

from .agents import Agent
from .errors import TaskError


class Checkpoint(Enum):
    """Points at which a task consults the human gate."""

    BEFORE_START = "before-start"
    BEFORE_TOOL_USE = "before-tool-use"
    ON_COMPLETION = "on-completion"
    ON_ERROR = "on-error"

    @classmethod
    def parse(cls, value: Union[str, "Checkpoint"]) -> "Checkpoint":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        for member in cls:
            if member.value == key:
                return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown checkpoint '{value}' (expected one of: {valid})")


class TaskState(Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting-approval"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED})


@dataclass
class Task:
    """A single unit of work in the crew execution plan.

    ``agent`` and ``depends_on`` accept objects or names; both are stored
    as names so the task never holds on to live collaborators.
    """

    name: str
    description: str
    agent: Union[Agent, str]
    depends_on: List[Union["Task", str]] = field(default_factory=list)
    concurrent: bool = False    # eligible for the worker pool ("async")
    checkpoints: FrozenSet[Checkpoint] = frozenset()
    expected_output: Optional[str] = None
    max_retries: int = 0        # automatic re-invocations after an agent failure
    state: TaskState = field(default=TaskState.PENDING, compare=False)

    def __post_init__(self):
        if isinstance(self.agent, Agent):
            self.agent = self.agent.name
        names: List[str] = []
        for dep in self.depends_on:
            dep_name = dep.name if isinstance(dep, Task) else str(dep)
            if dep_name not in names:
                names.append(dep_name)
        self.depends_on = names
        self.checkpoints = frozenset(Checkpoint.parse(c) for c in self.checkpoints)
        try:
            if isinstance(self.max_retries, bool):
                raise TypeError
            self.max_retries = int(self.max_retries)
        except (TypeError, ValueError):
            raise ValueError(f"max_retries must be an integer, got {self.max_retries!r}") from None
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")

    @property
    def agent_name(self) -> str:
        return self.agent

    def has_checkpoint(self, checkpoint: Checkpoint) -> bool:
        return checkpoint in self.checkpoints

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class ExecutionResult:
    """Outcome of one task: exactly one per task per crew run."""

    task: str
    agent: str
    status: TaskState           # COMPLETED | FAILED
    output: Optional[str] = None
    error: Optional[TaskError] = None
    started_at: Optional[float] = None   # None when the task never started
    finished_at: float = field(default_factory=time.time)
    declared_index: int = 0
    sequence: int = -1          # completion order, assigned when recorded
    attempts: int = 0           # agent invocations actually made

    @property
    def succeeded(self) -> bool:
        return self.status == TaskState.COMPLETED

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self.finished_at - self.started_at)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    def to_dict(self) -> Dict:
        return {
            "task": self.task,
            "agent": self.agent,
            "status": self.status.value,
            "output": self.output,
            "error": self.error_message,
            "error_type": type(self.error).__name__ if self.error else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "declared_index": self.declared_index,
            "sequence": self.sequence,
            "attempts": self.attempts,
        }


def success_rate(completed: int, total: int) -> int:
    """Percentage of completed tasks rounded half-up; an empty crew scores 0."""
    if total <= 0:
        return 0
    return int(completed * 100 / total + 0.5)


@dataclass
class CrewResult:
    """Aggregated outcome of a crew run."""

    crew: str
    results: List[ExecutionResult] = field(default_factory=list)  # completion order
    total_tasks: int = 0
    human: Optional[Dict] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def completed_count(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.succeeded)

    @property
    def success_rate(self) -> int:
        return success_rate(self.completed_count, self.total_tasks)

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at

    def get(self, task_name: str) -> Optional[ExecutionResult]:
        for r in self.results:
            if r.task == task_name:
                return r
        return None

    def in_declared_order(self) -> List[ExecutionResult]:
        return sorted(self.results, key=lambda r: r.declared_index)

    def outputs(self) -> Dict[str, str]:
        """Map task name -> output for completed tasks, in declared order."""
        return {
            r.task: r.output or ""
            for r in self.in_declared_order()
            if r.succeeded
        }

    def meets(self, threshold: float) -> bool:
        return self.success_rate >= threshold

    def to_dict(self) -> Dict:
        return {
            "crew": self.crew,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_count,
            "failed_tasks": self.failed_count,
            "success_rate": self.success_rate,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "results": [r.to_dict() for r in self.results],
            "human": self.human,
        }

