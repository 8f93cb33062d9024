"""Structured error types for crew construction and task execution."""

from typing import List, Optional


class CrewError(Exception):
    """Base error for all crew operations."""
    pass


class ConfigError(CrewError):
    """Invalid configuration value or unreadable crew definition."""
    pass


# ── Build-time errors: the crew cannot execute ───────────────


class CrewBuildError(CrewError):
    """Raised while assembling a crew; nothing has executed."""
    pass


class CycleError(CrewBuildError):
    """The task dependency relation contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class UnknownDependencyError(CrewBuildError):
    """A task depends on a task that is not part of the crew."""

    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(f"Task '{task}' depends on unknown task '{dependency}'")


class UnknownAgentError(CrewBuildError):
    """A task is assigned to an agent missing from the registry."""

    def __init__(self, task: str, agent: str):
        self.task = task
        self.agent = agent
        super().__init__(f"Task '{task}' is assigned to unknown agent '{agent}'")


class DuplicateNameError(CrewBuildError):
    """Two agents or two tasks share a name."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"Duplicate {kind} name: '{name}'")


# ── Per-task errors: recorded on the task's result ───────────


class TaskError(CrewError):
    """Base for failures recorded on a single task's ExecutionResult."""
    pass


class AgentInvocationError(TaskError):
    """The agent capability failed (provider, tooling, or backend error)."""

    def __init__(self, agent: str, message: str):
        self.agent = agent
        super().__init__(f"{agent} failed: {message}")


class PropagatedFailureError(TaskError):
    """The task was never started because a dependency failed."""

    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(f"Skipped '{task}': dependency '{dependency}' failed")


class ApprovalRejectedError(TaskError):
    """A human reviewer declined the task."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        message = "rejected by reviewer"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ApprovalTimeoutError(TaskError):
    """A human gate request timed out and the policy resolved it as a rejection."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No reviewer response within {timeout:g}s")
