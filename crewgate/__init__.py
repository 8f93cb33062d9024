"""crewgate: dependency-ordered agent crews with human approval checkpoints."""

__version__ = "0.3.0"

from .agents import Agent, AgentRegistry, CallableBackend, request_tool_use
from .config import CrewConfig, ModelPreset
from .crew import Crew
from .errors import (
    AgentInvocationError,
    ApprovalRejectedError,
    ApprovalTimeoutError,
    ConfigError,
    CrewBuildError,
    CrewError,
    CycleError,
    DuplicateNameError,
    PropagatedFailureError,
    TaskError,
    UnknownAgentError,
    UnknownDependencyError,
)
from .human import ConsoleResponder, HumanGate, HumanSession, ScriptedResponder, TimeoutPolicy
from .loader import load_crew
from .memory import AgentMemory, MemoryBank
from .tasks import Checkpoint, CrewResult, ExecutionResult, Task, TaskState

__all__ = [
    "__version__",
    "Agent", "AgentRegistry", "CallableBackend", "request_tool_use",
    "CrewConfig", "ModelPreset",
    "Crew",
    "AgentInvocationError", "ApprovalRejectedError", "ApprovalTimeoutError",
    "ConfigError", "CrewBuildError", "CrewError", "CycleError",
    "DuplicateNameError", "PropagatedFailureError", "TaskError",
    "UnknownAgentError", "UnknownDependencyError",
    "ConsoleResponder", "HumanGate", "HumanSession", "ScriptedResponder", "TimeoutPolicy",
    "load_crew",
    "AgentMemory", "MemoryBank",
    "Checkpoint", "CrewResult", "ExecutionResult", "Task", "TaskState",
]
