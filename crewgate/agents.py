"""Agent identities, the invocation capability, and the agent registry."""

import contextvars
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Protocol,
    runtime_checkable,
)

from .errors import AgentInvocationError, DuplicateNameError
from .logger import get_logger

_log = get_logger(__name__)


@runtime_checkable
class AgentBackend(Protocol):
    """The one capability the core dispatches to: produce text for a task."""

    def invoke(self, description: str, context: str) -> str:
        ...


class CallableBackend:
    """Adapt a plain ``fn(description, context) -> str`` into an AgentBackend."""

    def __init__(self, fn: Callable[[str, str], str]):
        self.fn = fn

    def invoke(self, description: str, context: str) -> str:
        return self.fn(description, context)

    def __repr__(self) -> str:
        name = getattr(self.fn, "__name__", type(self.fn).__name__)
        return f"CallableBackend({name})"


@dataclass(frozen=True)
class Agent:
    """A named worker bound to a role/goal and an invocation backend.

    ``tools`` is the agent's capability set; the core never interprets it,
    it is only handed through to backends and shown in the plan.
    """

    name: str
    role: str
    goal: str
    backend: AgentBackend = field(compare=False, repr=False)
    backstory: Optional[str] = None
    tools: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not isinstance(self.tools, frozenset):
            object.__setattr__(self, "tools", frozenset(self.tools))

    def invoke(self, description: str, context: str = "") -> str:
        """Call the backend, normalising every failure to AgentInvocationError."""
        try:
            output = self.backend.invoke(description, context)
        except AgentInvocationError:
            raise
        except Exception as e:
            _log.warning("Agent %s invocation raised %s: %s", self.name, type(e).__name__, e)
            raise AgentInvocationError(self.name, f"{type(e).__name__}: {e}") from e
        return output if output is not None else ""


class AgentRegistry:
    """Ordered name -> Agent mapping; names are unique within a crew."""

    def __init__(self, agents: Iterable[Agent] = ()):
        self._agents: Dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        if agent.name in self._agents:
            raise DuplicateNameError("agent", agent.name)
        self._agents[agent.name] = agent

    def get(self, name: str) -> Optional[Agent]:
        return self._agents.get(name)

    def require(self, name: str) -> Agent:
        agent = self._agents.get(name)
        if agent is None:
            raise KeyError(name)
        return agent

    def names(self) -> List[str]:
        return list(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))


# ── Tool-use approval boundary ───────────────────────────────

ToolGuard = Callable[[str, Dict[str, Any]], bool]

_tool_guard: contextvars.ContextVar[Optional[ToolGuard]] = contextvars.ContextVar(
    "crewgate_tool_guard", default=None,
)


def request_tool_use(tool_name: str, params: Optional[Dict[str, Any]] = None) -> bool:
    """Ask whether the current task may run ``tool_name``.

    Backends call this before a sensitive tool. Returns True when no guard is
    installed for the running task.
    """
    guard = _tool_guard.get()
    if guard is None:
        return True
    return guard(tool_name, dict(params or {}))


class tool_guard:
    """Context manager installing a ToolGuard for the current invocation."""

    def __init__(self, guard: Optional[ToolGuard]):
        self.guard = guard
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "tool_guard":
        self._token = _tool_guard.set(self.guard)
        return self

    def __exit__(self, *exc) -> None:
        if self._token is not None:
            _tool_guard.reset(self._token)
            self._token = None
