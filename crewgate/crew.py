"""Crew entry point: validates a crew definition and runs it."""

import time
from typing import Iterable, List, Optional, Sequence

from rich.console import Console

from .agents import Agent, AgentRegistry
from .config import CrewConfig
from .errors import UnknownAgentError
from .graph import DependencyGraph
from .human import ConsoleResponder, HumanGate, HumanSession, Responder
from .logger import get_logger
from .memory import MemoryBank
from .rendering import CrewRenderer
from .scheduler import Scheduler
from .tasks import CrewResult, Task

_log = get_logger(__name__)


class Crew:
    """A named set of agents and the tasks they execute.

    Construction validates everything: duplicate names, unknown agents,
    unknown dependencies and cycles all raise before anything runs.
    """

    def __init__(
        self,
        name: str,
        agents: Iterable[Agent],
        tasks: Sequence[Task],
        config: Optional[CrewConfig] = None,
        responder: Optional[Responder] = None,
        console: Optional[Console] = None,
        memory: Optional[MemoryBank] = None,
    ):
        self.name = name
        self.config = config or CrewConfig()
        self.responder = responder
        self.console = console
        if memory is None and self.config.memory:
            memory = MemoryBank()
        # Shared across execute() calls so later runs see earlier ones.
        self.memory = memory
        self.registry = AgentRegistry(agents)
        self.tasks: List[Task] = list(tasks)

        for task in self.tasks:
            if task.agent_name not in self.registry:
                raise UnknownAgentError(task.name, task.agent_name)
        self.graph = DependencyGraph(self.tasks)
        self.renderer = CrewRenderer(console) if console is not None else None
        self.last_session: Optional[HumanSession] = None

    @property
    def agents(self) -> List[Agent]:
        return list(self.registry)

    def plan(self) -> List[List[Task]]:
        """Tasks grouped into dependency layers, declared order within a layer."""
        return self.graph.layers()

    def render_plan(self) -> None:
        if self.renderer is not None:
            self.renderer.render_plan(self.name, self.plan())

    def _build_gate(self, session: HumanSession) -> HumanGate:
        responder = self.responder
        if responder is None:
            responder = ConsoleResponder(self.console)
        return HumanGate(
            responder,
            on_timeout=self.config.on_timeout,
            session=session,
            default_timeout=self.config.approval_timeout,
            auto_approve=self.config.auto_approve,
        )

    def execute(self) -> CrewResult:
        """Run every task once; per-task failures are recorded, never raised."""
        total = len(self.tasks)
        _log.info("Starting crew %s with %d task(s)", self.name, total)
        started_at = time.time()

        session = HumanSession()
        self.last_session = session
        scheduler = Scheduler(
            self.graph,
            self.registry,
            gate=self._build_gate(session),
            max_concurrency=self.config.max_concurrency,
            on_event=self.renderer.on_event if self.renderer is not None else None,
            retry_backoff=self.config.retry_backoff,
            memory=self.memory,
        )
        results = scheduler.run()

        result = CrewResult(
            crew=self.name,
            results=results,
            total_tasks=total,
            human=session.summary(),
            started_at=started_at,
            finished_at=time.time(),
        )
        _log.info(
            "Crew %s finished: %d/%d tasks completed (%d%%)",
            self.name, result.completed_count, total, result.success_rate,
        )
        if self.renderer is not None:
            self.renderer.render_summary(result)
        return result

    def __repr__(self) -> str:
        return f"Crew(name={self.name!r}, agents={len(self.registry)}, tasks={len(self.tasks)})"
