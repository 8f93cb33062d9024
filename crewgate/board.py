"""TaskBoard: thread-safe task state machine and result collection for one crew run."""

import threading
import time
from typing import Dict, List, Optional

from .errors import PropagatedFailureError
from .graph import DependencyGraph
from .tasks import ExecutionResult, Task, TaskState, TERMINAL_STATES


class TaskBoard:
    """Owns every task transition during a run.

    The result list is the only structure shared across workers; all access
    goes through ``_lock``.
    """

    def __init__(self, graph: DependencyGraph):
        self._graph = graph
        self._tasks: Dict[str, Task] = {t.name: t for t in graph.tasks()}
        self._results: List[ExecutionResult] = []
        self._by_task: Dict[str, ExecutionResult] = {}
        self._start_times: Dict[str, float] = {}
        self._lock = threading.RLock()
        for task in self._tasks.values():
            task.state = TaskState.PENDING

    # ── State transitions ─────────────────────────────────────

    def _require_live(self, name: str) -> Task:
        task = self._tasks[name]
        if task.state in TERMINAL_STATES:
            raise RuntimeError(f"Task '{name}' is already {task.state.value}")
        return task

    def mark_awaiting_approval(self, name: str) -> None:
        with self._lock:
            self._require_live(name).state = TaskState.AWAITING_APPROVAL

    def mark_running(self, name: str) -> None:
        with self._lock:
            task = self._require_live(name)
            task.state = TaskState.RUNNING
            self._start_times.setdefault(name, time.time())

    def mark_started(self, name: str) -> float:
        """Stamp the dispatch time; the task stays pending until the worker picks it up."""
        with self._lock:
            self._require_live(name)
            return self._start_times.setdefault(name, time.time())

    def record(self, result: ExecutionResult) -> ExecutionResult:
        """Store the terminal result for a task and assign its completion sequence."""
        with self._lock:
            task = self._require_live(result.task)
            if result.status not in TERMINAL_STATES:
                raise ValueError(f"Result status must be terminal, got {result.status.value}")
            result.sequence = len(self._results)
            result.declared_index = self._graph.index_of(result.task)
            if result.started_at is None:
                result.started_at = self._start_times.get(result.task)
            task.state = result.status
            self._results.append(result)
            self._by_task[result.task] = result
            return result

    def propagate_failures(self) -> List[ExecutionResult]:
        """Fail every pending task downstream of a failure, to a fixed point.

        Propagated tasks are never started: no start time, zero attempts.
        """
        propagated: List[ExecutionResult] = []
        with self._lock:
            changed = True
            while changed:
                changed = False
                for task in self._tasks.values():
                    if task.state != TaskState.PENDING or task.name in self._start_times:
                        continue
                    failed_dep = next(
                        (d for d in task.depends_on
                         if self._tasks[d].state == TaskState.FAILED),
                        None,
                    )
                    if failed_dep is None:
                        continue
                    propagated.append(self.record(ExecutionResult(
                        task=task.name,
                        agent=task.agent_name,
                        status=TaskState.FAILED,
                        error=PropagatedFailureError(task.name, failed_dep),
                    )))
                    changed = True
        return propagated

    # ── Queries ───────────────────────────────────────────────

    def ready(self) -> List[Task]:
        """Pending, not yet dispatched tasks whose dependencies all completed, in declared order."""
        with self._lock:
            return [
                task for task in self._tasks.values()
                if task.state == TaskState.PENDING
                and task.name not in self._start_times
                and all(self._tasks[d].state == TaskState.COMPLETED for d in task.depends_on)
            ]

    def context_for(self, task: Task) -> Dict[str, str]:
        """Outputs of the task's declared dependencies, and nothing else."""
        with self._lock:
            context: Dict[str, str] = {}
            for dep in task.depends_on:
                result = self._by_task.get(dep)
                if result is not None and result.succeeded:
                    context[dep] = result.output or ""
            return context

    def get_task(self, name: str) -> Optional[Task]:
        return self._tasks.get(name)

    def get_result(self, name: str) -> Optional[ExecutionResult]:
        with self._lock:
            return self._by_task.get(name)

    def state(self, name: str) -> TaskState:
        with self._lock:
            return self._tasks[name].state

    def states(self) -> Dict[str, TaskState]:
        with self._lock:
            return {name: t.state for name, t in self._tasks.items()}

    def results(self) -> List[ExecutionResult]:
        """Snapshot of recorded results in completion order."""
        with self._lock:
            return list(self._results)

    def unresolved(self) -> int:
        with self._lock:
            return sum(1 for t in self._tasks.values() if t.state not in TERMINAL_STATES)

    def all_resolved(self) -> bool:
        """True when every task is COMPLETED or FAILED (trivially so for no tasks)."""
        return self.unresolved() == 0
