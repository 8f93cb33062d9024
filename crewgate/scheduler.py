"""Scheduler: dependency-ordered task execution over a bounded worker pool."""

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Mapping, Optional

from .agents import AgentRegistry
from .board import TaskBoard
from .errors import AgentInvocationError, ConfigError, TaskError
from .graph import DependencyGraph
from .human import HumanGate
from .logger import get_logger, task_context
from .memory import MemoryBank
from .tasks import ExecutionResult, Task, TaskState
from .worker import DEFAULT_RETRY_BACKOFF, TaskRun, TaskRunner

_log = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 4

# Event kinds passed to ``on_event``: "start", "state", "result"
EventCallback = Callable[[str, Any], None]


class Scheduler:
    """Runs a validated task graph to completion.

    The calling thread is the only dispatcher and the only writer of the
    result collection. Concurrent-eligible tasks share a pool of
    ``max_concurrency`` workers; all other tasks go through a single-thread
    lane so they never overlap each other, though they may overlap pool work.
    A task whose dependency fails is recorded as failed and never started.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        registry: AgentRegistry,
        gate: Optional[HumanGate] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        on_event: Optional[EventCallback] = None,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        memory: Optional[MemoryBank] = None,
    ):
        if max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.graph = graph
        self.registry = registry
        self.gate = gate
        self.max_concurrency = max_concurrency
        self.on_event = on_event
        self.retry_backoff = retry_backoff
        self.memory = memory
        self.board: Optional[TaskBoard] = None

    def _emit(self, kind: str, payload: Any) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(kind, payload)
        except Exception as e:
            _log.warning("Event handler failed on %s: %s", kind, e)

    # ── Public API ────────────────────────────────────────────

    def run(self) -> List[ExecutionResult]:
        """Execute every task; returns one result per task in completion order."""
        board = TaskBoard(self.graph)
        self.board = board

        def on_state(task: Task, state: TaskState) -> None:
            if state == TaskState.AWAITING_APPROVAL:
                board.mark_awaiting_approval(task.name)
            elif state == TaskState.RUNNING:
                board.mark_running(task.name)
            self._emit("state", (task, state))

        runner = TaskRunner(
            self.registry,
            self.gate,
            on_state=on_state,
            retry_backoff=self.retry_backoff,
            memory=self.memory,
        )
        pool = ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="crewgate-pool",
        )
        lane = ThreadPoolExecutor(max_workers=1, thread_name_prefix="crewgate-seq")
        in_flight: Dict[Future, Task] = {}
        finished = False

        try:
            while not board.all_resolved():
                for result in board.propagate_failures():
                    _log.info("Task %s skipped: %s", result.task, result.error)
                    self._emit("result", result)

                self._dispatch_ready(board, runner, pool, lane, in_flight)

                if not in_flight:
                    if board.all_resolved():
                        break
                    # A validated DAG always has something runnable or running.
                    raise RuntimeError(
                        f"Scheduler stalled with {board.unresolved()} unresolved task(s)"
                    )

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: self.graph.index_of(in_flight[f].name)):
                    in_flight.pop(future)
                    result = board.record(future.result())
                    self._log_result(result)
                    self._emit("result", result)
            finished = True
        finally:
            if not finished and self.gate is not None:
                self.gate.close()
            # On interrupt, workers blocked on a gate prompt are abandoned.
            pool.shutdown(wait=finished, cancel_futures=not finished)
            lane.shutdown(wait=finished, cancel_futures=not finished)
            if not finished:
                _log.warning("Crew run interrupted with %d task(s) in flight", len(in_flight))

        return board.results()

    # ── Dispatch ──────────────────────────────────────────────

    def _dispatch_ready(
        self,
        board: TaskBoard,
        runner: TaskRunner,
        pool: ThreadPoolExecutor,
        lane: ThreadPoolExecutor,
        in_flight: Dict[Future, Task],
    ) -> None:
        """Submit ready tasks in declared order while capacity allows."""
        pool_busy = sum(1 for t in in_flight.values() if t.concurrent)
        lane_busy = any(not t.concurrent for t in in_flight.values())

        for task in board.ready():
            if task.concurrent:
                if pool_busy >= self.max_concurrency:
                    continue
                executor = pool
                pool_busy += 1
            else:
                if lane_busy:
                    continue
                executor = lane
                lane_busy = True

            started_at = board.mark_started(task.name)
            context = board.context_for(task)
            _log.info("Dispatching task %s to %s", task.name, task.agent_name)
            self._emit("start", task)
            future = executor.submit(self._execute, runner, task, context, started_at)
            in_flight[future] = task

    def _execute(
        self,
        runner: TaskRunner,
        task: Task,
        context: Mapping[str, str],
        started_at: float,
    ) -> ExecutionResult:
        """Worker-side body; never raises, every failure becomes a result."""
        progress = TaskRun()
        error: Optional[TaskError] = None
        try:
            with task_context(task.name):
                runner.run(task, context, progress)
        except TaskError as e:
            error = e
        except Exception as e:
            _log.exception("Unexpected error while running task %s", task.name)
            error = AgentInvocationError(task.agent_name, f"{type(e).__name__}: {e}")
            error.__cause__ = e

        if error is not None:
            return ExecutionResult(
                task=task.name,
                agent=task.agent_name,
                status=TaskState.FAILED,
                error=error,
                started_at=started_at,
                finished_at=time.time(),
                attempts=progress.attempts,
            )
        return ExecutionResult(
            task=task.name,
            agent=task.agent_name,
            status=TaskState.COMPLETED,
            output=progress.output,
            started_at=started_at,
            finished_at=time.time(),
            attempts=progress.attempts,
        )

    @staticmethod
    def _log_result(result: ExecutionResult) -> None:
        if result.succeeded:
            _log.info("Task %s completed in %.2fs", result.task, result.elapsed_seconds)
        else:
            _log.warning("Task %s failed: %s", result.task, result.error_message)
