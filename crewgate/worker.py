"""TaskRunner: executes one task against its agent, honouring human checkpoints."""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .agents import Agent, AgentRegistry, tool_guard
from .errors import AgentInvocationError, ApprovalRejectedError, ApprovalTimeoutError
from .human import HumanGate
from .logger import get_logger
from .memory import MemoryBank
from .tasks import Checkpoint, Task, TaskState

_log = get_logger(__name__)

ERROR_CHOICES = ("retry", "modify", "abort")
DEFAULT_RETRY_BACKOFF = 1.0

StateCallback = Callable[[Task, TaskState], None]


@dataclass
class TaskRun:
    """Progress of one task run: agent calls made and the final output."""

    output: Optional[str] = None
    attempts: int = 0


def build_context(task: Task, context_results: Mapping[str, str]) -> str:
    """Assemble the agent context from the task's declared dependencies only."""
    parts = []
    for dep in task.depends_on:
        if dep in context_results:
            parts.append(f"--- Result from task '{dep}' ---\n{context_results[dep]}")
    return "\n\n".join(parts)


class TaskRunner:
    """Drives a single task through approval, invocation and review.

    Lifecycle: pending -> awaiting-approval (before-start only) -> running.
    A task with ``max_retries`` is re-invoked automatically after an agent
    failure, waiting ``retry_backoff * 2**n`` seconds before the n-th retry.
    Once those are spent, the on-error recovery choice and the on-completion
    review each allow at most one extra invocation; neither loops.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        gate: Optional[HumanGate] = None,
        on_state: Optional[StateCallback] = None,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        memory: Optional[MemoryBank] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.gate = gate
        self.on_state = on_state
        self.retry_backoff = retry_backoff
        self.memory = memory
        self._sleep = sleep

    def _transition(self, task: Task, state: TaskState) -> None:
        if self.on_state is not None:
            self.on_state(task, state)

    def _require_gate(self, task: Task) -> HumanGate:
        if self.gate is None:
            raise RuntimeError(f"Task '{task.name}' declares checkpoints but no human gate is configured")
        return self.gate

    def run(
        self,
        task: Task,
        context_results: Mapping[str, str],
        progress: Optional[TaskRun] = None,
    ) -> str:
        """Run ``task`` with its dependencies' outputs and return the final text.

        Raises TaskError subclasses on failure. ``progress`` is updated in
        place so callers can read the attempt count even after a failure.
        """
        progress = progress if progress is not None else TaskRun()
        agent = self.registry.require(task.agent_name)
        context = build_context(task, context_results)
        context = self._with_memory(task, context)

        if task.has_checkpoint(Checkpoint.BEFORE_START):
            self._transition(task, TaskState.AWAITING_APPROVAL)
            self._confirm_start(task, agent, context)

        self._transition(task, TaskState.RUNNING)

        def invoke(extra: str = "") -> str:
            progress.attempts += 1
            full_context = context + extra if context else extra.lstrip("\n")
            with tool_guard(self._tool_guard_for(task, agent)):
                return agent.invoke(self._compose_description(task), full_context)

        started = time.monotonic()
        try:
            try:
                output = self._invoke_with_retries(task, invoke)
            except AgentInvocationError as e:
                if not task.has_checkpoint(Checkpoint.ON_ERROR):
                    raise
                output = self._recover(task, e, invoke)

            if task.has_checkpoint(Checkpoint.ON_COMPLETION):
                output = self._review(task, output, invoke)
        except AgentInvocationError as e:
            self._remember(task, str(e), started, success=False)
            raise

        progress.output = output
        self._remember(task, output, started, success=True)
        return output

    def _invoke_with_retries(self, task: Task, invoke: Callable[[], str]) -> str:
        retry = 0
        while True:
            try:
                return invoke()
            except AgentInvocationError:
                if retry >= task.max_retries:
                    raise
                retry += 1
                delay = self.retry_backoff * (2 ** retry)
                _log.warning(
                    "Task %s failed, retrying (%d/%d) in %.1fs",
                    task.name, retry, task.max_retries, delay,
                )
                if delay > 0:
                    self._sleep(delay)

    # ── Memory ────────────────────────────────────────────────

    def _with_memory(self, task: Task, context: str) -> str:
        if self.memory is None:
            return context
        past = self.memory.for_agent(task.agent_name).relevant_executions(task)
        if not past:
            return context
        section = f"## Relevant Past Executions\n{past}"
        return f"{context}\n\n{section}" if context else section

    def _remember(self, task: Task, output: str, started: float, success: bool) -> None:
        if self.memory is None:
            return
        elapsed = time.monotonic() - started
        self.memory.for_agent(task.agent_name).add_execution(task, output, elapsed, success)

    @staticmethod
    def _compose_description(task: Task) -> str:
        if task.expected_output:
            return f"{task.description}\n\nExpected output: {task.expected_output}"
        return task.description

    # ── Checkpoints ───────────────────────────────────────────

    def _confirm_start(self, task: Task, agent: Agent, context: str) -> None:
        gate = self._require_gate(task)
        details = (
            f"Description: {task.description}\n"
            f"Expected output: {task.expected_output or 'Not specified'}\n"
            f"Assigned agent: {agent.name} ({agent.role})"
        )
        if context:
            details += f"\nUpstream context: {len(context):,} chars"
        response = gate.request_approval(
            f"Confirm execution of task: {task.name}",
            context=details,
            consequences="The task will be executed by its agent and may use external tools.",
        )
        if response.approved:
            return
        if response.timed_out:
            raise ApprovalTimeoutError(gate.effective_timeout())
        raise ApprovalRejectedError(response.reason)

    def _tool_guard_for(self, task: Task, agent: Agent):
        if not task.has_checkpoint(Checkpoint.BEFORE_TOOL_USE):
            return None
        gate = self._require_gate(task)

        def guard(tool_name: str, params: Dict[str, Any]) -> bool:
            response = gate.request_approval(
                f"Agent {agent.name} wants to use tool '{tool_name}' for task '{task.name}'",
                context=f"Parameters: {json.dumps(params, default=str, sort_keys=True)}",
                consequences=f"This will execute the {tool_name} tool with the specified parameters.",
            )
            if not response.approved:
                _log.info("Tool %s rejected for task %s: %s", tool_name, task.name, response.reason)
            return response.approved

        return guard

    def _review(self, task: Task, output: str, invoke: Callable[[str], str]) -> str:
        gate = self._require_gate(task)
        response = gate.request_review(
            output, prompt=f"Review output of task '{task.name}' (approve, or type feedback)",
        )
        if response.approved:
            return output
        if response.timed_out:
            raise ApprovalTimeoutError(gate.effective_timeout())
        _log.info("Revising task %s with reviewer feedback", task.name)
        return invoke(
            f"\n\n## Reviewer Feedback (please address):\n{response.feedback}"
            f"\n\n## Your Previous Output:\n{output}"
        )

    def _recover(self, task: Task, error: AgentInvocationError, invoke: Callable[[str], str]) -> str:
        gate = self._require_gate(task)
        choice = gate.request_choice(
            f"Task '{task.name}' failed with error: {error}. How should I proceed?",
            ERROR_CHOICES,
        )
        if not choice.valid or choice.choice == "abort":
            raise error
        if choice.choice == "modify":
            guidance = gate.request_input(
                f"Guidance for retrying task '{task.name}':", {"min_length": 1},
            )
            if not guidance.valid:
                raise error
            _log.info("Retrying task %s with reviewer guidance", task.name)
            return invoke(f"\n\n## Reviewer Guidance:\n{guidance.value}")
        _log.info("Retrying task %s after failure", task.name)
        return invoke()
