"""Crew console rendering: task plan, event log, summary and reviewer prompts."""

import threading
from typing import Dict, List, Optional

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .human import GateRequest
from .tasks import Checkpoint, CrewResult, ExecutionResult, Task, TaskState

# ── Palette ──────────────────────────────────────────────────

ACCENT = "#7FA6D9"
BORDER = "#30363D"
DIM = "#6E7681"
TEXT = "#E6EDF3"
MUTED = "#8B949E"
SUCCESS = "#57DB9C"
WARN = "#E3B341"
ERROR = "#F85149"
INFO = "#58A6FF"

# 8-color palette for agent distinction
AGENT_COLORS = [
    "#7FA6D9",  # blue
    "#57DB9C",  # green
    "#D9A67F",  # orange
    "#D97FD9",  # magenta
    "#7FD9D9",  # cyan
    "#D9D97F",  # yellow
    "#9C7FD9",  # purple
    "#D97F7F",  # red
]


def color_for_agent(agent_name: str) -> str:
    # Stable across processes, unlike hash() on str
    idx = sum(agent_name.encode("utf-8")) % len(AGENT_COLORS)
    return AGENT_COLORS[idx]


# ── Icon mapping for Unicode/ASCII fallback ──

_USE_UNICODE = True


def set_use_unicode(enabled: bool) -> None:
    """Set whether to use Unicode icons (True) or ASCII fallback (False)."""
    global _USE_UNICODE
    _USE_UNICODE = enabled


_ICON_MAP = {
    "✓": "[OK]",
    "✗": "[X]",
    "▸": ">",
    "○": "o",
    "●": "*",
    "⊙": "@",
    "?": "?",
    "–": "-",
    "→": "->",
    "⏱": "[T]",
}


def get_icon(unicode_icon: str) -> str:
    """Return the Unicode icon, or its ASCII fallback when Unicode is disabled."""
    if _USE_UNICODE:
        return unicode_icon
    return _ICON_MAP.get(unicode_icon, unicode_icon)


# Status display: (icon_char, color, label)
_STATE_DISPLAY = {
    TaskState.PENDING:           ("○", DIM,     "pending"),
    TaskState.AWAITING_APPROVAL: ("⊙", WARN,    "awaiting approval"),
    TaskState.RUNNING:           ("▸", INFO,    "running"),
    TaskState.COMPLETED:         ("✓", SUCCESS, "completed"),
    TaskState.FAILED:            ("✗", ERROR,   "failed"),
}

_CHECKPOINT_SHORT = {
    Checkpoint.BEFORE_START: "start",
    Checkpoint.BEFORE_TOOL_USE: "tools",
    Checkpoint.ON_COMPLETION: "review",
    Checkpoint.ON_ERROR: "error",
}


def format_flow(layers: List[List[Task]], states: Optional[Dict[str, TaskState]] = None) -> Text:
    """Compact layered flow line: ○a → [○b|○c] → ○d"""
    states = states or {}
    text = Text()
    for i, layer in enumerate(layers):
        if i > 0:
            text.append(f" {get_icon('→')} ", style=DIM)
        if len(layer) > 1:
            text.append("[", style=DIM)
        for j, task in enumerate(layer):
            if j > 0:
                text.append("|", style=DIM)
            icon_char, color, _label = _STATE_DISPLAY[states.get(task.name, TaskState.PENDING)]
            text.append(f"{get_icon(icon_char)}{task.name}", style=color)
        if len(layer) > 1:
            text.append("]", style=DIM)
    return text


class CrewRenderer:
    """Prints the crew plan, one line per task event, and the final summary.

    Event methods are called from the scheduler's driving thread and from
    worker threads (state changes), so printing is serialised.
    """

    def __init__(self, console: Console):
        self.console = console
        self._lock = threading.Lock()

    def _print(self, markup: str) -> None:
        with self._lock:
            self.console.print(f"  {markup}")

    # ── Plan ──────────────────────────────────────────────────

    def render_plan(self, crew_name: str, layers: List[List[Task]]) -> None:
        """Show the task table plus the layered flow line."""
        table = Table(
            show_header=True,
            header_style=f"bold {ACCENT}",
            border_style=BORDER,
            padding=(0, 1),
        )
        table.add_column("Task", style="bold", min_width=8)
        table.add_column("Agent", min_width=10)
        table.add_column("Depends On", min_width=10)
        table.add_column("Mode", min_width=6)
        table.add_column("Checkpoints", min_width=8)

        for layer in layers:
            for task in layer:
                color = color_for_agent(task.agent_name)
                deps = ", ".join(task.depends_on) if task.depends_on else "-"
                checkpoints = ", ".join(
                    _CHECKPOINT_SHORT[c] for c in Checkpoint if c in task.checkpoints
                ) or "-"
                table.add_row(
                    escape(task.name),
                    f"[{color}]{escape(task.agent_name)}[/{color}]",
                    escape(deps),
                    "async" if task.concurrent else "seq",
                    checkpoints,
                )

        body = Group(table, Text(""), format_flow(layers)) if layers else Text("(no tasks)", style=DIM)
        with self._lock:
            self.console.print(Panel(
                body,
                title=f"[bold {ACCENT}] {escape(crew_name)} [/bold {ACCENT}]",
                title_align="left",
                border_style=BORDER,
                padding=(0, 1),
            ))

    # ── Events ────────────────────────────────────────────────

    def render_task_start(self, task: Task) -> None:
        color = color_for_agent(task.agent_name)
        self._print(
            f"[{color}]{get_icon('▸')} {escape(task.agent_name)}[/{color}] "
            f"[{DIM}]starting {escape(task.name)}[/{DIM}]"
        )

    def render_state(self, task: Task, state: TaskState) -> None:
        if state != TaskState.AWAITING_APPROVAL:
            return
        self._print(
            f"[{WARN}]{get_icon('⊙')} {escape(task.name)}[/{WARN}] "
            f"[{DIM}]awaiting approval[/{DIM}]"
        )

    def render_result(self, result: ExecutionResult) -> None:
        color = color_for_agent(result.agent)
        if result.succeeded:
            self._print(
                f"[{SUCCESS}]{get_icon('✓')}[/{SUCCESS}] "
                f"[{color}]{escape(result.agent)}[/{color}] "
                f"[{DIM}]{escape(result.task)} done ({result.elapsed_seconds:.1f}s)[/{DIM}]"
            )
        elif result.started_at is None:
            self._print(
                f"[{DIM}]{get_icon('–')} {escape(result.task)} skipped: "
                f"{escape(result.error_message or '')}[/{DIM}]"
            )
        else:
            brief = (result.error_message or "unknown")[:80]
            self._print(
                f"[{ERROR}]{get_icon('✗')}[/{ERROR}] "
                f"[{color}]{escape(result.agent)}[/{color}] "
                f"[{ERROR}]{escape(result.task)}: {escape(brief)}[/{ERROR}]"
            )

    def on_event(self, kind: str, payload) -> None:
        """Scheduler event hook."""
        if kind == "start":
            self.render_task_start(payload)
        elif kind == "state":
            self.render_state(*payload)
        elif kind == "result":
            self.render_result(payload)

    # ── Summary ───────────────────────────────────────────────

    def render_summary(self, result: CrewResult) -> None:
        table = Table(
            show_header=True,
            header_style=f"bold {ACCENT}",
            border_style=BORDER,
            padding=(0, 1),
        )
        table.add_column("Task", min_width=8)
        table.add_column("Agent", min_width=10)
        table.add_column("Status", min_width=8)
        table.add_column("Attempts", justify="right")
        table.add_column("Time", justify="right", min_width=6)

        for r in result.in_declared_order():
            color = color_for_agent(r.agent)
            status_style = SUCCESS if r.succeeded else ERROR
            table.add_row(
                escape(r.task),
                f"[{color}]{escape(r.agent)}[/{color}]",
                f"[{status_style}]{r.status.value}[/{status_style}]",
                str(r.attempts),
                f"{r.elapsed_seconds:.1f}s" if r.started_at is not None else "-",
            )

        rate = result.success_rate
        rate_style = SUCCESS if rate == 100 else (WARN if rate > 0 else ERROR)
        footer = (
            f"[{rate_style}]{result.completed_count}/{result.total_tasks} completed "
            f"({rate}%)[/{rate_style}] [{DIM}]| {result.elapsed_seconds:.1f}s"
        )
        human = result.human or {}
        if human.get("total_interactions"):
            footer += (
                f" | human: {human['total_interactions']} asked, "
                f"{human.get('approvals', 0)} approved, {human.get('rejections', 0)} rejected"
            )
        footer += f"[/{DIM}]"

        with self._lock:
            self.console.print(Panel(
                table,
                title=f"[bold {ACCENT}] Crew Summary [/bold {ACCENT}]",
                subtitle=footer,
                title_align="left",
                border_style=BORDER,
                padding=(0, 1),
            ))


class RequestRenderer:
    """Panels and prompts for interactive reviewer requests."""

    _TITLES = {
        "approval": "Approval Required",
        "choice": "Choice Required",
        "input": "Input Required",
        "review": "Review Required",
    }

    def __init__(self, console: Console):
        self.console = console

    def render_request(self, request: GateRequest) -> None:
        lines = [f"[bold {TEXT}]{escape(request.prompt)}[/bold {TEXT}]"]
        if request.context:
            lines.append("")
            lines.append(f"[{MUTED}]{escape(request.context)}[/{MUTED}]")
        if request.consequences:
            lines.append("")
            lines.append(f"[{WARN}]{escape(request.consequences)}[/{WARN}]")
        if request.options:
            lines.append("")
            for i, option in enumerate(request.options, 1):
                lines.append(f"  [bold {ACCENT}]{i}.[/bold {ACCENT}] {escape(option)}")
        if request.timeout:
            lines.append("")
            lines.append(f"[{DIM}]{get_icon('⏱')} answer within {request.timeout:.0f}s[/{DIM}]")

        title = self._TITLES.get(request.kind, "Human Input")
        self.console.print(Panel(
            "\n".join(lines),
            title=f"[bold {WARN}] {title} [/bold {WARN}]",
            title_align="left",
            border_style=WARN,
            padding=(0, 1),
        ))

    def input_prompt(self, request: Optional[GateRequest] = None) -> str:
        if request is not None and request.kind == "approval":
            return (
                f"  [{WARN}]?[/{WARN}] "
                f"[bold {TEXT}](y)[/bold {TEXT}][{MUTED}]es[/{MUTED}] / "
                f"[bold {TEXT}](n)[/bold {TEXT}][{MUTED}]o[/{MUTED}]: "
            )
        return f"  [{WARN}]?[/{WARN}] "

    def render_timeout(self, timeout: Optional[float]) -> None:
        waited = f" after {timeout:.0f}s" if timeout else ""
        self.console.print(f"  [{ERROR}]{get_icon('⏱')} no answer{waited}[/{ERROR}]")
