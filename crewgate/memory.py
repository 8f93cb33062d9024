"""Agent memory: past task executions offered back as context.

Each agent keeps a short-term list of recent executions and a long-term
store of its best successful runs per task kind. When the agent takes on a
task, similar past executions are summarised into an extra context section.
Memory outlives a single crew run; ``Crew.execute`` reuses the same bank.
"""

import hashlib
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .tasks import Task

MAX_SHORT_TERM = 100
MAX_LONG_TERM_PER_KIND = 10
SIMILARITY_THRESHOLD = 0.7
KIND_BONUS = 0.2
PREVIEW_CHARS = 200

_TASK_KINDS = (
    ("research", ("research", "find", "search")),
    ("analysis", ("analyze", "analyse", "examine", "study")),
    ("writing", ("write", "create", "compose")),
    ("coding", ("code", "program", "develop")),
    ("planning", ("plan", "strategy", "organize")),
)
_STOPWORDS = frozenset("the a an and or but in on at to for of with by".split())
_WORD_RE = re.compile(r"\w+")


def classify_task(description: str) -> str:
    lowered = description.lower()
    for kind, markers in _TASK_KINDS:
        if any(m in lowered for m in markers):
            return kind
    return "general"


def keywords(text: str) -> frozenset:
    return frozenset(
        w for w in _WORD_RE.findall(text.lower())
        if len(w) >= 3 and w not in _STOPWORDS
    )


def task_digest(task: Task) -> str:
    return hashlib.sha256(f"{task.name}:{task.description}".encode("utf-8")).hexdigest()[:17]


@dataclass
class ExecutionRecord:
    task: str
    description: str
    kind: str
    output: str
    elapsed: float
    success: bool
    digest: str
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        mark = "succeeded" if self.success else "failed"
        preview = self.output[:PREVIEW_CHARS]
        if len(self.output) > PREVIEW_CHARS:
            preview += "..."
        when = time.strftime("%Y-%m-%d %H:%M", time.localtime(self.timestamp))
        return (
            f"Task: {self.task} ({mark})\n"
            f"Description: {self.description}\n"
            f"Result: {preview}\n"
            f"Time: {self.elapsed:.2f}s\n"
            f"Date: {when}"
        )


class AgentMemory:
    """Execution history for one agent."""

    def __init__(self):
        self._short_term: List[ExecutionRecord] = []
        self._long_term: Dict[str, List[ExecutionRecord]] = {}
        self._lock = threading.Lock()

    def add_execution(self, task: Task, output: str, elapsed: float, success: bool) -> ExecutionRecord:
        record = ExecutionRecord(
            task=task.name,
            description=task.description,
            kind=classify_task(task.description),
            output=output or "",
            elapsed=elapsed,
            success=success,
            digest=task_digest(task),
        )
        with self._lock:
            self._short_term.insert(0, record)
            del self._short_term[MAX_SHORT_TERM:]
            if success:
                best = self._long_term.setdefault(record.kind, [])
                best.append(record)
                best.sort(key=lambda r: r.elapsed)
                del best[MAX_LONG_TERM_PER_KIND:]
        return record

    @staticmethod
    def similarity(task: Task, record: ExecutionRecord) -> float:
        """Keyword overlap of the descriptions, boosted when the task kinds match."""
        ours = keywords(task.description)
        theirs = keywords(record.description)
        union = ours | theirs
        if not union:
            return 0.0
        score = len(ours & theirs) / len(union)
        if classify_task(task.description) == record.kind:
            score += KIND_BONUS
        return min(score, 1.0)

    def relevant_executions(self, task: Task, limit: int = 3) -> Optional[str]:
        """Summaries of the most similar past executions, or None."""
        kind = classify_task(task.description)
        digest = task_digest(task)
        with self._lock:
            short_term = list(self._short_term)
            long_term = list(self._long_term.get(kind, []))

        scored: Dict[int, tuple] = {}
        for record in short_term + long_term:
            if record.digest == digest:
                score = 1.0
            elif record.kind == kind:
                score = self.similarity(task, record)
                if score <= SIMILARITY_THRESHOLD:
                    continue
            else:
                continue
            key = id(record)
            if key not in scored or scored[key][0] < score:
                scored[key] = (score, record)

        ranked = sorted(scored.values(), key=lambda item: (-item[0], not item[1].success))
        if not ranked:
            return None
        return "\n---\n".join(record.format() for _, record in ranked[:limit])

    def stats(self) -> Dict[str, float]:
        with self._lock:
            total = len(self._short_term)
            succeeded = sum(1 for r in self._short_term if r.success)
            return {
                "short_term_count": total,
                "long_term_kinds": len(self._long_term),
                "long_term_total": sum(len(v) for v in self._long_term.values()),
                "success_rate": round(succeeded * 100 / total, 1) if total else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._short_term.clear()
            self._long_term.clear()


class MemoryBank:
    """One AgentMemory per agent name, created on first use."""

    def __init__(self):
        self._memories: Dict[str, AgentMemory] = {}
        self._lock = threading.Lock()

    def for_agent(self, name: str) -> AgentMemory:
        with self._lock:
            memory = self._memories.get(name)
            if memory is None:
                memory = self._memories[name] = AgentMemory()
            return memory

    def stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            items = list(self._memories.items())
        return {name: memory.stats() for name, memory in items}

    def clear(self) -> None:
        with self._lock:
            items = list(self._memories.values())
        for memory in items:
            memory.clear()
