"""DependencyGraph: build-time validation and ordering of crew tasks."""

import heapq
from typing import Dict, List, Sequence

from .errors import CycleError, DuplicateNameError, UnknownDependencyError
from .tasks import Task

_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """Validated DAG over a crew's tasks.

    Construction fails with DuplicateNameError, UnknownDependencyError or
    CycleError; a constructed graph is always acyclic.
    """

    def __init__(self, tasks: Sequence[Task]):
        self._tasks: Dict[str, Task] = {}
        self._index: Dict[str, int] = {}
        for i, task in enumerate(tasks):
            if task.name in self._tasks:
                raise DuplicateNameError("task", task.name)
            self._tasks[task.name] = task
            self._index[task.name] = i

        for task in tasks:
            for dep in task.depends_on:
                if dep not in self._tasks:
                    raise UnknownDependencyError(task.name, dep)

        self._dependents: Dict[str, List[str]] = {name: [] for name in self._tasks}
        for task in tasks:
            for dep in task.depends_on:
                self._dependents[dep].append(task.name)

        self._check_acyclic()

    # ── Validation ────────────────────────────────────────────

    def _check_acyclic(self) -> None:
        """Iterative three-colour DFS in declared order."""
        color = {name: _WHITE for name in self._tasks}
        for root in self._tasks:
            if color[root] != _WHITE:
                continue
            path: List[str] = [root]
            stack = [iter(self._tasks[root].depends_on)]
            color[root] = _GREY
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    color[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if color[dep] == _GREY:
                    start = path.index(dep)
                    # path follows "depends on" edges; report in execution direction
                    cycle = list(reversed(path[start:]))
                    cycle.append(cycle[0])
                    raise CycleError(cycle)
                if color[dep] == _WHITE:
                    color[dep] = _GREY
                    path.append(dep)
                    stack.append(iter(self._tasks[dep].depends_on))

    # ── Queries ───────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def index_of(self, name: str) -> int:
        return self._index[name]

    def dependencies(self, name: str) -> List[str]:
        return list(self._tasks[name].depends_on)

    def dependents(self, name: str) -> List[str]:
        return list(self._dependents[name])

    def downstream(self, name: str) -> List[str]:
        """Transitive dependents of ``name`` in declared order."""
        seen = set()
        queue = [name]
        while queue:
            current = queue.pop()
            for child in self._dependents[current]:
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return sorted(seen, key=self._index.__getitem__)

    def order(self) -> List[Task]:
        """Topological order; ready tasks are taken in declared order."""
        remaining = {name: len(t.depends_on) for name, t in self._tasks.items()}
        heap = [self._index[name] for name, n in remaining.items() if n == 0]
        heapq.heapify(heap)
        names = list(self._tasks)
        ordered: List[Task] = []
        while heap:
            name = names[heapq.heappop(heap)]
            ordered.append(self._tasks[name])
            for child in self._dependents[name]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    heapq.heappush(heap, self._index[child])
        return ordered

    def layers(self) -> List[List[Task]]:
        """Group tasks by dependency depth for plan display."""
        depth: Dict[str, int] = {}
        for task in self.order():
            depth[task.name] = 1 + max((depth[d] for d in task.depends_on), default=-1)
        grouped: List[List[Task]] = []
        for task in self._tasks.values():
            d = depth[task.name]
            while len(grouped) <= d:
                grouped.append([])
            grouped[d].append(task)
        return grouped
