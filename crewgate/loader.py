"""Build a Crew from a YAML crew file.

Example::

    name: research-crew
    crew:
      max-concurrency: 2
      on-timeout: reject
    agents:
      - name: researcher
        role: Research Analyst
        goal: Find accurate information
        model: deepseek-chat
    tasks:
      - name: research
        description: Research the topic
        agent: researcher
        async: true
      - name: write
        description: Write the article
        agent: researcher
        depends-on: [research]
        checkpoints: [on-completion]
        max-retries: 2
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from rich.console import Console

from .agents import Agent
from .config import CrewConfig
from .crew import Crew
from .errors import ConfigError
from .human import Responder
from .llm import LLMAdapter, LLMBackend, Tool
from .logger import get_logger
from .tasks import Checkpoint, Task

_log = get_logger(__name__)


def _require(entry: Dict[str, Any], key: str, where: str) -> str:
    value = entry.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigError(f"{where} is missing required key '{key}'")
    return str(value)


def _as_list(value: Any, key: str, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigError(f"{where}: '{key}' must be a string or a list")


def _build_agent(entry: Any, index: int, config: CrewConfig, tools: Dict[str, Tool]) -> Agent:
    where = f"agents[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{where} must be a mapping")
    name = _require(entry, "name", where)
    preset = config.get_preset(entry.get("model"))
    tool_names = _as_list(entry.get("tools"), "tools", where)
    missing = [t for t in tool_names if t not in tools]
    if missing:
        _log.warning("Agent %s names tools with no handler: %s", name, ", ".join(missing))
    backend = LLMBackend(
        LLMAdapter(**preset.get_llm_kwargs()),
        tools={t: tools[t] for t in tool_names if t in tools},
    )
    agent = Agent(
        name=name,
        role=_require(entry, "role", where),
        goal=_require(entry, "goal", where),
        backend=backend,
        backstory=entry.get("backstory"),
        tools=frozenset(tool_names),
    )
    backend.bind(agent)
    return agent


def _build_task(entry: Any, index: int) -> Task:
    where = f"tasks[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{where} must be a mapping")
    try:
        return Task(
            name=_require(entry, "name", where),
            description=_require(entry, "description", where),
            agent=_require(entry, "agent", where),
            depends_on=_as_list(entry.get("depends-on"), "depends-on", where),
            concurrent=bool(entry.get("async", False)),
            checkpoints=frozenset(_as_list(entry.get("checkpoints"), "checkpoints", where)),
            expected_output=entry.get("expected-output"),
            max_retries=entry.get("max-retries", 0),
        )
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def _warn_toolless_gates(agents: List[Agent], tasks: List[Task]) -> None:
    by_name = {a.name: a for a in agents}
    for task in tasks:
        agent = by_name.get(task.agent_name)
        if agent is None or not task.has_checkpoint(Checkpoint.BEFORE_TOOL_USE):
            continue
        backend = agent.backend
        if isinstance(backend, LLMBackend) and not backend.offered_tools():
            _log.warning(
                "Task %s gates tool use but agent %s has no tools; the checkpoint will never fire",
                task.name, agent.name,
            )


def load_crew(
    path: Union[str, Path],
    responder: Optional[Responder] = None,
    console: Optional[Console] = None,
    config: Optional[CrewConfig] = None,
    tools: Optional[Dict[str, Tool]] = None,
) -> Crew:
    """Read ``path`` and return a validated Crew.

    ``config`` defaults to the project config next to the crew file; the
    file's own ``crew:`` and ``models:`` sections are applied on top.
    Malformed files raise ConfigError; graph errors (cycles, unknown
    dependencies or agents) raise their CrewBuildError subclasses.

    ``tools`` maps tool names to handlers; each agent gets the ones its
    ``tools:`` list names.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read crew file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Crew file {path} must contain a mapping at the top level")

    base = config if config is not None else CrewConfig.load(path.parent)
    settings = data.get("crew") or {}
    if not isinstance(settings, dict):
        raise ConfigError("'crew' must be a mapping of settings")
    overrides = dict(settings)
    if "models" in data:
        overrides["models"] = data["models"]
    config = base.merged(overrides) if overrides else base

    raw_agents = data.get("agents") or []
    raw_tasks = data.get("tasks") or []
    if not isinstance(raw_agents, list) or not isinstance(raw_tasks, list):
        raise ConfigError("'agents' and 'tasks' must be lists")

    tools = tools or {}
    agents = [_build_agent(entry, i, config, tools) for i, entry in enumerate(raw_agents)]
    tasks = [_build_task(entry, i) for i, entry in enumerate(raw_tasks)]
    _warn_toolless_gates(agents, tasks)

    return Crew(
        name=str(data.get("name") or path.stem),
        agents=agents,
        tasks=tasks,
        config=config,
        responder=responder,
        console=console,
    )
