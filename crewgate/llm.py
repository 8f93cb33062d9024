"""LLM adapter via litellm, and the agent backend built on it."""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import litellm
litellm.suppress_debug_info = True

from .agents import Agent, request_tool_use
from .errors import AgentInvocationError
from .logger import get_logger

_log = get_logger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class LLMResponse:
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    usage: Optional[Dict] = None

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class Tool:
    """A callable an LLM agent may request; ``parameters`` is a JSON schema."""

    name: str
    description: str
    handler: Callable[..., Any]
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def schema(self) -> dict:
        """OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class LLMAdapter:
    """Unified LLM interface. Passes api_key/api_base directly to litellm,
    avoiding env-var pollution when switching between providers."""

    def __init__(self, model: str, temperature: float = 0.1,
                 max_tokens: int = 2000, api_base: Optional[str] = None,
                 api_key: Optional[str] = None, timeout: float = 120.0):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_base = api_base
        self.api_key = api_key
        self.timeout = timeout

    def chat(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict]] = None) -> LLMResponse:
        kwargs: Dict[str, Any] = {
            "model": self.model, "messages": messages,
            "temperature": self.temperature, "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = litellm.completion(**kwargs)
        except litellm.exceptions.AuthenticationError as e:
            raise ConnectionError(f"Auth failed. Check API key.\n{e}") from e
        except litellm.exceptions.APIConnectionError as e:
            raise ConnectionError(
                f"Cannot connect: model={self.model}, base={self.api_base or 'default'}\n{e}"
            ) from e
        except Exception as e:
            raise ConnectionError(f"LLM error: {type(e).__name__}: {e}") from e

        msg = response.choices[0].message

        tool_calls = None
        if getattr(msg, "tool_calls", None):
            tool_calls = []
            for tc in msg.tool_calls:
                try:
                    args = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError:
                    args = {"_raw": tc.function.arguments}
                tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args))

        usage = None
        if getattr(response, "usage", None):
            usage = {"prompt_tokens": response.usage.prompt_tokens,
                     "completion_tokens": response.usage.completion_tokens,
                     "total_tokens": response.usage.total_tokens}

        return LLMResponse(content=msg.content, tool_calls=tool_calls, usage=usage)


def build_agent_prompt(agent: Agent) -> str:
    prompt = f"You are {agent.role}.\n\nYour goal: {agent.goal}"
    if agent.backstory:
        prompt += f"\n\nBackground: {agent.backstory}"
    prompt += (
        "\n\n## Rules:\n"
        "- Work only from the task description and the context you are given.\n"
        "- Reply with the complete task output, not a plan for producing it."
    )
    return prompt


class LLMBackend:
    """Agent backend that answers a task with one LLM conversation.

    Tools named in the agent's ``tools`` are offered to the model; every call
    the model requests goes through ``request_tool_use`` first, so a task's
    before-tool-use checkpoint can veto it.
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        agent: Optional[Agent] = None,
        tools: Optional[Dict[str, Tool]] = None,
        max_iterations: int = 10,
    ):
        self.adapter = adapter
        self.agent = agent
        self.tools = tools or {}
        self.max_iterations = max_iterations

    def bind(self, agent: Agent) -> "LLMBackend":
        self.agent = agent
        return self

    def _agent_name(self) -> str:
        return self.agent.name if self.agent is not None else self.adapter.model

    def offered_tools(self) -> List[Tool]:
        if self.agent is None:
            return list(self.tools.values())
        return [t for name, t in self.tools.items() if name in self.agent.tools]

    def invoke(self, description: str, context: str) -> str:
        system = build_agent_prompt(self.agent) if self.agent is not None else ""
        user = f"Current Task: {description}"
        if context:
            user += f"\n\nAdditional Context:\n{context}"
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})

        offered = {t.name: t for t in self.offered_tools()}
        schemas = [t.schema() for t in offered.values()] or None

        for _ in range(self.max_iterations):
            try:
                response = self.adapter.chat(messages, tools=schemas)
            except ConnectionError as e:
                raise AgentInvocationError(self._agent_name(), str(e)) from e

            if not response.has_tool_calls():
                return response.content or ""

            messages.append({
                "role": "assistant",
                "content": response.content,
                "tool_calls": [
                    {"id": tc.id, "type": "function",
                     "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)}}
                    for tc in response.tool_calls
                ],
            })
            for tc in response.tool_calls:
                messages.append({
                    "role": "tool", "tool_call_id": tc.id,
                    "content": self._run_tool(offered, tc),
                })

        raise AgentInvocationError(
            self._agent_name(), f"reached max iterations ({self.max_iterations}) without an answer",
        )

    def _run_tool(self, offered: Dict[str, Tool], call: ToolCall) -> str:
        tool = offered.get(call.name)
        if tool is None:
            return f"Error: unknown tool '{call.name}'"
        if not request_tool_use(call.name, call.arguments):
            return "Tool use denied by reviewer."
        try:
            result = tool.handler(**call.arguments)
        except Exception as e:
            _log.warning("Tool %s failed: %s", call.name, e)
            return f"Tool {call.name} failed: {type(e).__name__}: {e}"
        return result if isinstance(result, str) else json.dumps(result, default=str)
