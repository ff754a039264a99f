"""
Base classes for LLM providers.

Every backend normalizes its vendor protocol into the same request/response
contract: ``chat`` returns an ``LLMResponse`` and ``stream`` yields
``StreamEvent`` objects in order (text chunks, at most one ``tool_calls``
event, and a final ``done`` event).
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Literal


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProviderError(Exception):
    """A backend answered with a non-2xx status or could not be reached."""

    def __init__(self, provider: str, status: int | None, body: str):
        self.provider = provider
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"{provider} error: {body}")
        else:
            super().__init__(f"{provider} error ({status}): {body}")


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM.

    ``arguments`` is the raw JSON string the model produced; streaming
    backends assemble it from fragments, so it is only parsed when the
    tool is executed.
    """

    id: str
    name: str
    arguments: str = "{}"
    thought_signature: str | None = None

    def parse_arguments(self) -> dict[str, Any]:
        """Decode the argument string, degrading to ``{}`` when malformed."""
        try:
            parsed = json.loads(self.arguments or "{}")
        except (TypeError, ValueError):
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str | list[dict[str, Any]]
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    thought: str | None = None
    timestamp: str = field(default_factory=_now)

    @property
    def text(self) -> str:
        """Content flattened to a string (structured parts are JSON-encoded)."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content)


def pair_tool_results(messages: list[LLMMessage]) -> list[LLMMessage]:
    """Turn tool results that answer no preceding call into plain user text.

    A compacted history can start with ``tool`` messages whose assistant
    call was summarized away. Vendors reject such results, so they are
    sent as user messages instead; consecutive ones share a single message.
    """
    paired: list[LLMMessage] = []
    pending: set[str] = set()
    merging = False

    for msg in messages:
        if msg.role != "tool":
            pending = {tc.id for tc in msg.tool_calls or []} if msg.role == "assistant" else set()
            merging = False
            paired.append(msg)
            continue

        if msg.tool_call_id in pending:
            pending.discard(msg.tool_call_id)
            merging = False
            paired.append(msg)
            continue

        text = f"Tool result ({msg.name or 'tool'}): {msg.text}"
        if merging:
            paired[-1] = replace(paired[-1], content=f"{paired[-1].content}\n\n{text}")
        else:
            paired.append(LLMMessage(role="user", content=text, timestamp=msg.timestamp))
            merging = True

    return paired


@dataclass
class TokenUsage:
    """Prompt/completion token counters."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: "TokenUsage | None") -> None:
        """Accumulate another usage report into this one."""
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatOptions:
    """Per-request options shared by all providers."""

    system_prompt: str | None = None
    tools: list[ToolDefinition] | None = None
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass
class LLMResponse:
    """Response from a blocking chat call."""

    content: str
    tool_calls: list[ToolCall] | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None
    model: str = ""
    thought: str = ""


@dataclass
class StreamEvent:
    """One event of a streamed response."""

    type: Literal["text", "thought", "tool_calls", "done"]
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    usage: TokenUsage | None = None
    finish_reason: str | None = None


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Send a blocking chat completion request."""
        pass

    @abstractmethod
    def stream(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a chat completion as ordered events."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    async def list_models(self) -> list[str]:
        """List the models this provider can serve."""
        return []

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to the provider's wire format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def set_model(self, model: str) -> None:
        self.model = model

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        return None

    def _options(self, options: ChatOptions | None) -> ChatOptions:
        if options is not None:
            return options
        return ChatOptions(temperature=self.temperature, max_tokens=self.max_tokens)
