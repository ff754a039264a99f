"""
Core agent loop.

A turn starts with the user's message and alternates between asking the
model for a response and executing the tool calls it requests:

    AWAITING_MODEL -> EXECUTING_TOOLS -> AWAITING_MODEL -> ... -> DONE

Each model request streams first and falls back once to a blocking call
if the stream fails. Tool calls run one at a time in the order the model
issued them. The turn ends when a response carries no tool calls, when
both request paths fail (reported on the result, never raised), or when
the iteration cap is reached.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import structlog

from ..config import Settings
from ..llm.base import (
    BaseLLM,
    ChatOptions,
    LLMMessage,
    StreamEvent,
    TokenUsage,
    ToolCall,
)
from ..runtime import RuntimeContext
from ..tools.registry import ToolRegistry
from .compaction import ContextManager
from .session import SessionStore

logger = structlog.get_logger()

EventHandler = Callable[[StreamEvent], None]


class AgentState(str, Enum):
    """Where the current turn is."""
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class TurnResult:
    """Outcome of one user turn."""

    content: str = ""
    iterations: int = 0
    hit_iteration_cap: bool = False
    error: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ModelReply:
    """A model response assembled from either request path."""

    content: str = ""
    thought: str = ""
    tool_calls: list[ToolCall] | None = None
    usage: TokenUsage | None = None


class AgentLoop:
    """Drives the model/tool conversation for one turn at a time."""

    def __init__(
        self,
        llm: BaseLLM,
        tools: ToolRegistry,
        context: ContextManager,
        sessions: SessionStore,
        runtime: RuntimeContext,
        settings: Settings,
    ):
        self.llm = llm
        self.tools = tools
        self.context = context
        self.sessions = sessions
        self.runtime = runtime
        self.settings = settings
        self.state = AgentState.DONE

    @property
    def max_iterations(self) -> int:
        if self.runtime.god_mode:
            return self.settings.god_mode_max_iterations
        return self.settings.max_iterations

    def _options(self) -> ChatOptions:
        definitions = self.tools.get_definitions()
        return ChatOptions(
            system_prompt=self.context.system_prompt or None,
            tools=definitions or None,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

    async def _maybe_compact(self) -> None:
        messages = self.sessions.messages
        if not self.context.needs_compaction(messages):
            return

        usage = self.context.estimate_usage(messages)
        logger.info("Context approaching limit, running compaction", percentage=usage.percentage)
        compacted = await self.context.compact(messages, self.llm)
        if compacted is not messages:
            self.sessions.replace_messages(compacted)

    async def _request(self, options: ChatOptions, on_event: EventHandler | None) -> ModelReply:
        """Stream a response, falling back once to a blocking request."""
        messages = list(self.sessions.messages)
        reply = ModelReply()

        try:
            async for event in self.llm.stream(messages, options):
                if on_event is not None:
                    on_event(event)
                if event.type == "text":
                    reply.content += event.content
                elif event.type == "thought":
                    reply.thought += event.content
                elif event.type == "tool_calls":
                    reply.tool_calls = event.tool_calls
                elif event.type == "done":
                    reply.usage = event.usage
            return reply
        except Exception as e:
            logger.warning("Streaming failed, falling back to blocking request", error=str(e))

        response = await self.llm.chat(messages, options)
        if on_event is not None and response.content:
            on_event(StreamEvent(type="text", content=response.content))
        return ModelReply(
            content=response.content,
            thought=response.thought,
            tool_calls=response.tool_calls,
            usage=response.usage,
        )

    async def run_turn(
        self,
        user_message: str | list[dict],
        on_event: EventHandler | None = None,
    ) -> TurnResult:
        """Run one user turn to completion."""
        result = TurnResult()

        self.sessions.add_message(LLMMessage(role="user", content=user_message))
        interval = self.settings.checkpoint_interval
        if interval and self.sessions.message_count % interval == 0:
            self.sessions.create_checkpoint()

        self.state = AgentState.AWAITING_MODEL
        limit = self.max_iterations

        while result.iterations < limit:
            result.iterations += 1
            await self._maybe_compact()

            try:
                reply = await self._request(self._options(), on_event)
            except Exception as e:
                logger.error("LLM request failed", error=str(e))
                result.error = str(e)
                break

            self.runtime.token_usage.add(reply.usage)
            result.usage.add(reply.usage)
            result.content = reply.content

            if not reply.tool_calls:
                if reply.content or reply.thought:
                    self.sessions.add_message(LLMMessage(
                        role="assistant",
                        content=reply.content,
                        thought=reply.thought or None,
                    ))
                self.state = AgentState.DONE
                break

            self.sessions.add_message(LLMMessage(
                role="assistant",
                content=reply.content,
                tool_calls=reply.tool_calls,
                thought=reply.thought or None,
            ))

            self.state = AgentState.EXECUTING_TOOLS
            tool_results = await self.tools.execute_tool_calls(reply.tool_calls)
            for tool_result in tool_results:
                self.sessions.add_message(tool_result.to_message())
            self.state = AgentState.AWAITING_MODEL

        if self.state != AgentState.DONE and result.error is None:
            result.hit_iteration_cap = True
            logger.warning("Maximum tool iterations reached", iterations=result.iterations)

        self.state = AgentState.DONE
        self.sessions.save()
        return result
