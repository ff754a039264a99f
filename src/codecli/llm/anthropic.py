"""
Anthropic Claude LLM provider.
"""

import json
from typing import Any, AsyncIterator

import anthropic
import httpx
import structlog

from .base import (
    BaseLLM,
    ChatOptions,
    LLMMessage,
    LLMResponse,
    ProviderError,
    StreamEvent,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    pair_tool_results,
)

logger = structlog.get_logger()


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            http_client=http_client,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic format.

        Consecutive tool results share one user turn, as the API requires
        every ``tool_use`` block to be answered in the next message.
        """
        converted: list[dict[str, Any]] = []

        for msg in pair_tool_results(messages):
            if msg.role == "system":
                continue

            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text,
                }
                previous = converted[-1] if converted else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and previous["content"]
                    and previous["content"][-1].get("type") == "tool_result"
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.text})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.parse_arguments(),
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _request_kwargs(
        self, messages: list[LLMMessage], options: ChatOptions
    ) -> dict[str, Any]:
        system_parts = [options.system_prompt] if options.system_prompt else []
        system_parts.extend(m.text for m in messages if m.role == "system" and m.content)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": self._convert_messages(messages),
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if options.tools:
            kwargs["tools"] = self.format_tools(options.tools)
        return kwargs

    def _translate_error(self, e: anthropic.APIError) -> ProviderError:
        if isinstance(e, anthropic.APIStatusError):
            return ProviderError(self.provider_name, e.status_code, e.response.text)
        return ProviderError(self.provider_name, None, str(e))

    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        options = self._options(options)

        try:
            response = await self.client.messages.create(
                **self._request_kwargs(messages, options)
            )
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise self._translate_error(e) from e

        content = ""
        thought = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "thinking":
                thought += block.thinking
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=json.dumps(block.input or {}),
                ))

        return LLMResponse(
            content=content,
            tool_calls=tool_calls or None,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
            finish_reason=response.stop_reason,
            model=response.model,
            thought=thought,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response from Claude.

        Tool-use blocks open with their id and name; their input arrives as
        ``input_json_delta`` fragments addressed by block index.
        """
        options = self._options(options)
        kwargs = self._request_kwargs(messages, options)
        kwargs["stream"] = True

        calls: dict[int, ToolCall] = {}
        usage = TokenUsage()
        finish_reason: str | None = None

        try:
            stream = await self.client.messages.create(**kwargs)

            async for event in stream:  # type: ignore
                if event.type == "message_start":
                    usage.prompt_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        calls[event.index] = ToolCall(id=block.id, name=block.name, arguments="")
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield StreamEvent(type="text", content=delta.text)
                    elif delta.type == "thinking_delta":
                        yield StreamEvent(type="thought", content=delta.thinking)
                    elif delta.type == "input_json_delta" and event.index in calls:
                        calls[event.index].arguments += delta.partial_json
                elif event.type == "message_delta":
                    finish_reason = event.delta.stop_reason
                    if event.usage:
                        usage.completion_tokens = event.usage.output_tokens

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise self._translate_error(e) from e

        if calls:
            for call in calls.values():
                call.arguments = call.arguments or "{}"
            yield StreamEvent(
                type="tool_calls",
                tool_calls=[calls[i] for i in sorted(calls)],
            )
        yield StreamEvent(type="done", usage=usage, finish_reason=finish_reason)

    async def list_models(self) -> list[str]:
        return [
            "claude-sonnet-4-20250514",
            "claude-opus-4-20250514",
            "claude-3-5-haiku-latest",
        ]

    async def aclose(self) -> None:
        await self.client.close()
