"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import httpx
import openai
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
    pair_tool_results,
)

logger = structlog.get_logger()


def to_openai_messages(
    messages: list[LLMMessage], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    """Convert LLMMessages to the OpenAI chat-completions wire format."""
    converted: list[dict[str, Any]] = []

    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})

    for msg in pair_tool_results(messages):
        if msg.role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.text,
            })
        elif msg.role == "assistant" and msg.tool_calls:
            converted.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ],
            })
        else:
            converted.append({"role": msg.role, "content": msg.content})

    return converted


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        http_client: httpx.AsyncClient | None = None,
        name: str = "openai",
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self._name = name
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=http_client,
        )

    @property
    def provider_name(self) -> str:
        return self._name

    def _request_kwargs(
        self, messages: list[LLMMessage], options: ChatOptions
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": to_openai_messages(messages, options.system_prompt),
        }
        if options.tools:
            kwargs["tools"] = self.format_tools(options.tools)
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _translate_error(self, e: openai.APIError) -> ProviderError:
        if isinstance(e, openai.APIStatusError):
            return ProviderError(self.provider_name, e.status_code, e.response.text)
        return ProviderError(self.provider_name, None, str(e))

    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        options = self._options(options)

        try:
            response = await self.client.chat.completions.create(
                **self._request_kwargs(messages, options)
            )
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise self._translate_error(e) from e

        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in message.tool_calls or []
        ]

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls or None,
            usage=usage,
            finish_reason=choice.finish_reason,
            model=response.model,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response from GPT.

        Tool-call fragments arrive keyed by their position in the call list:
        the first fragment for an index carries the id and name, later ones
        only extend the argument string.
        """
        options = self._options(options)
        kwargs = self._request_kwargs(messages, options)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        calls: dict[int, ToolCall] = {}
        usage: TokenUsage | None = None
        finish_reason: str | None = None

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if chunk.usage:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        completion_tokens=chunk.usage.completion_tokens,
                    )
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    yield StreamEvent(type="text", content=delta.content)

                for tc in delta.tool_calls or []:
                    call = calls.get(tc.index)
                    if call is None:
                        call = calls[tc.index] = ToolCall(id="", name="", arguments="")
                    if tc.id:
                        call.id = tc.id
                    if tc.function and tc.function.name:
                        call.name = tc.function.name
                    if tc.function and tc.function.arguments:
                        call.arguments += tc.function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
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
        try:
            page = await self.client.models.list()
        except openai.APIError as e:
            raise self._translate_error(e) from e
        return sorted(m.id for m in page.data)

    async def aclose(self) -> None:
        await self.client.close()
