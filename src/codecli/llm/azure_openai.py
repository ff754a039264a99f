"""
Azure OpenAI provider over plain HTTP.

Streaming responses are server-sent events (``data: {...}`` lines ending
with ``data: [DONE]``). Tool calls arrive as deltas: the first delta of a
call carries its id and name, every later delta without an id appends
argument text to the most recent call.
"""

import json
from typing import Any, AsyncIterator

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
)
from .openai import to_openai_messages

logger = structlog.get_logger()

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


def _usage(data: dict[str, Any] | None) -> TokenUsage | None:
    if not data:
        return None
    return TokenUsage(
        prompt_tokens=data.get("prompt_tokens") or 0,
        completion_tokens=data.get("completion_tokens") or 0,
    )


class AzureOpenAILLM(BaseLLM):
    """Azure OpenAI deployment provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        api_version: str = "2024-12-01-preview",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.api_version = api_version
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def provider_name(self) -> str:
        return "azure-openai"

    @property
    def deployment(self) -> str:
        return self.model

    def _url(self) -> str:
        base = (self.base_url or "").rstrip("/")
        return (
            f"{base}/openai/deployments/{self.deployment}/chat/completions"
            f"?api-version={self.api_version}"
        )

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self.api_key}

    def _body(
        self, messages: list[LLMMessage], options: ChatOptions, stream: bool
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": to_openai_messages(messages, options.system_prompt),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": stream,
        }
        if options.tools:
            body["tools"] = self.format_tools(options.tools)
            body["tool_choice"] = "auto"
        return body

    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        options = self._options(options)

        try:
            response = await self._client.post(
                self._url(),
                headers=self._headers(),
                json=self._body(messages, options, stream=False),
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_name, None, str(e)) from e

        if response.is_error:
            raise ProviderError(self.provider_name, response.status_code, response.text)

        data = response.json()
        choice = data["choices"][0]
        message = choice.get("message") or {}

        tool_calls = [
            ToolCall(
                id=tc["id"],
                name=tc["function"]["name"],
                arguments=tc["function"].get("arguments") or "{}",
            )
            for tc in message.get("tool_calls") or []
        ]

        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls or None,
            usage=_usage(data.get("usage")) or TokenUsage(),
            finish_reason=choice.get("finish_reason"),
            model=data.get("model", self.model),
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        options = self._options(options)
        tool_calls: list[ToolCall] = []
        usage: TokenUsage | None = None
        finish_reason: str | None = None

        try:
            async with self._client.stream(
                "POST",
                self._url(),
                headers=self._headers(),
                json=self._body(messages, options, stream=True),
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(self.provider_name, response.status_code, body)

                # aiter_lines keeps partial lines buffered across network reads
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith(SSE_PREFIX):
                        continue
                    payload = line[len(SSE_PREFIX):]
                    if payload == SSE_DONE:
                        break

                    try:
                        data = json.loads(payload)
                    except ValueError as e:
                        logger.debug("SSE parse error", error=str(e))
                        continue

                    usage = _usage(data.get("usage")) or usage
                    choices = data.get("choices") or []
                    if not choices:
                        continue

                    delta = choices[0].get("delta") or {}
                    if delta.get("content"):
                        yield StreamEvent(type="text", content=delta["content"])

                    for tc in delta.get("tool_calls") or []:
                        function = tc.get("function") or {}
                        if tc.get("id"):
                            tool_calls.append(ToolCall(
                                id=tc["id"],
                                name=function.get("name") or "",
                                arguments=function.get("arguments") or "",
                            ))
                        elif tool_calls and function.get("arguments"):
                            tool_calls[-1].arguments += function["arguments"]

                    if choices[0].get("finish_reason"):
                        finish_reason = choices[0]["finish_reason"]

        except httpx.HTTPError as e:
            logger.error("Azure OpenAI streaming error", error=str(e))
            raise ProviderError(self.provider_name, None, str(e)) from e

        if tool_calls:
            for call in tool_calls:
                call.arguments = call.arguments or "{}"
            yield StreamEvent(type="tool_calls", tool_calls=tool_calls)
        yield StreamEvent(type="done", usage=usage, finish_reason=finish_reason)

    async def list_models(self) -> list[str]:
        return ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"]

    async def aclose(self) -> None:
        await self._client.aclose()
