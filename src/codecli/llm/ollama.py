"""
Ollama provider (local models over the ``/api/chat`` endpoint).

Ollama streams newline-delimited JSON objects. Tool calls arrive as
complete objects with already-decoded arguments, so each frame's calls are
collected and emitted together once the stream ends.
"""

import json
import uuid
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
    pair_tool_results,
)

logger = structlog.get_logger()

DEFAULT_MODELS = ["llama3.2", "codellama", "mistral", "deepseek-coder"]


def _usage(data: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        prompt_tokens=data.get("prompt_eval_count") or 0,
        completion_tokens=data.get("eval_count") or 0,
    )


def _tool_calls(raw: list[dict[str, Any]] | None) -> list[ToolCall]:
    calls = []
    for tc in raw or []:
        function = tc.get("function") or {}
        arguments = function.get("arguments") or {}
        calls.append(ToolCall(
            id=f"call_{uuid.uuid4().hex[:12]}",
            name=function.get("name") or "",
            arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
        ))
    return calls


class OllamaLLM(BaseLLM):
    """Ollama local model provider."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "llama3.2",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, model, base_url or "http://localhost:11434", max_tokens, temperature)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def host(self) -> str:
        return (self.base_url or "").rstrip("/")

    def _convert_messages(
        self, messages: list[LLMMessage], system_prompt: str | None
    ) -> list[dict[str, Any]]:
        """Convert LLMMessages to Ollama format.

        Ollama expects tool-call arguments as objects and images as a
        separate list of base64 strings.
        """
        converted: list[dict[str, Any]] = []
        if system_prompt:
            converted.append({"role": "system", "content": system_prompt})

        for msg in pair_tool_results(messages):
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "content": msg.text,
                    "tool_call_id": msg.tool_call_id,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.text,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": tc.parse_arguments(),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                })
            elif isinstance(msg.content, list):
                text_parts = []
                images = []
                for part in msg.content:
                    if part.get("type") == "text":
                        text_parts.append(part.get("text", ""))
                    elif part.get("type") == "image_url":
                        url = part["image_url"]["url"]
                        images.append(url.split("base64,", 1)[-1])
                entry: dict[str, Any] = {"role": msg.role, "content": "\n".join(text_parts)}
                if images:
                    entry["images"] = images
                converted.append(entry)
            else:
                converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _body(
        self, messages: list[LLMMessage], options: ChatOptions, stream: bool
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages, options.system_prompt),
            "stream": stream,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        if options.tools:
            body["tools"] = self.format_tools(options.tools)
        return body

    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        options = self._options(options)

        try:
            response = await self._client.post(
                f"{self.host}/api/chat",
                json=self._body(messages, options, stream=False),
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_name, None, str(e)) from e

        if response.is_error:
            raise ProviderError(self.provider_name, response.status_code, response.text)

        data = response.json()
        message = data.get("message") or {}

        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=_tool_calls(message.get("tool_calls")) or None,
            usage=_usage(data),
            finish_reason=data.get("done_reason") or "stop",
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
                f"{self.host}/api/chat",
                json=self._body(messages, options, stream=True),
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(self.provider_name, response.status_code, body)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError as e:
                        logger.debug("Ollama parse error", error=str(e))
                        continue

                    message = data.get("message") or {}
                    if message.get("content"):
                        yield StreamEvent(type="text", content=message["content"])
                    if message.get("thinking"):
                        yield StreamEvent(type="thought", content=message["thinking"])

                    tool_calls.extend(_tool_calls(message.get("tool_calls")))

                    if data.get("done"):
                        usage = _usage(data)
                        finish_reason = data.get("done_reason") or "stop"
                        break

        except httpx.HTTPError as e:
            logger.error("Ollama streaming error", error=str(e))
            raise ProviderError(self.provider_name, None, str(e)) from e

        if tool_calls:
            yield StreamEvent(type="tool_calls", tool_calls=tool_calls)
        yield StreamEvent(type="done", usage=usage, finish_reason=finish_reason)

    async def list_models(self) -> list[str]:
        try:
            response = await self._client.get(f"{self.host}/api/tags")
        except httpx.HTTPError as e:
            logger.warning("Could not reach Ollama, using default model list", error=str(e))
            return list(DEFAULT_MODELS)

        if response.is_error:
            return list(DEFAULT_MODELS)
        return [m["name"] for m in response.json().get("models", [])]

    async def aclose(self) -> None:
        await self._client.aclose()
