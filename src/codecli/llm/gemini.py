"""
Google Gemini LLM provider over the Generative Language REST API.

Gemini does not speak the OpenAI tool-calling protocol, so this adapter
translates at the boundary:

- 'assistant' becomes 'model', tool results become ``functionResponse``
  parts, tool calls become ``functionCall`` parts
- JSON-schema types are upper-cased into Gemini's schema enum
- system messages are folded into ``systemInstruction``
- reasoning parts (``thought: true``) are surfaced as ``thought`` events,
  and ``thoughtSignature`` is kept on each tool call so it can be echoed
  back on the next request
"""

import json
import re
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
    ToolDefinition,
    pair_tool_results,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DATA_URL = re.compile(r"^data:(.*?);base64,(.*)$", re.DOTALL)

SSE_PREFIX = "data: "


def convert_schema(schema: dict[str, Any] | None) -> dict[str, Any] | None:
    """Convert a JSON schema into Gemini's OpenAPI-subset schema."""
    if not schema:
        return None

    converted: dict[str, Any] = {}
    if "type" in schema:
        converted["type"] = str(schema["type"]).upper()
    if "description" in schema:
        converted["description"] = schema["description"]
    if "properties" in schema:
        converted["properties"] = {
            key: convert_schema(value) for key, value in schema["properties"].items()
        }
    if schema.get("required"):
        converted["required"] = schema["required"]
    if "items" in schema:
        converted["items"] = convert_schema(schema["items"])
    if "enum" in schema:
        converted["enum"] = schema["enum"]
    return converted


def _usage(data: dict[str, Any]) -> TokenUsage | None:
    meta = data.get("usageMetadata")
    if not meta:
        return None
    return TokenUsage(
        prompt_tokens=meta.get("promptTokenCount") or 0,
        completion_tokens=meta.get("candidatesTokenCount") or 0,
    )


def _tool_calls(parts: list[dict[str, Any]]) -> list[ToolCall]:
    calls = []
    for part in parts:
        fc = part.get("functionCall")
        if not fc:
            continue
        calls.append(ToolCall(
            id=f"call_{uuid.uuid4().hex[:12]}",
            name=fc.get("name") or "",
            arguments=json.dumps(fc.get("args") or {}),
            thought_signature=part.get("thoughtSignature"),
        ))
    return calls


class GeminiLLM(BaseLLM):
    """Google Gemini LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, model, base_url or DEFAULT_BASE_URL, max_tokens, temperature)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def provider_name(self) -> str:
        return "gemini"

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Gemini function declarations."""
        declarations = []
        for tool in tools:
            declaration: dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
            }
            params = convert_schema(tool.parameters)
            # Gemini rejects an OBJECT schema with no properties
            if params and params.get("properties"):
                declaration["parameters"] = params
            declarations.append(declaration)
        return [{"functionDeclarations": declarations}]

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Gemini contents.

        Consecutive tool results are merged into one turn so the number of
        function responses matches the preceding function calls.
        """
        converted: list[dict[str, Any]] = []

        for msg in pair_tool_results(messages):
            if msg.role == "system":
                continue

            if msg.role == "tool":
                part = {
                    "functionResponse": {
                        "name": msg.name or "tool",
                        "response": {"name": msg.name or "tool", "content": msg.text},
                    }
                }
                previous = converted[-1] if converted else None
                if previous and previous.get("_tool_results"):
                    previous["parts"].append(part)
                else:
                    converted.append({"role": "user", "parts": [part], "_tool_results": True})
                continue

            role = "model" if msg.role == "assistant" else "user"

            if msg.tool_calls:
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"text": msg.text})
                for tc in msg.tool_calls:
                    part = {"functionCall": {"name": tc.name, "args": tc.parse_arguments()}}
                    if tc.thought_signature:
                        part["thoughtSignature"] = tc.thought_signature
                    parts.append(part)
                converted.append({"role": role, "parts": parts})
                continue

            if isinstance(msg.content, list):
                parts = []
                for item in msg.content:
                    if item.get("type") == "text":
                        parts.append({"text": item.get("text", "")})
                    elif item.get("type") == "image_url":
                        match = DATA_URL.match(item["image_url"]["url"])
                        if match:
                            parts.append({
                                "inlineData": {"mimeType": match.group(1), "data": match.group(2)}
                            })
                converted.append({"role": role, "parts": parts})
            else:
                converted.append({"role": role, "parts": [{"text": msg.content or ""}]})

        for entry in converted:
            entry.pop("_tool_results", None)

        if not converted:
            converted.append({"role": "user", "parts": [{"text": ""}]})

        return converted

    def _body(self, messages: list[LLMMessage], options: ChatOptions) -> dict[str, Any]:
        system_parts = [options.system_prompt] if options.system_prompt else []
        system_parts.extend(m.text for m in messages if m.role == "system" and m.content)

        body: dict[str, Any] = {
            "contents": self._convert_messages(messages),
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if options.tools:
            body["tools"] = self.format_tools(options.tools)
        return body

    def _url(self, method: str) -> str:
        return f"{(self.base_url or '').rstrip('/')}/models/{self.model}:{method}"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

    async def chat(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> LLMResponse:
        """Generate a response from Gemini."""
        options = self._options(options)

        try:
            response = await self._client.post(
                self._url("generateContent"),
                headers=self._headers(),
                json=self._body(messages, options),
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_name, None, str(e)) from e

        if response.is_error:
            raise ProviderError(self.provider_name, response.status_code, response.text)

        data = response.json()
        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        parts = (candidate.get("content") or {}).get("parts") or []

        text = "".join(p["text"] for p in parts if p.get("text") and not p.get("thought"))
        thought = "".join(p["text"] for p in parts if p.get("text") and p.get("thought"))

        return LLMResponse(
            content=text,
            tool_calls=_tool_calls(parts) or None,
            usage=_usage(data) or TokenUsage(),
            finish_reason=candidate.get("finishReason", "STOP").lower(),
            model=data.get("modelVersion", self.model),
            thought=thought,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response from Gemini."""
        options = self._options(options)
        tool_calls: list[ToolCall] = []
        usage: TokenUsage | None = None
        finish_reason: str | None = None

        try:
            async with self._client.stream(
                "POST",
                self._url("streamGenerateContent"),
                params={"alt": "sse"},
                headers=self._headers(),
                json=self._body(messages, options),
            ) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(self.provider_name, response.status_code, body)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith(SSE_PREFIX):
                        continue
                    try:
                        data = json.loads(line[len(SSE_PREFIX):])
                    except ValueError as e:
                        logger.debug("Gemini SSE parse error", error=str(e))
                        continue

                    usage = _usage(data) or usage
                    candidates = data.get("candidates") or []
                    if not candidates:
                        continue

                    candidate = candidates[0]
                    parts = (candidate.get("content") or {}).get("parts") or []
                    for part in parts:
                        if part.get("text"):
                            kind = "thought" if part.get("thought") else "text"
                            yield StreamEvent(type=kind, content=part["text"])

                    tool_calls.extend(_tool_calls(parts))
                    if candidate.get("finishReason"):
                        finish_reason = candidate["finishReason"].lower()

        except httpx.HTTPError as e:
            logger.error("Gemini streaming error", error=str(e))
            raise ProviderError(self.provider_name, None, str(e)) from e

        if tool_calls:
            yield StreamEvent(type="tool_calls", tool_calls=tool_calls)
        yield StreamEvent(type="done", usage=usage, finish_reason=finish_reason or "stop")

    async def list_models(self) -> list[str]:
        return [
            "gemini-2.0-flash",
            "gemini-2.0-flash-lite",
            "gemini-2.5-flash",
            "gemini-2.5-pro",
            "gemini-3-flash-preview",
            "gemini-1.5-pro",
            "gemini-1.5-flash",
        ]

    async def aclose(self) -> None:
        await self._client.aclose()
