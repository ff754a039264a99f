"""
LLM module for multi-provider AI model support.

Providers:
- Azure OpenAI (REST)
- Ollama (REST, local models)
- Google Gemini (REST)
- OpenAI GPT (native SDK)
- Anthropic Claude (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

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
)
from .anthropic import AnthropicLLM
from .azure_openai import AzureOpenAILLM
from .gemini import GeminiLLM
from .ollama import OllamaLLM
from .openai import OpenAILLM
from .factory import create_llm
from .limits import format_context_window, get_context_window

__all__ = [
    "BaseLLM",
    "ChatOptions",
    "LLMMessage",
    "LLMResponse",
    "ProviderError",
    "StreamEvent",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "AzureOpenAILLM",
    "GeminiLLM",
    "OllamaLLM",
    "OpenAILLM",
    "create_llm",
    "format_context_window",
    "get_context_window",
]
