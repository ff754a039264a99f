"""
LLM factory for creating provider instances.

Supports: Azure OpenAI, Ollama, Google Gemini, OpenAI GPT, Anthropic Claude,
OpenRouter.
"""

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .azure_openai import AzureOpenAILLM
from .base import BaseLLM
from .gemini import GeminiLLM
from .ollama import OllamaLLM
from .openai import OpenAILLM

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - azure-openai -> AzureOpenAILLM (REST, SSE streaming)
    - ollama -> OllamaLLM (REST, NDJSON streaming)
    - gemini -> GeminiLLM (REST, SSE streaming)
    - openai -> OpenAILLM (native OpenAI SDK)
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider == "azure-openai":
        return AzureOpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            api_version=config.api_version or "2024-12-01-preview",
            timeout=config.timeout,
        )
    elif provider == "ollama":
        return OllamaLLM(
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.timeout,
        )
    elif provider == "gemini":
        return GeminiLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.timeout,
        )
    elif provider == "openai":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "openrouter":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url or OPENROUTER_BASE_URL,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            name="openrouter",
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
