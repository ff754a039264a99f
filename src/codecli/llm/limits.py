"""
Known context window sizes per model, used for auto-compaction decisions.
"""

DEFAULT_CONTEXT_WINDOW = 8192

MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    # Azure OpenAI / OpenAI
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4.1": 1_047_576,
    "gpt-4-turbo": 128_000,
    "gpt-4-turbo-preview": 128_000,
    "gpt-4": 8192,
    "gpt-4-32k": 32_768,
    "gpt-3.5-turbo": 16_385,
    "gpt-35-turbo": 16_385,
    "gpt-3.5-turbo-16k": 16_385,
    "o1": 200_000,
    "o1-mini": 128_000,
    "o1-preview": 128_000,
    "o3-mini": 200_000,
    # Ollama
    "llama3.2": 131_072,
    "llama3.1": 131_072,
    "llama3": 8192,
    "llama2": 4096,
    "mistral": 32_768,
    "mixtral": 32_768,
    "codellama": 16_384,
    "deepseek-coder": 16_384,
    "deepseek-r1": 131_072,
    "phi3": 128_000,
    "phi4": 16_384,
    "qwen2.5": 131_072,
    "qwen2.5-coder": 131_072,
    "qwen3": 262_144,
    "qwen3-coder": 262_144,
    "gemma2": 8192,
    "command-r": 131_072,
    # Gemini
    "gemini-2.0-flash": 1_048_576,
    "gemini-2.0-flash-lite": 1_048_576,
    "gemini-2.5-flash": 1_048_576,
    "gemini-2.5-pro": 1_048_576,
    "gemini-3-flash": 1_048_576,
    "gemini-1.5-pro": 2_097_152,
    "gemini-1.5-flash": 1_048_576,
    "gemini-1.5-flash-8b": 1_048_576,
    "gemini-1.0-pro": 32_768,
    "gemini-pro": 32_768,
    # Anthropic
    "claude-3": 200_000,
    "claude-sonnet-4": 200_000,
    "claude-opus-4": 200_000,
    "anthropic/claude": 200_000,
}


def get_context_window(model: str) -> int:
    """Get the context window for a model.

    Exact match first, then the longest known prefix, then a conservative
    default for unknown models.
    """
    if model in MODEL_CONTEXT_WINDOWS:
        return MODEL_CONTEXT_WINDOWS[model]

    best = ""
    for key in MODEL_CONTEXT_WINDOWS:
        if model.startswith(key) and len(key) > len(best):
            best = key

    if best:
        return MODEL_CONTEXT_WINDOWS[best]
    return DEFAULT_CONTEXT_WINDOW


def format_context_window(tokens: int) -> str:
    """Human-readable window size, e.g. ``128K`` or ``1.0M``."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.0f}K"
    return str(tokens)
