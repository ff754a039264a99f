"""
Context window management and conversation compaction.

Token usage is estimated with a fixed characters-per-token ratio summed
over the system prompt and every message; vendor tokenizers are not
consulted. Once the estimate reaches the compaction threshold of the
active model's window, everything but the most recent messages is
replaced by a single summary written by the model itself.

Compaction is best-effort: if the summary request fails, or comes back
empty, the caller gets its own list object back untouched.
"""

import math
import platform
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..config import Settings
from ..llm.base import BaseLLM, ChatOptions, LLMMessage
from ..llm.limits import DEFAULT_CONTEXT_WINDOW, get_context_window

logger = structlog.get_logger()

# Approximate characters per token (policy knob, not a tokenizer)
CHARS_PER_TOKEN = 4

PROJECT_CONTEXT_FILES = ("CODECLI.md", ".codecli.md", "codecli.md")

SUMMARY_HEADER = "## Previous Conversation Summary"

BASE_SYSTEM_PROMPT = """You are CodeCLI, an AI-powered coding assistant running in the terminal. You are an expert software engineer helping the user with coding tasks.

## Your Capabilities
- Read, write, and edit files in the user's project
- Execute shell commands
- Search code and files
- Manage project context and memory

## Guidelines
- Be concise but thorough in explanations
- Ask for confirmation before destructive operations
- Use the available tools to complete tasks
- When writing code, follow the project's existing style and conventions
- Provide clear explanations of what you're doing and why"""


def estimate_tokens(text: str | None, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate the token count of a piece of text."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


@dataclass
class ContextUsage:
    """Estimated context window usage."""

    used: int
    max: int
    remaining: int
    percentage: float


class ContextManager:
    """Owns the system prompt and the context budget of the conversation."""

    def __init__(self, settings: Settings, model: str | None = None, cwd: Path | None = None):
        self.settings = settings
        self.cwd = cwd or Path.cwd()
        self.max_tokens = get_context_window(model) if model else DEFAULT_CONTEXT_WINDOW
        self.system_prompt = ""
        self.project_context = ""

    def set_model(self, model: str) -> None:
        """Size the budget for a model's context window."""
        self.max_tokens = get_context_window(model)

    def load_project_context(self, cwd: Path | None = None) -> str:
        """Load CODECLI.md from the project, then the global memory file."""
        cwd = cwd or self.cwd
        contexts = []

        for filename in PROJECT_CONTEXT_FILES:
            path = cwd / filename
            if path.is_file():
                contexts.append(f"# Project Context ({filename})\n{path.read_text(encoding='utf-8')}")
                break

        for filename in PROJECT_CONTEXT_FILES:
            path = self.settings.config_dir / filename
            if path.is_file():
                contexts.append(f"# Global Memory\n{path.read_text(encoding='utf-8')}")
                break

        self.project_context = "\n\n---\n\n".join(contexts)
        if self.project_context:
            logger.debug("Loaded project context", chars=len(self.project_context))
        return self.project_context

    def build_system_prompt(self, custom: str | None = None, append: str | None = None) -> str:
        """Assemble the system prompt from the base prompt, project context and overrides."""
        parts = [
            BASE_SYSTEM_PROMPT,
            f"## Current Working Directory\n{self.cwd}",
            f"## Operating System\n{platform.system()} ({platform.machine()})",
        ]
        if self.project_context:
            parts.append(self.project_context)
        if custom:
            parts.append(f"## Custom Instructions\n{custom}")
        if append:
            parts.append(append)

        self.system_prompt = "\n\n".join(parts)
        return self.system_prompt

    def estimate_usage(self, messages: list[LLMMessage]) -> ContextUsage:
        """Estimate how much of the window the system prompt and messages use."""
        ratio = self.settings.chars_per_token
        used = estimate_tokens(self.system_prompt, ratio)
        used += sum(estimate_tokens(m.text, ratio) for m in messages)

        return ContextUsage(
            used=used,
            max=self.max_tokens,
            remaining=self.max_tokens - used,
            percentage=round(used / self.max_tokens * 100, 1),
        )

    def needs_compaction(self, messages: list[LLMMessage]) -> bool:
        usage = self.estimate_usage(messages)
        return usage.percentage >= self.settings.compaction_threshold * 100

    async def compact(self, messages: list[LLMMessage], llm: BaseLLM) -> list[LLMMessage]:
        """Summarize all but the most recent messages.

        Returns ``messages`` itself when there is too little history to be
        worth summarizing or when the summary request fails.
        """
        keep = self.settings.keep_recent_messages
        recent = messages[-keep:] if keep else []
        older = messages[:-keep] if keep else list(messages)

        if len(older) < keep:
            return messages

        transcript = "\n\n".join(f"{m.role}: {m.text}" for m in older)
        prompt = (
            "Summarize the following conversation concisely, preserving key decisions, "
            f"code changes, and context:\n\n{transcript}"
        )

        logger.info("Compacting conversation", message_count=len(messages), summarized=len(older))

        try:
            response = await llm.chat(
                [LLMMessage(role="user", content=prompt)],
                ChatOptions(
                    max_tokens=self.settings.summary_max_tokens,
                    temperature=self.settings.temperature,
                ),
            )
        except Exception as e:
            logger.error("Compaction summarization failed", error=str(e))
            return messages

        summary = (response.content or "").strip()
        if not summary:
            logger.warning("Compaction produced an empty summary")
            return messages

        compacted = [LLMMessage(role="system", content=f"{SUMMARY_HEADER}\n{summary}"), *recent]
        logger.info("Compaction complete", original=len(messages), compacted=len(compacted))
        return compacted
