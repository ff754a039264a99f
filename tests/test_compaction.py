"""
Tests for context window management and compaction.
"""

from unittest.mock import AsyncMock

import pytest

from codecli.agent.compaction import (
    BASE_SYSTEM_PROMPT,
    SUMMARY_HEADER,
    ContextManager,
    estimate_tokens,
)
from codecli.config import Settings
from codecli.llm.anthropic import AnthropicLLM
from codecli.llm.base import LLMMessage, LLMResponse, ToolCall
from codecli.llm.limits import DEFAULT_CONTEXT_WINDOW
from codecli.llm.openai import to_openai_messages


@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, config_dir=tmp_path / "config")


def make_messages(count, size=1600):
    roles = ["user", "assistant"]
    return [LLMMessage(role=roles[i % 2], content=f"{i}:" + "x" * size) for i in range(count)]


def test_estimate_tokens_empty():
    """Test token estimation for empty text."""
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0


def test_estimate_tokens_rounds_up():
    """Test the estimate rounds partial tokens up."""
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("abcdef", chars_per_token=3) == 2


def test_context_window_by_model(settings):
    """Test the budget follows the model's context window."""
    assert ContextManager(settings).max_tokens == DEFAULT_CONTEXT_WINDOW

    context = ContextManager(settings, model="gpt-4o")
    assert context.max_tokens == 128000

    context.set_model("unknown-model")
    assert context.max_tokens == DEFAULT_CONTEXT_WINDOW


def test_estimate_usage(settings):
    """Test usage includes the system prompt and every message."""
    context = ContextManager(settings)
    context.system_prompt = "s" * 400
    messages = [LLMMessage(role="user", content="u" * 400)]

    usage = context.estimate_usage(messages)

    assert usage.used == 200
    assert usage.max == 8192
    assert usage.remaining == 7992
    assert usage.percentage == 2.4


def test_needs_compaction_threshold(settings):
    """Test compaction triggers at 75% of the window."""
    context = ContextManager(settings)

    assert context.needs_compaction(make_messages(4)) is False
    # 16 * ~400 tokens on an 8192 window is just over 75%
    assert context.needs_compaction(make_messages(16)) is True


@pytest.mark.asyncio
async def test_compact_keeps_recent_tail(settings):
    """Test compaction replaces history with a summary plus the last four messages."""
    context = ContextManager(settings)
    messages = make_messages(20)
    llm = AsyncMock()
    llm.chat.return_value = LLMResponse(content="  The user asked for x's.  ")

    compacted = await context.compact(messages, llm)

    assert len(compacted) == 5
    assert compacted[0].role == "system"
    assert compacted[0].content == f"{SUMMARY_HEADER}\nThe user asked for x's."
    assert compacted[1:] == messages[-4:]
    assert context.needs_compaction(compacted) is False

    prompt = llm.chat.call_args[0][0][0].content
    assert "0:" in prompt
    assert "16:" not in prompt
    options = llm.chat.call_args[0][1]
    assert options.max_tokens == settings.summary_max_tokens
    assert options.tools is None


@pytest.mark.asyncio
async def test_compact_failure_returns_same_list(settings):
    """Test a failed summary request leaves the history untouched."""
    context = ContextManager(settings)
    messages = make_messages(20)
    llm = AsyncMock()
    llm.chat.side_effect = RuntimeError("provider down")

    assert await context.compact(messages, llm) is messages


@pytest.mark.asyncio
async def test_compact_empty_summary_returns_same_list(settings):
    """Test an empty summary is treated as a failure."""
    context = ContextManager(settings)
    messages = make_messages(20)
    llm = AsyncMock()
    llm.chat.return_value = LLMResponse(content="   ")

    assert await context.compact(messages, llm) is messages


@pytest.mark.asyncio
async def test_compact_short_history_unchanged(settings):
    """Test there is nothing to summarize with too few older messages."""
    context = ContextManager(settings)
    messages = make_messages(7)
    llm = AsyncMock()

    assert await context.compact(messages, llm) is messages
    llm.chat.assert_not_awaited()


@pytest.mark.asyncio
async def test_compacted_tail_starting_with_tool_results_is_sendable(settings):
    """Test a tail that opens with tool results still converts to valid provider payloads."""
    context = ContextManager(settings)
    messages = [
        LLMMessage(role="user", content="read a"),
        LLMMessage(role="assistant", content="", tool_calls=[ToolCall(id="x", name="read_file")]),
        LLMMessage(role="tool", content="A", tool_call_id="x", name="read_file"),
        LLMMessage(role="assistant", content="a read"),
        LLMMessage(role="user", content="read b and c"),
        LLMMessage(role="assistant", content="", tool_calls=[
            ToolCall(id="b", name="read_file"),
            ToolCall(id="c", name="read_file"),
        ]),
        LLMMessage(role="tool", content="B", tool_call_id="b", name="read_file"),
        LLMMessage(role="tool", content="C", tool_call_id="c", name="read_file"),
        LLMMessage(role="assistant", content="both read"),
        LLMMessage(role="user", content="now what?"),
    ]
    llm = AsyncMock()
    llm.chat.return_value = LLMResponse(content="Files were read.")

    compacted = await context.compact(messages, llm)

    assert [m.role for m in compacted] == ["system", "tool", "tool", "assistant", "user"]

    anthropic_messages = AnthropicLLM(api_key="key")._convert_messages(compacted)
    assert [m["role"] for m in anthropic_messages] == ["user", "assistant", "user"]
    assert anthropic_messages[0]["content"] == "Tool result (read_file): B\n\nTool result (read_file): C"

    openai_messages = to_openai_messages(compacted, system_prompt="sys")
    assert [m["role"] for m in openai_messages] == ["system", "system", "user", "assistant", "user"]


def test_load_project_context(settings, tmp_path):
    """Test project and global memory files are combined."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "CODECLI.md").write_text("Use tabs.")
    settings.config_dir.mkdir(parents=True)
    (settings.config_dir / "CODECLI.md").write_text("Be brief.")

    context = ContextManager(settings, cwd=project)
    loaded = context.load_project_context()

    assert loaded == (
        "# Project Context (CODECLI.md)\nUse tabs."
        "\n\n---\n\n"
        "# Global Memory\nBe brief."
    )


def test_load_project_context_alternate_name(settings, tmp_path):
    """Test the dotfile variant is picked up."""
    (tmp_path / ".codecli.md").write_text("Prefer pytest.")

    context = ContextManager(settings, cwd=tmp_path)

    assert "Prefer pytest." in context.load_project_context()


def test_build_system_prompt(settings, tmp_path):
    """Test the system prompt assembly."""
    (tmp_path / "CODECLI.md").write_text("Use tabs.")
    context = ContextManager(settings, cwd=tmp_path)
    context.load_project_context()

    prompt = context.build_system_prompt(custom="Answer in French.", append="Extra rule.")

    assert prompt.startswith(BASE_SYSTEM_PROMPT)
    assert f"## Current Working Directory\n{tmp_path}" in prompt
    assert "Use tabs." in prompt
    assert "## Custom Instructions\nAnswer in French." in prompt
    assert prompt.endswith("Extra rule.")
    assert context.system_prompt == prompt
