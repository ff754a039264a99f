"""
Tests for the application layer: headless runs, the REPL and the CLI.
"""

import base64
import io
import json
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console

from codecli.app import CodeCLI, build_user_content
from codecli.cli import build_parser, main
from codecli.config import Settings
from codecli.llm.base import BaseLLM, LLMResponse, StreamEvent, TokenUsage
from codecli.repl import Repl
from codecli.tools.permissions import PermissionChoice


class EchoLLM(BaseLLM):
    """Provider double that answers every request with fixed text."""

    def __init__(self, reply="All done.", fail=False):
        super().__init__(api_key="", model="gpt-4o")
        self.reply = reply
        self.fail = fail
        self.received = []

    @property
    def provider_name(self) -> str:
        return "echo"

    async def chat(self, messages, options=None):
        if self.fail:
            raise RuntimeError("provider down")
        return LLMResponse(content=self.reply)

    async def stream(self, messages, options=None):
        self.received.append(list(messages))
        if self.fail:
            raise RuntimeError("stream down")
        yield StreamEvent(type="text", content=self.reply)
        yield StreamEvent(type="done", usage=TokenUsage(prompt_tokens=12, completion_tokens=3))


def make_app(tmp_path, llm=None, choice=PermissionChoice.DENY, **kwargs):
    settings = Settings(_env_file=None, config_dir=tmp_path / "config")
    console = Console(file=io.StringIO(), width=120)
    app = CodeCLI(
        settings=settings,
        llm=llm or EchoLLM(),
        prompter=AsyncMock(return_value=choice),
        console=console,
        cwd=tmp_path,
        **kwargs,
    )
    return app, console


def output(console):
    return console.file.getvalue()


def test_build_user_content_text_only():
    """Test a prompt without images stays plain text."""
    assert build_user_content("hello") == "hello"


def test_build_user_content_with_image(tmp_path):
    """Test images are attached as base64 data URLs."""
    image = tmp_path / "shot.png"
    image.write_bytes(b"\x89PNG")

    content = build_user_content("what is this?", [image])

    assert content[0] == {"type": "text", "text": "what is this?"}
    url = content[1]["image_url"]["url"]
    assert url == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()


class TestHeadless:
    """Tests for single-prompt runs."""

    @pytest.mark.asyncio
    async def test_text_output(self, tmp_path):
        """Test text output is the final answer."""
        app, _ = make_app(tmp_path)

        assert await app.run_headless("hi") == "All done."

    @pytest.mark.asyncio
    async def test_json_envelope(self, tmp_path):
        """Test the JSON envelope carries content, usage and session id."""
        app, _ = make_app(tmp_path)

        envelope = json.loads(await app.run_headless("hi", output_format="json"))

        assert envelope["content"] == "All done."
        assert envelope["usage"] == {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}
        assert envelope["session"] == app.sessions.current.id
        assert "error" not in envelope
        assert (tmp_path / "config" / "sessions" / f"{envelope['session']}.json").exists()

    @pytest.mark.asyncio
    async def test_json_envelope_reports_error(self, tmp_path):
        """Test a failed run puts the error in the envelope."""
        app, _ = make_app(tmp_path, llm=EchoLLM(fail=True))

        envelope = json.loads(await app.run_headless("hi", output_format="json"))

        assert envelope["error"] == "provider down"
        assert app.last_result.error == "provider down"

    @pytest.mark.asyncio
    async def test_system_prompt_includes_project_context(self, tmp_path):
        """Test CODECLI.md and custom instructions reach the model."""
        (tmp_path / "CODECLI.md").write_text("Always use tabs.")
        llm = EchoLLM()
        app, _ = make_app(tmp_path, llm=llm, system_prompt="Answer tersely.")

        await app.run_headless("hi")

        assert "Always use tabs." in app.context.system_prompt
        assert "Answer tersely." in app.context.system_prompt

    def test_god_mode_flag(self, tmp_path):
        """Test --god-mode binds to the working directory."""
        app, _ = make_app(tmp_path, god_mode=True)

        assert app.permissions.god_mode is True
        assert app.runtime.god_mode_root == tmp_path.resolve()
        assert app.agent.max_iterations == 1000


class TestRepl:
    """Tests for the interactive loop."""

    @pytest.mark.asyncio
    async def test_exit_saves_session(self, tmp_path):
        """Test exit ends the loop and saves the session."""
        app, console = make_app(tmp_path)
        app.sessions.create("echo")
        repl = Repl(app, console=console, read_input=AsyncMock(side_effect=["hello", "exit"]))

        await repl.run()

        assert repl.running is False
        assert [m.role for m in app.sessions.messages] == ["user", "assistant"]
        assert "All done." in output(console)
        assert "15 tokens used" in output(console)
        assert "Goodbye!" in output(console)
        assert (tmp_path / "config" / "sessions" / f"{app.sessions.current.id}.json").exists()

    @pytest.mark.asyncio
    async def test_end_of_input_stops(self, tmp_path):
        """Test EOF on input ends the loop cleanly."""
        app, console = make_app(tmp_path)
        repl = Repl(app, console=console, read_input=AsyncMock(side_effect=EOFError()))

        await repl.run()

        assert "Goodbye!" in output(console)

    @pytest.mark.asyncio
    async def test_shell_escape_denied(self, tmp_path):
        """Test a denied !command is not run."""
        app, console = make_app(tmp_path, choice=PermissionChoice.DENY)
        repl = Repl(app, console=console, read_input=AsyncMock(side_effect=["!touch made.txt", "quit"]))

        await repl.run()

        assert "Permission denied" in output(console)
        assert not (tmp_path / "made.txt").exists()

    @pytest.mark.asyncio
    async def test_shell_escape_runs_command(self, tmp_path):
        """Test an approved !command runs in the working directory."""
        app, console = make_app(tmp_path, choice=PermissionChoice.ONCE)
        repl = Repl(app, console=console, read_input=AsyncMock(side_effect=["!touch made.txt", "quit"]))

        await repl.run()

        assert (tmp_path / "made.txt").exists()

    @pytest.mark.asyncio
    async def test_turn_error_keeps_loop_running(self, tmp_path):
        """Test an exception in a turn is reported and the loop continues."""
        app, console = make_app(tmp_path)
        app.agent.run_turn = AsyncMock(side_effect=RuntimeError("kaboom"))
        inputs = AsyncMock(side_effect=["first", "exit"])
        repl = Repl(app, console=console, read_input=inputs)

        await repl.run()

        assert "kaboom" in output(console)
        assert inputs.await_count == 2

    @pytest.mark.asyncio
    async def test_turn_failure_is_shown(self, tmp_path):
        """Test a provider failure reported on the turn result is printed."""
        app, console = make_app(tmp_path, llm=EchoLLM(fail=True))
        repl = Repl(app, console=console, read_input=AsyncMock(side_effect=["hello", "exit"]))

        await repl.run()

        assert "provider down" in output(console)


@pytest.mark.asyncio
async def test_start_interactive_resumes_local_session(tmp_path):
    """Test the REPL picks up the session recorded in the working directory."""
    app, _ = make_app(tmp_path)
    await app.run_headless("first question")
    session_id = app.sessions.current.id

    resumed, console = make_app(tmp_path)
    with patch("codecli.repl.Repl.run", new=AsyncMock()):
        await resumed.start_interactive()

    assert resumed.sessions.current.id == session_id
    assert resumed.sessions.message_count == 2
    assert "Resumed session" in output(console)


class TestCli:
    """Tests for argument parsing and the entry point."""

    def test_parser(self):
        """Test the supported flags."""
        args = build_parser().parse_args([
            "fix the bug", "-p", "ollama", "-m", "qwen3", "--headless",
            "--output-format", "json", "--god-mode", "--image", "a.png", "--image", "b.png",
        ])

        assert args.prompt == "fix the bug"
        assert args.provider == "ollama"
        assert args.model == "qwen3"
        assert args.headless is True
        assert args.output_format == "json"
        assert args.god_mode is True
        assert [str(p) for p in args.image] == ["a.png", "b.png"]

    def test_parser_rejects_unknown_provider(self):
        """Test an unknown provider is a usage error."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-p", "nonexistent"])

    def test_headless_requires_prompt(self):
        """Test --headless without a prompt exits with a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--headless"])

        assert exc_info.value.code == 2

    def test_missing_image(self, tmp_path):
        """Test a missing image file exits with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            main(["describe", "--headless", "--image", str(tmp_path / "nope.png")])

        assert exc_info.value.code == 1

    def test_headless_run(self, tmp_path, capsys):
        """Test a headless run prints the answer and exits 0."""
        def fake_app(**kwargs):
            app, _ = make_app(tmp_path)
            return app

        with patch("codecli.app.CodeCLI", side_effect=fake_app):
            with pytest.raises(SystemExit) as exc_info:
                main(["hello", "--headless"])

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == "All done."
