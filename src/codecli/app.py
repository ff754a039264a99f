"""
Application object wiring the runtime together.

``CodeCLI`` owns the ``RuntimeContext`` and hands it to the permission
gate, the tool registry and the agent loop, so there is no module-level
mutable state.
"""

import base64
import json
import mimetypes
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.markup import escape

from .agent.compaction import ContextManager
from .agent.core import AgentLoop, TurnResult
from .agent.session import SessionInfo, SessionStore
from .config import Settings, get_settings
from .llm.base import BaseLLM
from .llm.factory import create_llm
from .runtime import RuntimeContext
from .tools.permissions import PermissionGate, Prompter
from .tools.registry import ToolOutcome, create_default_registry

logger = structlog.get_logger()


def build_user_content(prompt: str, images: list[Path] | None = None) -> str | list[dict[str, Any]]:
    """Plain text, or text plus inline base64 images as content parts."""
    if not images:
        return prompt

    parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in images:
        mime_type = mimetypes.guess_type(image.name)[0] or "image/png"
        data = base64.b64encode(image.read_bytes()).decode("ascii")
        parts.append({
            "type": "image_url",
            "image_url": {"url": f"data:{mime_type};base64,{data}"},
        })
    return parts


class CodeCLI:
    """The coding assistant: provider, tools, permissions, context and sessions."""

    def __init__(
        self,
        settings: Settings | None = None,
        provider: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        append_system_prompt: str | None = None,
        god_mode: bool = False,
        llm: BaseLLM | None = None,
        prompter: Prompter | None = None,
        console: Console | None = None,
        cwd: Path | None = None,
    ):
        self.settings = settings or get_settings()
        self.console = console or Console(stderr=True)
        self.runtime = RuntimeContext(cwd=cwd or Path.cwd())

        self.llm = llm or create_llm(self.settings.get_llm_config(provider, model))
        self.permissions = PermissionGate(self.runtime, self.settings.permissions, prompter)
        self.tools = create_default_registry(
            self.permissions,
            self.runtime,
            command_timeout_ms=self.settings.command_timeout_ms,
            observer=self._show_tool_outcome,
        )
        self.sessions = SessionStore(self.settings.sessions_dir, cwd=self.runtime.cwd)
        self.context = ContextManager(self.settings, model=self.llm.model, cwd=self.runtime.cwd)
        self.context.load_project_context()
        self.context.build_system_prompt(system_prompt, append_system_prompt)

        self.agent = AgentLoop(
            llm=self.llm,
            tools=self.tools,
            context=self.context,
            sessions=self.sessions,
            runtime=self.runtime,
            settings=self.settings,
        )
        self.last_result: TurnResult | None = None

        if god_mode:
            self.permissions.enable_god_mode(self.runtime.cwd)

    def _show_tool_outcome(self, outcome: ToolOutcome) -> None:
        self.console.print(f"  [bold cyan]{outcome.name}[/] [dim]{escape(outcome.summary)}[/]")
        if outcome.error:
            self.console.print(f"     [red]x {escape(outcome.error)}[/] [dim]({outcome.elapsed}s)[/]")
        elif outcome.info:
            self.console.print(f"     [green]ok[/] {escape(outcome.info)} [dim]({outcome.elapsed}s)[/]")

    async def run_headless(
        self,
        prompt: str,
        output_format: str = "text",
        images: list[Path] | None = None,
    ) -> str:
        """Run one turn without a REPL and return text or a JSON envelope."""
        session = self.sessions.create(self.llm.provider_name)
        result = await self.agent.run_turn(build_user_content(prompt, images))
        self.last_result = result

        if result.error:
            logger.error("Headless run failed", error=result.error)

        if output_format == "json":
            envelope: dict[str, Any] = {
                "content": result.content,
                "usage": self.runtime.token_usage.to_dict(),
                "session": session.id,
            }
            if result.error:
                envelope["error"] = result.error
            return json.dumps(envelope)

        return result.content

    async def start_interactive(
        self,
        initial_prompt: str | None = None,
        images: list[Path] | None = None,
    ) -> None:
        """Run the REPL, auto-resuming this directory's last session."""
        from .repl import Repl

        if self.sessions.current is None:
            resumed = self.sessions.load_local()
            if resumed is None:
                self.sessions.create(self.llm.provider_name)
            else:
                self.console.print(
                    f"[dim]Resumed session {resumed.id[:8]} ({self.sessions.message_count} messages)[/]"
                )

        initial = build_user_content(initial_prompt, images) if initial_prompt else None
        await Repl(self).run(initial)

    async def continue_session(self) -> None:
        """Resume the most recently updated session; raises SessionNotFoundError."""
        self.sessions.load_latest()
        await self.start_interactive()

    async def resume_session(self, session_id: str) -> None:
        """Resume a session by (partial) id; raises SessionNotFoundError."""
        self.sessions.load(session_id)
        await self.start_interactive()

    def list_sessions(self) -> list[SessionInfo]:
        return self.sessions.list_sessions()

    async def switch_provider(self, provider: str, model: str | None = None) -> BaseLLM:
        """Replace the active provider, keeping the conversation."""
        llm = create_llm(self.settings.get_llm_config(provider, model))
        await self.llm.aclose()
        self._use_llm(llm)
        if self.sessions.current is not None:
            self.sessions.current.provider = llm.provider_name
        logger.info("Switched provider", provider=llm.provider_name, model=llm.model)
        return llm

    def switch_model(self, model: str) -> None:
        self.llm.set_model(model)
        self.context.set_model(model)
        logger.info("Switched model", model=model)

    def _use_llm(self, llm: BaseLLM) -> None:
        self.llm = llm
        self.agent.llm = llm
        self.context.set_model(llm.model)

    async def aclose(self) -> None:
        await self.llm.aclose()
