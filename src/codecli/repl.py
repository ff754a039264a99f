"""
Minimal interactive loop.

``exit``/``quit`` leave, ``!cmd`` runs a shell command directly, anything
else is sent to the agent as a turn. Errors in a turn are reported and the
loop keeps reading input.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from .llm.base import StreamEvent
from .tools.shell_tool import run_interactive

if TYPE_CHECKING:
    from .app import CodeCLI

logger = structlog.get_logger()

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}

InputReader = Callable[[], Awaitable[str]]


class Repl:
    """Read-eval-print loop over an application instance."""

    def __init__(
        self,
        app: "CodeCLI",
        console: Console | None = None,
        read_input: InputReader | None = None,
    ):
        self.app = app
        self.console = console or Console()
        self._read_input = read_input or self._prompt
        self.running = True

    async def _prompt(self) -> str:
        return await asyncio.to_thread(Prompt.ask, "[bold magenta]>[/]", console=self.console)

    def _render(self, event: StreamEvent) -> None:
        if event.type == "text":
            self.console.print(event.content, end="", markup=False, highlight=False)
        elif event.type == "thought":
            self.console.print(event.content, end="", style="dim italic", markup=False, highlight=False)

    async def run(self, initial: str | list[dict[str, Any]] | None = None) -> None:
        if initial:
            await self._guarded(initial)

        while self.running:
            try:
                line = (await self._read_input()).strip()
            except (EOFError, KeyboardInterrupt):
                break
            if line:
                await self._guarded(line)

        self.shutdown()

    async def _guarded(self, user_input: str | list[dict[str, Any]]) -> None:
        try:
            await self.handle(user_input)
        except Exception as e:
            logger.error("Turn failed", error=str(e), exc_info=True)
            self.console.print(f"[bold red]Error:[/] {escape(str(e))}")

    async def handle(self, user_input: str | list[dict[str, Any]]) -> None:
        if isinstance(user_input, str):
            if user_input.lower() in EXIT_COMMANDS:
                self.running = False
                return
            if user_input.startswith("!"):
                await self.run_shell(user_input[1:].strip())
                return

        result = await self.app.agent.run_turn(user_input, on_event=self._render)
        self.console.print()

        if result.error:
            self.console.print(f"[bold red]Error:[/] {escape(result.error)}")
        if result.hit_iteration_cap:
            self.console.print("[yellow]Maximum tool iterations reached.[/]")

    async def run_shell(self, command: str) -> None:
        if not command:
            return
        if not await self.app.permissions.check_execute(command, cwd=self.app.runtime.cwd):
            self.console.print("[red]Permission denied[/]")
            return

        result = await run_interactive(command, cwd=self.app.runtime.cwd)
        if result.interrupted:
            self.console.print(f"[yellow]Interrupted (exit {result.exit_code})[/]")
        elif result.exit_code != 0:
            self.console.print(f"[red]Exit code {result.exit_code}[/]")

    def shutdown(self) -> None:
        self.running = False
        self.app.sessions.save()

        total = self.app.runtime.token_usage.total_tokens
        if total > 0:
            self.console.print(f"[dim]Session: {total:,} tokens used[/]")
        self.console.print("[bold magenta]Goodbye![/]")
