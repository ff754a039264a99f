"""
Permission gate for file and shell operations.

Every read, write and execute request is checked against, in order:

1. God Mode: any target inside the bound directory root is allowed
2. the static auto-approve setting for the action
3. for commands, the block-list (substring, deny) and allow-list
   (prefix, allow); the block-list is consulted first
4. the session cache of earlier "session" and "deny" answers
5. an interactive prompt: allow once, allow for the session, or deny

Denials are cached too, so a repeated identical request is refused
without asking again. The caches live on the ``RuntimeContext`` so the
application decides their lifetime.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import structlog
from rich.console import Console
from rich.prompt import Prompt

from ..config import PermissionSettings
from ..runtime import RuntimeContext

logger = structlog.get_logger()


class PermissionAction(str, Enum):
    """Kinds of guarded operations."""
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"


class PermissionChoice(str, Enum):
    """Answers to a permission prompt."""
    ONCE = "once"          # allow this request only
    SESSION = "session"    # allow and remember
    DENY = "deny"          # refuse and remember


Prompter = Callable[[PermissionAction, str], Awaitable[PermissionChoice]]

PROMPT_STYLES = {
    PermissionAction.READ: "cyan",
    PermissionAction.WRITE: "yellow",
    PermissionAction.EXECUTE: "red",
}

PROMPT_ANSWERS = {
    "y": PermissionChoice.ONCE,
    "a": PermissionChoice.SESSION,
    "n": PermissionChoice.DENY,
}


def make_console_prompter(console: Console | None = None) -> Prompter:
    """Build a prompter that asks on the terminal with rich."""
    console = console or Console(stderr=True)

    async def prompt(action: PermissionAction, target: str) -> PermissionChoice:
        style = PROMPT_STYLES[action]
        console.print()
        console.print(f"[bold {style}]Permission required: {action.value.upper()}[/]")
        console.print(f"[dim]   Target: {target}[/]")
        answer = await asyncio.to_thread(
            Prompt.ask,
            f"Allow {action.value}? [y] once, [a] for this session, [n] no",
            choices=list(PROMPT_ANSWERS),
            default="n",
            console=console,
        )
        return PROMPT_ANSWERS[answer]

    return prompt


class PermissionGate:
    """Decides whether a read, write or execute request may proceed."""

    def __init__(
        self,
        runtime: RuntimeContext,
        settings: PermissionSettings | None = None,
        prompter: Prompter | None = None,
    ):
        self.runtime = runtime
        self.settings = settings or PermissionSettings()
        self._prompter = prompter or make_console_prompter()

    @property
    def god_mode(self) -> bool:
        return self.runtime.god_mode

    def enable_god_mode(self, root: str | Path | None = None) -> Path:
        """Auto-approve every operation inside ``root`` (default: cwd)."""
        resolved = self._resolve(root if root is not None else self.runtime.cwd)
        self.runtime.god_mode_root = resolved
        logger.warning("God mode enabled", root=str(resolved))
        return resolved

    def disable_god_mode(self) -> None:
        self.runtime.god_mode_root = None
        logger.info("God mode disabled")

    def is_in_god_mode_scope(self, target: str | Path) -> bool:
        """True when ``target`` is the God Mode root or lies beneath it."""
        root = self.runtime.god_mode_root
        if root is None:
            return False
        resolved = self._resolve(target)
        return resolved == root or root in resolved.parents

    async def check_read(self, path: str | Path) -> bool:
        if self.is_in_god_mode_scope(path):
            return True
        if self.settings.auto_approve_read:
            return True
        return await self._check_cached(PermissionAction.READ, str(path))

    async def check_write(self, path: str | Path) -> bool:
        if self.is_in_god_mode_scope(path):
            return True
        if self.settings.auto_approve_write:
            return True
        return await self._check_cached(PermissionAction.WRITE, str(path))

    async def check_execute(self, command: str, cwd: str | Path | None = None) -> bool:
        """Check a shell command; God Mode scope is the command's directory."""
        if self.is_in_god_mode_scope(cwd if cwd is not None else self.runtime.cwd):
            return True
        if self.settings.auto_approve_execute:
            return True

        if any(blocked in command for blocked in self.settings.blocked_commands):
            logger.warning("Command blocked by security policy", command=command)
            return False
        if any(command.startswith(allowed) for allowed in self.settings.allowed_commands):
            return True

        return await self._check_cached(PermissionAction.EXECUTE, command)

    def reset_session(self) -> None:
        """Forget every cached decision."""
        self.runtime.session_approvals.clear()
        self.runtime.session_denials.clear()

    async def _check_cached(self, action: PermissionAction, target: str) -> bool:
        key = f"{action.value}:{target}"
        if key in self.runtime.session_approvals:
            return True
        if key in self.runtime.session_denials:
            return False

        choice = await self._prompter(action, target)
        logger.debug("Permission decision", action=action.value, target=target, choice=choice.value)

        if choice == PermissionChoice.ONCE:
            return True
        if choice == PermissionChoice.SESSION:
            self.runtime.session_approvals.add(key)
            return True

        self.runtime.session_denials.add(key)
        return False

    def _resolve(self, target: str | Path) -> Path:
        path = Path(target).expanduser()
        if not path.is_absolute():
            path = self.runtime.cwd / path
        return path.resolve()
