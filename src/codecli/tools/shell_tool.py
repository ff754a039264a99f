"""
Shell Command Tool - Permission-gated execution of shell commands.

Commands run through the user's shell in the project directory. A command
that outlives its timeout is killed and reported with ``timedOut``; a
Ctrl-C while a command runs is forwarded to the child, which is then
reported as interrupted with exit code 130.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .base import Tool, ToolContext, ToolParameter

logger = logging.getLogger(__name__)

INTERRUPTED_EXIT_CODE = 130
MAX_OUTPUT_CHARS = 10000
KILL_WAIT_SECONDS = 2.0


@dataclass
class ProcessResult:
    """Outcome of a spawned shell command."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    interrupted: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.interrupted

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "success": self.success,
        }
        if self.timed_out:
            result["timedOut"] = True
        if self.interrupted:
            result["interrupted"] = True
        return result


def _truncate_output(output: str) -> str:
    """Truncate output to the configured limit."""
    output = output.strip()
    if len(output) > MAX_OUTPUT_CHARS:
        output = output[:MAX_OUTPUT_CHARS] + "\n\n... (truncated)"
    return output


def _signal_process(process: asyncio.subprocess.Process, sig: int, grouped: bool) -> None:
    """Signal the whole process group when the child leads one, else just the child."""
    if process.returncode is not None:
        return
    try:
        if grouped and hasattr(os, "killpg"):
            os.killpg(process.pid, sig)
        else:
            process.send_signal(sig)
    except ProcessLookupError:
        pass


def _forward_interrupts(process: asyncio.subprocess.Process, grouped: bool) -> bool:
    """Route SIGINT to the child while it runs; False if unsupported here."""

    def forward() -> None:
        if process.returncode is None:
            logger.info("Forwarding interrupt to child process")
            _signal_process(process, signal.SIGINT, grouped)

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, forward)
    except (NotImplementedError, RuntimeError, ValueError):
        # no signal handlers on this platform or outside the main thread
        return False
    return True


async def spawn_process(
    command: str,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    capture: bool = True,
) -> ProcessResult:
    """
    Run a shell command to completion.

    Args:
        command: Command line passed to the shell.
        cwd: Working directory (default: the current directory).
        timeout: Seconds before the process is killed; None waits forever.
        capture: Collect stdout/stderr; when False the child writes to the
            terminal directly.

    Captured commands run in their own process group so a timeout kills
    everything the shell started, not only the shell itself.
    """
    env = os.environ.copy()
    env["FORCE_COLOR"] = "0"
    pipe = asyncio.subprocess.PIPE if capture else None
    # interactive commands keep the terminal as their controlling tty
    grouped = capture

    process = await asyncio.create_subprocess_shell(
        command,
        stdout=pipe,
        stderr=pipe,
        cwd=str(cwd) if cwd else None,
        env=env,
        start_new_session=grouped,
    )

    forwarding = _forward_interrupts(process, grouped)
    try:
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            _signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM), grouped)
            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} still running after kill")
            logger.warning(f"Command timed out after {timeout}s: {command}")
            return ProcessResult(
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_code=process.returncode if process.returncode else -1,
                timed_out=True,
            )
    finally:
        if forwarding:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    returncode = process.returncode if process.returncode is not None else -1
    interrupted = returncode == -signal.SIGINT

    return ProcessResult(
        stdout=_truncate_output((stdout or b"").decode("utf-8", errors="replace")),
        stderr=_truncate_output((stderr or b"").decode("utf-8", errors="replace")),
        exit_code=INTERRUPTED_EXIT_CODE if interrupted else returncode,
        interrupted=interrupted,
    )


async def run_interactive(command: str, cwd: str | Path | None = None) -> ProcessResult:
    """Run a user-typed command with its output going straight to the terminal."""
    return await spawn_process(command, cwd=cwd, capture=False)


def create_shell_tools(default_timeout_ms: int = 30000) -> list[Tool]:
    """Create shell-related tools."""

    async def run_command_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Execute a shell command."""
        command = args.get("command")
        if not command:
            return {"error": "command is required"}

        work_dir = context.resolve(args.get("cwd")) if args.get("cwd") else context.cwd
        timeout_ms = int(args.get("timeout") or default_timeout_ms)

        if not await context.permissions.check_execute(command, cwd=work_dir):
            return {"error": "Permission denied"}

        logger.info(f"$ {command}")
        try:
            result = await spawn_process(command, cwd=work_dir, timeout=timeout_ms / 1000)
        except OSError as e:
            return {
                "exitCode": -1,
                "stdout": "",
                "stderr": str(e),
                "success": False,
                "error": str(e),
            }
        return result.to_dict()

    run_command = Tool(
        name="run_command",
        description=(
            "Execute a shell command and return its output. Use this for running "
            "tests, builds, git operations, and other shell tasks."
        ),
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="The shell command to execute",
            ),
            ToolParameter(
                name="cwd",
                param_type="string",
                description="Working directory for the command (defaults to project root)",
                required=False,
            ),
            ToolParameter(
                name="timeout",
                param_type="integer",
                description=f"Timeout in milliseconds (default: {default_timeout_ms})",
                required=False,
            ),
        ],
        handler=run_command_handler,
    )

    return [run_command]
