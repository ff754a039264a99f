"""
Tool registry for managing and executing available tools.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from ..llm.base import ToolCall, ToolDefinition
from ..runtime import RuntimeContext
from .base import Tool, ToolContext, ToolResult
from .permissions import PermissionGate

logger = structlog.get_logger()


@dataclass
class ToolOutcome:
    """Display summary of one tool call."""

    name: str
    summary: str
    info: str | None
    error: str | None
    elapsed: float


ToolObserver = Callable[[ToolOutcome], None]


def summarize_args(name: str, args: dict[str, Any]) -> str:
    """One-line description of a call's arguments."""
    if name == "read_file":
        return str(args.get("path", ""))
    if name == "write_file":
        return f"{args.get('path', '')} ({args.get('mode') or 'write'})"
    if name == "file_search":
        return str(args.get("pattern", ""))
    if name == "code_search":
        return f'"{args.get("query", "")}"'
    if name == "run_command":
        return str(args.get("command", ""))
    if name == "list_directory":
        return str(args.get("path") or ".")
    return json.dumps(args, default=str)[:60]


def result_info(name: str, result: dict[str, Any]) -> str | None:
    """Condensed success info (line, match or entry counts)."""
    if name == "read_file":
        return f"{result.get('totalLines', '?')} lines" if "content" in result else None
    if name == "write_file":
        return "written" if result.get("success") else None
    if name == "file_search":
        return f"{len(result['matches'])} matches" if "matches" in result else None
    if name == "code_search":
        return f"{len(result['matches'])} results" if "matches" in result else None
    if name == "run_command":
        if result.get("timedOut"):
            return "timed out"
        stdout = result.get("stdout")
        return f"{len(stdout.splitlines())} lines output" if stdout else "completed"
    if name == "list_directory":
        return f"{len(result['entries'])} entries" if "entries" in result else None
    return None


class ToolRegistry:
    """Registry for managing tools and running the calls a model requests."""

    def __init__(
        self,
        permissions: PermissionGate,
        runtime: RuntimeContext,
        observer: ToolObserver | None = None,
    ):
        self._tools: dict[str, Tool] = {}
        self.permissions = permissions
        self.runtime = runtime
        self.observer = observer

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    async def execute_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Execute a tool by name; failures come back as ``{"error": ...}``."""
        tool = self.get(name)
        if tool is None:
            logger.warning("Unknown tool requested", tool_name=name)
            return {"error": f"Unknown tool: {name}"}

        context = ToolContext(permissions=self.permissions, cwd=self.runtime.cwd)
        summary = summarize_args(name, arguments)
        started = time.monotonic()

        try:
            logger.info("Executing tool", tool_name=name, summary=summary)
            result = await tool.execute(arguments, context)
            if not isinstance(result, dict):
                result = {"result": result}
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            result = {"error": str(e)}

        elapsed = round(time.monotonic() - started, 1)
        error = result.get("error")
        logger.info("Tool executed", tool_name=name, success=error is None, elapsed=elapsed)

        if self.observer is not None:
            self.observer(ToolOutcome(
                name=name,
                summary=summary,
                info=None if error else result_info(name, result),
                error=error,
                elapsed=elapsed,
            ))

        return result

    async def execute_tool_calls(self, tool_calls: list[ToolCall]) -> list[ToolResult]:
        """Run calls one at a time, in order, one result per call."""
        results = []
        for call in tool_calls:
            content = await self.execute_tool(call.name, call.parse_arguments())
            results.append(ToolResult(tool_call_id=call.id, name=call.name, content=content))
        return results


def create_default_registry(
    permissions: PermissionGate,
    runtime: RuntimeContext,
    command_timeout_ms: int = 30000,
    observer: ToolObserver | None = None,
) -> ToolRegistry:
    """Registry holding the built-in file and shell tools."""
    from .file_tool import create_file_tools
    from .shell_tool import create_shell_tools

    registry = ToolRegistry(permissions, runtime, observer=observer)
    for tool in create_file_tools():
        registry.register(tool)
    for tool in create_shell_tools(default_timeout_ms=command_timeout_ms):
        registry.register(tool)
    return registry
