"""
Tools module for agent capabilities.
"""

from .base import Tool, ToolContext, ToolParameter, ToolResult
from .permissions import (
    PermissionAction,
    PermissionChoice,
    PermissionGate,
    make_console_prompter,
)
from .registry import ToolOutcome, ToolRegistry, create_default_registry
from .shell_tool import ProcessResult, run_interactive, spawn_process

__all__ = [
    "Tool",
    "ToolContext",
    "ToolParameter",
    "ToolResult",
    "PermissionAction",
    "PermissionChoice",
    "PermissionGate",
    "make_console_prompter",
    "ToolOutcome",
    "ToolRegistry",
    "create_default_registry",
    "ProcessResult",
    "run_interactive",
    "spawn_process",
]
