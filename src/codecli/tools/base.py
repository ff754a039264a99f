"""
Base classes for tools.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from ..llm.base import LLMMessage, ToolDefinition

if TYPE_CHECKING:
    from .permissions import PermissionGate


@dataclass
class ToolContext:
    """What a tool handler may touch while it runs."""

    permissions: "PermissionGate"
    cwd: Path

    def resolve(self, path: str | None) -> Path:
        """Resolve a tool-supplied path against the working directory."""
        target = Path(path or ".").expanduser()
        if not target.is_absolute():
            target = self.cwd / target
        return target.resolve()


@dataclass
class ToolResult:
    """Result of one tool call, in call order."""

    tool_call_id: str
    name: str
    content: dict[str, Any]

    @property
    def is_error(self) -> bool:
        return "error" in self.content

    def to_message(self) -> LLMMessage:
        """Build the ``tool`` message providers expect for this result."""
        return LLMMessage(
            role="tool",
            content=json.dumps(self.content, default=str),
            tool_call_id=self.tool_call_id,
            name=self.name,
        )


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    properties: dict[str, Any] | None = None  # nested schema for object params


ToolHandler = Callable[[dict[str, Any], ToolContext], Coroutine[Any, Any, dict[str, Any]]]


@dataclass
class Tool:
    """
    A named capability the model can invoke.

    Handlers receive the decoded argument object and a ``ToolContext`` and
    return a JSON-serializable dict; ``{"error": ...}`` signals failure.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: ToolHandler

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default
            if param.properties:
                prop["properties"] = param.properties

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Execute the tool handler."""
        return await self.handler(args, context)
