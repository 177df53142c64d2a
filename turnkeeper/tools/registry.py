"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from turnkeeper.exceptions import (
    ToolBlockedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from turnkeeper.logging import get_logger

log = get_logger(__name__)

PermissionCallback = Callable[[str, dict[str, Any]], Awaitable[bool]]


async def _allow_all(tool_name: str, arguments: dict[str, Any]) -> bool:
    return True


@dataclass
class ToolContext:
    """What a tool may use while it runs."""

    request_permission: PermissionCallback = _allow_all
    workspace_root: Path = field(default_factory=lambda: Path.cwd().resolve())


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    input_schema: dict[str, Any] = {"type": "object", "properties": {}, "required": []}
    timeout_seconds: float = 30.0

    def is_read_only(self) -> bool:
        """Whether the tool leaves all state untouched."""
        return False

    def needs_permission(self, arguments: dict[str, Any]) -> bool:
        return True

    @abstractmethod
    async def call(self, arguments: dict[str, Any], context: ToolContext) -> Any:
        """Execute the tool.

        Args:
            arguments: Tool-specific arguments
            context: Permission callback and workspace root

        Returns:
            Any value; strings and lists are sent back verbatim, other
            values as JSON.

        Raises:
            ToolError (or any exception) on failure
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for the model."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = self.input_schema.get("required", [])
        for name in required:
            if name not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {name}",
                )

    def resolve_in_workspace(self, raw_path: str, context: ToolContext) -> Path:
        """Resolve a relative path, refusing anything outside the workspace."""
        root = Path(context.workspace_root).resolve()
        candidate = (root / str(raw_path or ".")).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            raise ToolBlockedError(self.name, "Access outside the workspace is not allowed")
        return candidate


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def find(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for the model."""
        return [tool.get_definition() for tool in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext | None = None,
    ) -> Any:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments
            context: Permission callback and workspace root

        Returns:
            Whatever the tool returned

        Raises:
            ToolNotFoundError if tool not found
            ToolBlockedError if permission is denied
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        context = context or ToolContext()

        tool.validate_arguments(arguments)

        if tool.needs_permission(arguments):
            approved = await context.request_permission(name, dict(arguments))
            if not approved:
                raise ToolBlockedError(name, "Permission denied")

        timeout_seconds = max(1.0, float(getattr(tool, "timeout_seconds", 30.0) or 30.0))
        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await asyncio.wait_for(tool.call(arguments, context), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except (ToolBlockedError, ToolExecutionError):
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))
        log.info("Tool executed", tool=name)
        return result
