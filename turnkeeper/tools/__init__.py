"""Tools package for Turnkeeper."""

from turnkeeper.config import Config
from turnkeeper.tools.registry import (
    PermissionCallback,
    Tool,
    ToolContext,
    ToolRegistry,
)
from turnkeeper.tools.view_file import ViewFileTool
from turnkeeper.tools.list_directory import ListDirectoryTool
from turnkeeper.tools.edit_file import EditFileTool

BUILTIN_TOOLS: dict[str, type[Tool]] = {
    ViewFileTool.name: ViewFileTool,
    ListDirectoryTool.name: ListDirectoryTool,
    EditFileTool.name: EditFileTool,
}


def build_default_registry(config: Config | None = None) -> ToolRegistry:
    """Registry with every enabled built-in tool."""
    registry = ToolRegistry()
    enabled = config.tools.enabled if config is not None else list(BUILTIN_TOOLS)
    for name in enabled:
        tool_cls = BUILTIN_TOOLS.get(name)
        if tool_cls is None:
            continue
        tool = tool_cls()
        if config is not None:
            tool.timeout_seconds = config.tools.timeout_seconds
        registry.register(tool)
    return registry


__all__ = [
    "BUILTIN_TOOLS",
    "PermissionCallback",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "ViewFileTool",
    "ListDirectoryTool",
    "EditFileTool",
    "build_default_registry",
]
