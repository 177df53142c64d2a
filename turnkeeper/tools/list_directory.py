"""listDirectory tool for listing directory entries."""

import asyncio
from pathlib import Path
from typing import Any

from turnkeeper.exceptions import ToolExecutionError
from turnkeeper.logging import get_logger
from turnkeeper.tools.registry import Tool, ToolContext

log = get_logger(__name__)


def _list_entries(dir_path: Path) -> list[str]:
    entries = sorted(dir_path.iterdir(), key=lambda entry: entry.name)
    return [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries]


class ListDirectoryTool(Tool):
    """List files and subdirectories inside the workspace."""

    name = "listDirectory"
    description = (
        "List the contents of a directory in the workspace. "
        "Returns file names; directories end with '/'."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "dirPath": {
                "type": "string",
                "description": "Directory path relative to the workspace root. './' for the root.",
            },
        },
        "required": ["dirPath"],
    }

    def is_read_only(self) -> bool:
        return True

    async def call(self, arguments: dict[str, Any], context: ToolContext) -> list[str]:
        raw_path = str(arguments.get("dirPath", "") or "./")
        dir_path = self.resolve_in_workspace(raw_path, context)

        if not dir_path.exists():
            raise ToolExecutionError(self.name, f"Directory not found: {raw_path}")
        if not dir_path.is_dir():
            raise ToolExecutionError(self.name, f"Not a directory: {raw_path}")

        entries = await asyncio.to_thread(_list_entries, dir_path)
        log.debug("Directory listed", path=str(dir_path), entries=len(entries))
        return entries
