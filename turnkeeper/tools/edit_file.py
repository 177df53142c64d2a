"""editFile tool for writing file contents."""

import asyncio
from pathlib import Path
from typing import Any

from turnkeeper.logging import get_logger
from turnkeeper.tools.registry import Tool, ToolContext

log = get_logger(__name__)


def _write_file(file_path: Path, content: str) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "w", encoding="utf-8") as f:
        f.write(content)


class EditFileTool(Tool):
    """Create or overwrite a file inside the workspace."""

    name = "editFile"
    description = (
        "Edit a file in the workspace. Replaces the file content with the given "
        "content, or creates the file if it does not exist."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "filePath": {
                "type": "string",
                "description": "Path of the file, relative to the workspace root",
            },
            "content": {
                "type": "string",
                "description": "New content of the file",
            },
        },
        "required": ["filePath", "content"],
    }

    def is_read_only(self) -> bool:
        return False

    async def call(self, arguments: dict[str, Any], context: ToolContext) -> str:
        """Write content to a file.

        Args:
            arguments: ``{"filePath": ..., "content": ...}``
            context: Tool context

        Returns:
            Confirmation message
        """
        raw_path = str(arguments.get("filePath", ""))
        content = str(arguments.get("content", ""))
        file_path = self.resolve_in_workspace(raw_path, context)

        await asyncio.to_thread(_write_file, file_path, content)
        log.info("File written", path=str(file_path), chars=len(content))
        return f"File {raw_path} edited successfully ({len(content)} chars)."
