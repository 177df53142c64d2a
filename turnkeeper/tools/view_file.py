"""viewFile tool for reading file contents."""

import asyncio
from typing import Any

from turnkeeper.exceptions import ToolExecutionError
from turnkeeper.logging import get_logger
from turnkeeper.tools.registry import Tool, ToolContext

log = get_logger(__name__)

MAX_FILE_BYTES = 100_000


class ViewFileTool(Tool):
    """Read a file inside the workspace."""

    name = "viewFile"
    description = "Read the contents of a file in the workspace. Returns the file content as a string."
    input_schema = {
        "type": "object",
        "properties": {
            "filePath": {
                "type": "string",
                "description": "Path of the file, relative to the workspace root",
            },
        },
        "required": ["filePath"],
    }

    def is_read_only(self) -> bool:
        return True

    async def call(self, arguments: dict[str, Any], context: ToolContext) -> str:
        """Read a file.

        Args:
            arguments: ``{"filePath": ...}``
            context: Tool context

        Returns:
            File contents
        """
        raw_path = str(arguments.get("filePath", ""))
        file_path = self.resolve_in_workspace(raw_path, context)

        if not file_path.exists():
            raise ToolExecutionError(self.name, f"File not found: {raw_path}")
        if not file_path.is_file():
            raise ToolExecutionError(self.name, f"Not a file: {raw_path}")

        file_size = file_path.stat().st_size
        if file_size > MAX_FILE_BYTES:
            raise ToolExecutionError(
                self.name,
                f"File too large: {file_size} bytes (max {MAX_FILE_BYTES})",
            )

        content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        log.debug("File read", path=str(file_path), chars=len(content))
        return content
