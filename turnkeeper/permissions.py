"""Interactive permission checks for tool execution."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from turnkeeper.logging import get_logger

log = get_logger(__name__)

PromptCallback = Callable[[str, dict[str, Any]], bool | Awaitable[bool]]

# Argument that narrows the approval scope for state-changing tools
_SCOPED_ARGUMENTS = {"editFile": "filePath"}

_TARGET_LABELS = {
    "viewFile": ("filePath", "file"),
    "listDirectory": ("dirPath", "directory"),
    "editFile": ("filePath", "file"),
}


def permission_key(tool_name: str, arguments: dict[str, Any]) -> str:
    """Key under which an approval is remembered."""
    scoped = _SCOPED_ARGUMENTS.get(tool_name)
    if scoped and arguments.get(scoped):
        return f"{tool_name}:{arguments[scoped]}"
    return tool_name


def describe_request(tool_name: str, arguments: dict[str, Any]) -> str:
    label = _TARGET_LABELS.get(tool_name)
    if label and arguments.get(label[0]):
        return f"{tool_name} for {label[1]} \"{arguments[label[0]]}\""
    return tool_name


def console_prompt(console: Console | None = None) -> Callable[[str, dict[str, Any]], bool]:
    """Build a blocking yes/no prompt rendered with rich."""
    console = console or Console()

    def _prompt(tool_name: str, arguments: dict[str, Any]) -> bool:
        console.print(Panel(describe_request(tool_name, arguments), title="Permission required", expand=False))
        return Confirm.ask("Allow?", console=console, default=False)

    return _prompt


class PermissionManager:
    """Remembers approvals for the lifetime of the process.

    Prompts are serialised: concurrent read-only tasks may all ask, but the
    user sees one question at a time. Only approvals are remembered.
    """

    def __init__(
        self,
        prompt: PromptCallback | None = None,
        auto_approve: Iterable[str] = (),
    ):
        self._prompt = prompt
        self._auto_approve = {str(name) for name in auto_approve}
        self._approved: set[str] = set()
        self._lock = asyncio.Lock()

    def has_permission(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        if tool_name in self._auto_approve:
            return True
        return permission_key(tool_name, arguments) in self._approved

    async def request(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        """Ask for permission unless it was already granted."""
        if self.has_permission(tool_name, arguments):
            return True

        async with self._lock:
            # Another task may have been approved while we waited
            if self.has_permission(tool_name, arguments):
                return True
            if self._prompt is None:
                log.warning("No permission prompt configured; denying", tool=tool_name)
                return False

            if inspect.iscoroutinefunction(self._prompt):
                approved = bool(await self._prompt(tool_name, arguments))
            else:
                approved = await asyncio.to_thread(self._prompt, tool_name, arguments)
                if inspect.isawaitable(approved):
                    approved = await approved
                approved = bool(approved)

            key = permission_key(tool_name, arguments)
            if approved:
                self._approved.add(key)
                log.info("Permission granted", tool=tool_name, key=key)
            else:
                log.info("Permission denied", tool=tool_name, key=key)
        return approved

    def reset(self) -> None:
        self._approved.clear()
