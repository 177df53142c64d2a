"""Conversation data model: messages, content blocks and tool invocations."""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from turnkeeper.exceptions import HistoryError

MAX_DISPLAY_CHARS = 500


@dataclass(frozen=True)
class TextBlock:
    """Plain assistant or user text."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool call requested by the assistant."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_use",
            "id": self.id,
            "name": self.name,
            "input": copy.deepcopy(self.input),
        }


@dataclass(frozen=True)
class ToolResultBlock:
    """The outcome of a tool call, sent back in a user message."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class Message:
    """A message in the conversation."""

    role: str  # "user" or "assistant"
    content: str | tuple[ContentBlock, ...]

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [block.to_dict() for block in self.content]}


class ToolInvocationRequest:
    """Tool call being reconstructed from the stream.

    Arguments may be replaced while fragments are still arriving; once
    :meth:`finalize` is called the request is frozen.
    """

    def __init__(self, id: str, name: str, arguments: dict[str, Any] | None = None):
        self.id = id
        self.name = name
        self._arguments: dict[str, Any] = dict(arguments or {})
        self._finalized = False

    @property
    def arguments(self) -> dict[str, Any]:
        # Finalized requests hand out copies so callers cannot edit them in place
        if self._finalized:
            return copy.deepcopy(self._arguments)
        return self._arguments

    @arguments.setter
    def arguments(self, value: dict[str, Any]) -> None:
        if self._finalized:
            raise AttributeError(f"Tool request {self.id} is finalized")
        self._arguments = value

    @property
    def finalized(self) -> bool:
        return self._finalized

    def finalize(self) -> "ToolInvocationRequest":
        self._finalized = True
        return self

    @property
    def signature(self) -> str:
        return tool_signature(self.name, self._arguments)

    def to_block(self) -> ToolUseBlock:
        return ToolUseBlock(id=self.id, name=self.name, input=copy.deepcopy(self._arguments))

    def __repr__(self) -> str:
        return f"ToolInvocationRequest(id={self.id!r}, name={self.name!r}, arguments={self._arguments!r})"


def user_message(content: str) -> Message:
    return Message(role="user", content=content)


def assistant_message(content: str) -> Message:
    return Message(role="assistant", content=content)


def tool_use_message(requests: list[ToolInvocationRequest]) -> Message:
    """Assistant message carrying only tool_use blocks.

    Text is never mixed in: the remote protocol rejects a tool-use message
    whose text part was streamed alongside suppressed calls.
    """
    return Message(role="assistant", content=tuple(request.to_block() for request in requests))


def tool_result_message(tool_use_id: str, content: str, is_error: bool = False) -> Message:
    return Message(
        role="user",
        content=(ToolResultBlock(tool_use_id=tool_use_id, content=content, is_error=is_error),),
    )


def tool_signature(name: str, arguments: Any) -> str:
    """Content fingerprint of a tool call, independent of argument key order."""
    if not name:
        return "unknown:tool"
    if arguments is None:
        return f"{name}:empty-input"
    if isinstance(arguments, dict) and not arguments:
        return f"{name}:empty-object"
    try:
        normalized = json.dumps(arguments, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        normalized = repr(arguments)
    return f"{name}:{normalized}"


def stringify_tool_result(value: Any) -> tuple[str, bool]:
    """Render a tool return value as tool_result text.

    Returns:
        (text, is_error)
    """
    if isinstance(value, str):
        return value, False
    if isinstance(value, (list, tuple)):
        return "\n".join(str(item) for item in value), False
    if value is None:
        return "[no result]", False
    try:
        return json.dumps(value, indent=2, ensure_ascii=False), False
    except (TypeError, ValueError) as e:
        return f"[Could not serialize tool result: {e}]", True


def format_tool_use_for_display(request: ToolInvocationRequest) -> str:
    args = ", ".join(f"{key}={value!r}" for key, value in request.arguments.items())
    return f"{request.name}({args})"


def format_tool_result_for_display(request: ToolInvocationRequest, text: str, is_error: bool) -> str:
    status = "ERROR" if is_error else "OK"
    shown = text
    if len(shown) > MAX_DISPLAY_CHARS:
        shown = shown[:MAX_DISPLAY_CHARS] + f"... [{len(text) - MAX_DISPLAY_CHARS} more chars]"
    return f"{request.name} [{status}]\n{shown}"


class History:
    """Append-only conversation history owned by one orchestrator."""

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = []
        for message in messages or []:
            self.append(message)

    def append(self, message: Message) -> None:
        """Append a message, enforcing that tool results answer a preceding tool use."""
        result_ids = [
            block.tool_use_id
            for block in message.blocks
            if isinstance(block, ToolResultBlock)
        ]
        if result_ids:
            known_ids = self._pending_tool_use_ids()
            missing = [tool_use_id for tool_use_id in result_ids if tool_use_id not in known_ids]
            if missing:
                raise HistoryError(f"Tool result without matching tool use: {', '.join(missing)}")
        self._messages.append(message)

    def _pending_tool_use_ids(self) -> set[str]:
        """Tool-use ids of the assistant message preceding the trailing tool results."""
        for message in reversed(self._messages):
            if message.role == "assistant":
                return {block.id for block in message.blocks if isinstance(block, ToolUseBlock)}
            if not all(isinstance(block, ToolResultBlock) for block in message.blocks):
                return set()
        return set()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def to_wire(self) -> list[dict[str, Any]]:
        return [message.to_dict() for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
