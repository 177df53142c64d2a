"""Reassembly of tool calls whose arguments arrive as JSON fragments."""

import json
from typing import Any, Callable

from turnkeeper.llm.frames import Frame, FrameKind
from turnkeeper.logging import get_logger
from turnkeeper.messages import ToolInvocationRequest

log = get_logger(__name__)


def try_parse_arguments(buffer: str) -> dict[str, Any] | None:
    """Parse an argument buffer only when it looks like a complete object."""
    stripped = buffer.strip()
    if not stripped or not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    try:
        value = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class _OpenBlock:
    def __init__(self, request: ToolInvocationRequest):
        self.request = request
        self.buffer = ""


class ToolCallAssembler:
    """Consume frames of one streamed response and rebuild its tool calls.

    Text deltas are concatenated into :attr:`text` regardless of what happens
    to the tool calls they arrived with. Finalized requests are returned from
    :meth:`feed` when their block closes and collected in :attr:`requests`.
    """

    def __init__(self, is_duplicate_block: Callable[[str], bool] | None = None):
        # Claims a block id and reports whether it was claimed before
        self._is_duplicate_block = is_duplicate_block or self._claim_local
        self._local_block_ids: set[str] = set()
        self.text = ""
        self.requests: list[ToolInvocationRequest] = []
        self.stop_reason: str | None = None
        self.message_complete = False
        self._open: dict[int | None, _OpenBlock] = {}
        self._ignored: set[int | None] = set()
        self._current_index: int | None = None

    def feed(self, frame: Frame) -> ToolInvocationRequest | None:
        """Apply one frame; return the request whose block this frame closed."""
        if frame.kind == FrameKind.MESSAGE_START:
            self._reset_message()
        elif frame.kind == FrameKind.CONTENT_BLOCK_START:
            self._start_block(frame)
        elif frame.kind == FrameKind.CONTENT_BLOCK_DELTA:
            self._apply_delta(frame)
        elif frame.kind == FrameKind.CONTENT_BLOCK_STOP:
            return self._stop_block(frame)
        elif frame.kind == FrameKind.MESSAGE_DELTA:
            stop_reason = frame.delta.get("stop_reason")
            if stop_reason:
                self.stop_reason = str(stop_reason)
        elif frame.kind == FrameKind.MESSAGE_STOP:
            self.message_complete = True
        return None

    def finish(self) -> list[ToolInvocationRequest]:
        """Close blocks left open by a truncated stream."""
        closed: list[ToolInvocationRequest] = []
        for index in list(self._open):
            log.warning("Tool block left open at end of stream", index=index)
            request = self._close(index)
            if request is not None:
                closed.append(request)
        return closed

    def _claim_local(self, block_id: str) -> bool:
        if block_id in self._local_block_ids:
            return True
        self._local_block_ids.add(block_id)
        return False

    def _reset_message(self) -> None:
        self.text = ""
        self.requests = []
        self.stop_reason = None
        self.message_complete = False
        self._open.clear()
        self._ignored.clear()
        self._current_index = None

    def _start_block(self, frame: Frame) -> None:
        block = frame.block
        index = frame.index
        self._current_index = index
        block_id = str(block.get("id") or "")
        if block_id and self._is_duplicate_block(block_id):
            log.debug("Skipping already assembled content block", block_id=block_id)
            self._ignored.add(index)
            return
        self._ignored.discard(index)

        if block.get("type") != "tool_use":
            return
        initial = block.get("input")
        request = ToolInvocationRequest(
            id=block_id,
            name=str(block.get("name") or ""),
            arguments=initial if isinstance(initial, dict) else {},
        )
        self._open[index] = _OpenBlock(request)

    def _resolve_index(self, frame: Frame) -> int | None:
        index = frame.index
        return self._current_index if index is None else index

    def _apply_delta(self, frame: Frame) -> None:
        delta = frame.delta
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            self.text += str(delta.get("text") or "")
            return
        if delta_type != "input_json_delta":
            return

        index = self._resolve_index(frame)
        if index in self._ignored:
            return
        block = self._open.get(index)
        if block is None:
            log.debug("Argument fragment for unknown block", index=index)
            return
        block.buffer += str(delta.get("partial_json") or "")
        parsed = try_parse_arguments(block.buffer)
        if parsed is not None:
            block.request.arguments = parsed

    def _stop_block(self, frame: Frame) -> ToolInvocationRequest | None:
        index = self._resolve_index(frame)
        self._ignored.discard(index)
        if self._current_index == index:
            self._current_index = None
        return self._close(index)

    def _close(self, index: int | None) -> ToolInvocationRequest | None:
        block = self._open.pop(index, None)
        if block is None:
            return None
        if block.buffer.strip():
            parsed = try_parse_arguments(block.buffer)
            if parsed is not None:
                block.request.arguments = parsed
            else:
                log.warning(
                    "Tool arguments did not parse, keeping last valid value",
                    tool=block.request.name,
                    call_id=block.request.id,
                    buffer=block.buffer[:200],
                )
        request = block.request.finalize()
        self.requests.append(request)
        return request
