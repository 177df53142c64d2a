"""Duplicate suppression and recursion accounting for one conversation."""

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from turnkeeper.exceptions import DepthExceededError
from turnkeeper.logging import get_logger
from turnkeeper.messages import ToolInvocationRequest

log = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_DEPTH = 5


@dataclass(frozen=True)
class ExecutionRecord:
    """A tool call that was accepted for execution."""

    fingerprint: str
    timestamp: float
    sequence_id: str


class ExecutionTracker:
    """Per-conversation tables of executed tool calls.

    All steps of one user-initiated turn share a sequence id. The tables are
    cleared and a new sequence id is minted by :meth:`reset_for_new_query`,
    which the orchestrator calls only when a turn starts at depth 0.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_depth = max_depth
        self._clock = clock
        self._lock = threading.Lock()
        self._ids: dict[str, ExecutionRecord] = {}
        self._signatures: dict[str, ExecutionRecord] = {}
        self.content_block_ids: set[str] = set()
        self.sequence_id = uuid.uuid4().hex
        self.execution_count = 0
        self.depth = 0

    def is_duplicate(self, request: ToolInvocationRequest) -> bool:
        """Whether the request repeats an id or a recent call of this turn."""
        if not request.id or not request.name:
            return False
        signature = request.signature
        with self._lock:
            if request.id in self._ids:
                log.info("Tool call id already executed", call_id=request.id, tool=request.name)
                return True
            record = self._signatures.get(signature)
            if record is None or record.sequence_id != self.sequence_id:
                return False
            age = self._clock() - record.timestamp
        if age < self.window_seconds:
            log.info(
                "Tool call signature executed recently",
                tool=request.name,
                call_id=request.id,
                age_seconds=round(age, 3),
            )
            return True
        return False

    def track_execution(self, request: ToolInvocationRequest) -> None:
        """Record an accepted call under its id and content signature."""
        if not request.id or not request.name:
            return
        with self._lock:
            now = self._clock()
            if request.id in self._ids:
                log.debug("Tool call already tracked", call_id=request.id)
                return
            self._ids[request.id] = ExecutionRecord(request.id, now, self.sequence_id)
            signature = request.signature
            self._signatures[signature] = ExecutionRecord(signature, now, self.sequence_id)
            self.execution_count += 1
            count = self.execution_count
        log.debug("Tool call tracked", tool=request.name, call_id=request.id, execution=count)

    def is_duplicate_content_block(self, block_id: str) -> bool:
        """Claim a content block id; ``True`` when it was claimed before."""
        if not block_id:
            return False
        with self._lock:
            if block_id in self.content_block_ids:
                return True
            self.content_block_ids.add(block_id)
            return False

    def reset_for_new_query(self) -> str:
        """Start a new top-level turn and return its sequence id."""
        with self._lock:
            self._ids.clear()
            self._signatures.clear()
            self.content_block_ids.clear()
            self.execution_count = 0
            self.depth = 0
            self.sequence_id = uuid.uuid4().hex
            sequence_id = self.sequence_id
        log.debug("Tracker reset for new query", sequence_id=sequence_id)
        return sequence_id

    def enter(self) -> int:
        """Count one more step of the current turn.

        Raises:
            DepthExceededError when the new depth is above ``max_depth``.
            The step is still counted so the caller's exit path balances it.
        """
        with self._lock:
            self.depth += 1
            depth = self.depth
        log.debug("Recursion depth increased", depth=depth)
        if depth > self.max_depth:
            raise DepthExceededError(depth, self.max_depth)
        return depth

    def leave(self, steps: int = 1) -> int:
        with self._lock:
            self.depth = max(0, self.depth - steps)
            depth = self.depth
        log.debug("Recursion depth decreased", depth=depth)
        return depth

    @property
    def tracked_ids(self) -> list[str]:
        with self._lock:
            return list(self._ids)
