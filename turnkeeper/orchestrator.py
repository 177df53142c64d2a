"""Conversation turn loop: stream, assemble, deduplicate, execute, repeat."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator

from turnkeeper.assembler import ToolCallAssembler
from turnkeeper.config import Config, OrchestratorConfig
from turnkeeper.exceptions import LLMStreamError, TurnAbortedError, TurnkeeperError
from turnkeeper.llm import StreamProvider, iterate_until_abort
from turnkeeper.llm.frames import FrameKind
from turnkeeper.logging import bind_turn, clear_turn, get_logger
from turnkeeper.messages import (
    History,
    ToolInvocationRequest,
    assistant_message,
    format_tool_result_for_display,
    format_tool_use_for_display,
    stringify_tool_result,
    tool_result_message,
    tool_use_message,
    user_message,
)
from turnkeeper.permissions import PermissionManager
from turnkeeper.scheduler import Task, TaskContext, TaskResult, execute_tasks
from turnkeeper.tools import ToolContext, ToolRegistry, build_default_registry
from turnkeeper.tracker import ExecutionTracker

log = get_logger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING_RESPONSE = "streaming_response"
    NO_TOOLS_REQUESTED = "no_tools_requested"
    TOOLS_REQUESTED = "tools_requested"
    AWAITING_PERMISSIONS = "awaiting_permissions"
    EXECUTING = "executing"
    APPENDING_RESULTS = "appending_results"
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"


class TurnOutcome(str, Enum):
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"


class TurnEventType(str, Enum):
    STATUS = "status"
    TEXT_DELTA = "text_delta"
    TOOL_EXECUTING = "tool_executing"
    TOOL_RESULT = "tool_result"
    SKIPPED_DUPLICATE_TOOL = "skipped_duplicate_tool"
    FINAL_ASSISTANT_RESPONSE = "final_assistant_response"
    AWAITING_PERMISSIONS = "awaiting_permissions"
    PERMISSIONS_RESOLVED = "permissions_resolved"
    TURN_COMPLETE = "turn_complete"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass
class TurnEvent:
    """A record emitted to the host shell."""

    type: TurnEventType
    message: str = ""
    tool_use_id: str | None = None
    tool_name: str | None = None
    display_text: str = ""
    content: str = ""
    is_error: bool = False
    error: BaseException | None = None
    outcome: TurnOutcome | None = None


@dataclass
class _StepResult:
    text: str = ""
    requests: list[ToolInvocationRequest] = field(default_factory=list)
    stop_reason: str | None = None
    suppressed: int = 0


class ConversationOrchestrator:
    """Drives one conversation with the remote model.

    One instance owns the history and the execution tracker of a single
    conversation. Turns must not overlap: the caller waits for
    ``turn_complete`` before starting the next one.

    When no permission manager is given every tool call is allowed.
    """

    def __init__(
        self,
        provider: StreamProvider,
        tools: ToolRegistry,
        permissions: PermissionManager | None = None,
        system_prompt: str | None = None,
        settings: OrchestratorConfig | None = None,
        tracker: ExecutionTracker | None = None,
        workspace_root: Path | str | None = None,
    ):
        self.provider = provider
        self.tools = tools
        self.permissions = permissions
        self.settings = settings or OrchestratorConfig()
        self.system_prompt = self.settings.system_prompt if system_prompt is None else system_prompt
        self.tracker = tracker or ExecutionTracker(
            window_seconds=self.settings.duplicate_window_seconds,
            max_depth=self.settings.max_depth,
        )
        self.workspace_root = Path(workspace_root or Path.cwd()).resolve()
        self.history = History()
        self.state = TurnState.IDLE
        self._permissions_pending = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: StreamProvider,
        permissions: PermissionManager | None = None,
    ) -> "ConversationOrchestrator":
        return cls(
            provider=provider,
            tools=build_default_registry(config),
            permissions=permissions,
            settings=config.orchestrator,
            workspace_root=config.resolved_workspace_path(),
        )

    def _set_state(self, state: TurnState) -> None:
        if state != self.state:
            log.debug("Turn state", previous=self.state.value, state=state.value)
        self.state = state

    @staticmethod
    def _check_abort(abort_event: asyncio.Event) -> None:
        if abort_event.is_set():
            raise TurnAbortedError()

    async def run_turn(
        self,
        user_input: str,
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[TurnEvent]:
        """Resolve one user message, including every tool-calling step.

        Each step sends the history, consumes the streamed answer and, when
        tools were requested, executes them and appends their results before
        the next step. ``turn_complete`` is emitted once, after the last
        step has unwound.
        """
        abort_event = abort_event or asyncio.Event()
        if self.tracker.depth == 0:
            self.tracker.reset_for_new_query()

        self.history.append(user_message(user_input))
        outcome = TurnOutcome.ERROR
        steps = 0
        remaining_depth = 0

        try:
            while True:
                steps += 1
                depth = self.tracker.enter()
                bind_turn(self.tracker.sequence_id, depth)
                self._set_state(TurnState.SENDING)
                log.info("Turn step", messages=len(self.history))
                yield TurnEvent(TurnEventType.STATUS, message="Sending request to model...")
                self._check_abort(abort_event)

                step = _StepResult()
                async for event in self._stream_response(step, abort_event):
                    yield event

                if not step.requests:
                    self._set_state(TurnState.NO_TOOLS_REQUESTED)
                    if step.stop_reason == "max_tokens":
                        log.warning("Response stopped at the token limit")
                        yield TurnEvent(TurnEventType.STATUS, message="[Response truncated at the token limit]")
                    elif step.stop_reason == "tool_use" and step.suppressed:
                        log.info("Every requested tool call was a duplicate", suppressed=step.suppressed)
                    if step.text.strip():
                        self.history.append(assistant_message(step.text))
                        yield TurnEvent(TurnEventType.FINAL_ASSISTANT_RESPONSE, content=step.text)
                    else:
                        yield TurnEvent(TurnEventType.STATUS, message="[No text response received]")
                    self._set_state(TurnState.COMPLETE)
                    outcome = TurnOutcome.COMPLETE
                    yield TurnEvent(TurnEventType.STATUS, message="Request completed.")
                    break

                self._set_state(TurnState.TOOLS_REQUESTED)
                async for event in self._execute_tools(step.requests, abort_event):
                    yield event

                self._check_abort(abort_event)
                yield TurnEvent(TurnEventType.STATUS, message="Sending tool results to model...")

        except TurnAbortedError as e:
            self._set_state(TurnState.ABORTED)
            outcome = TurnOutcome.ABORTED
            log.info("Turn aborted", steps=steps)
            if self._permissions_pending:
                self._permissions_pending = False
                yield TurnEvent(TurnEventType.PERMISSIONS_RESOLVED)
            yield TurnEvent(TurnEventType.ABORTED, message=str(e))
        except TurnkeeperError as e:
            self._set_state(TurnState.ERROR)
            log.error("Turn failed", error=str(e), error_type=type(e).__name__, steps=steps)
            if self._permissions_pending:
                self._permissions_pending = False
                yield TurnEvent(TurnEventType.PERMISSIONS_RESOLVED)
            yield TurnEvent(TurnEventType.ERROR, message=str(e), error=e)
        except Exception as e:
            self._set_state(TurnState.ERROR)
            log.error("Unexpected turn failure", error=str(e), exc_info=True)
            if self._permissions_pending:
                self._permissions_pending = False
                yield TurnEvent(TurnEventType.PERMISSIONS_RESOLVED)
            yield TurnEvent(TurnEventType.ERROR, message=str(e), error=e)
        finally:
            self._permissions_pending = False
            remaining_depth = self.tracker.leave(steps)
            clear_turn()

        if remaining_depth == 0:
            yield TurnEvent(TurnEventType.TURN_COMPLETE, outcome=outcome)

    async def _stream_response(
        self,
        step: _StepResult,
        abort_event: asyncio.Event,
    ) -> AsyncIterator[TurnEvent]:
        self._set_state(TurnState.STREAMING_RESPONSE)
        assembler = ToolCallAssembler(is_duplicate_block=self.tracker.is_duplicate_content_block)
        stream = self.provider.stream(
            self.history.to_wire(),
            self.tools.get_definitions(),
            self.system_prompt,
            abort_event,
        )
        frames = iterate_until_abort(stream, abort_event)
        try:
            async for frame in frames:
                self._check_abort(abort_event)
                if frame.kind == FrameKind.ERROR:
                    error = frame.payload.get("error")
                    error = error if isinstance(error, dict) else {}
                    raise LLMStreamError(
                        str(error.get("message") or "Unknown stream error"),
                        error_type=str(error.get("type") or ""),
                    )
                if frame.kind == FrameKind.MESSAGE_START:
                    step.requests.clear()

                finalized = assembler.feed(frame)
                if frame.text_delta:
                    yield TurnEvent(TurnEventType.TEXT_DELTA, content=frame.text_delta)
                if finalized is not None:
                    event = self._accept(finalized, step)
                    if event is not None:
                        yield event
        finally:
            await frames.aclose()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self._check_abort(abort_event)
        for leftover in assembler.finish():
            event = self._accept(leftover, step)
            if event is not None:
                yield event
        step.text = assembler.text
        step.stop_reason = assembler.stop_reason

    def _accept(self, request: ToolInvocationRequest, step: _StepResult) -> TurnEvent | None:
        """Queue a finalized request unless it repeats an earlier call."""
        repeated_in_step = any(
            other.id == request.id or other.signature == request.signature
            for other in step.requests
        )
        if repeated_in_step or self.tracker.is_duplicate(request):
            log.warning("Skipping duplicate tool request", tool=request.name, call_id=request.id)
            step.suppressed += 1
            return TurnEvent(
                TurnEventType.SKIPPED_DUPLICATE_TOOL,
                tool_use_id=request.id,
                tool_name=request.name,
                message=f"Skipped duplicate call to {request.name}",
            )
        step.requests.append(request)
        return None

    async def _execute_tools(
        self,
        requests: list[ToolInvocationRequest],
        abort_event: asyncio.Event,
    ) -> AsyncIterator[TurnEvent]:
        yield TurnEvent(TurnEventType.STATUS, message=f"Executing {len(requests)} tool(s)...")

        self.history.append(tool_use_message(requests))
        for request in requests:
            self.tracker.track_execution(request)

        self._set_state(TurnState.AWAITING_PERMISSIONS)
        self._permissions_pending = True
        yield TurnEvent(TurnEventType.AWAITING_PERMISSIONS)

        tasks = [self._build_task(request) for request in requests]
        for request in requests:
            yield TurnEvent(
                TurnEventType.TOOL_EXECUTING,
                tool_use_id=request.id,
                tool_name=request.name,
                display_text=format_tool_use_for_display(request),
            )

        self._set_state(TurnState.EXECUTING)
        context = TaskContext(abort_event=abort_event)
        async for result in execute_tasks(tasks, context, self.settings.max_concurrency):
            self._set_state(TurnState.APPENDING_RESULTS)
            text, is_error = self._result_text(result)
            self.history.append(tool_result_message(result.invocation.id, text, is_error))
            log.debug(
                "Tool result appended",
                tool=result.invocation.name,
                call_id=result.invocation.id,
                is_error=is_error,
                chars=len(text),
            )
            yield TurnEvent(
                TurnEventType.TOOL_RESULT,
                tool_use_id=result.invocation.id,
                tool_name=result.invocation.name,
                content=text,
                is_error=is_error,
                display_text=format_tool_result_for_display(result.invocation, text, is_error),
            )
            self._set_state(TurnState.EXECUTING)

        self._permissions_pending = False
        yield TurnEvent(TurnEventType.PERMISSIONS_RESOLVED)

    def _build_task(self, request: ToolInvocationRequest) -> Task:
        tool = self.tools.find(request.name)
        # Unknown tools run with the read-only scheduling policy
        is_read_only = tool.is_read_only() if tool is not None else True

        async def _execute(context: TaskContext) -> Any:
            return await self.tools.execute(request.name, request.arguments, self._tool_context())

        return Task(invocation=request, execute=_execute, is_read_only=is_read_only)

    def _tool_context(self) -> ToolContext:
        if self.permissions is None:
            return ToolContext(workspace_root=self.workspace_root)
        return ToolContext(
            request_permission=self.permissions.request,
            workspace_root=self.workspace_root,
        )

    @staticmethod
    def _result_text(result: TaskResult) -> tuple[str, bool]:
        if result.is_error:
            return f"Error: {result.error}", True
        return stringify_tool_result(result.value)
