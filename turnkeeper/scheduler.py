"""Execution of one step's tool calls: concurrent reads, sequential writes."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from turnkeeper.logging import get_logger
from turnkeeper.messages import ToolInvocationRequest

log = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 5


@dataclass
class TaskContext:
    """Shared state handed to every task of a step."""

    abort_event: asyncio.Event | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_event is not None and self.abort_event.is_set()


@dataclass
class TaskResult:
    """Outcome of one task; failures are values, never raised."""

    invocation: ToolInvocationRequest
    value: Any = None
    error: str | None = None
    aborted: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass
class Task:
    """Unit of work for the scheduler."""

    invocation: ToolInvocationRequest
    execute: Callable[[TaskContext], Awaitable[Any]]
    is_read_only: bool = True
    started: bool = field(default=False, init=False)


async def _run_guarded(task: Task, context: TaskContext) -> TaskResult:
    task.started = True
    try:
        value = await task.execute(context)
    except Exception as e:
        log.error(
            "Task failed",
            tool=task.invocation.name,
            call_id=task.invocation.id,
            error=str(e),
        )
        return TaskResult(invocation=task.invocation, error=str(e) or type(e).__name__)
    return TaskResult(invocation=task.invocation, value=value)


def _not_started(task: Task) -> TaskResult:
    return TaskResult(
        invocation=task.invocation,
        error="Execution aborted before start",
        aborted=True,
    )


def _log_orphan(future: "asyncio.Task[TaskResult]") -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        log.error("Orphaned task failed", error=str(error))


async def run_concurrently(
    tasks: list[Task],
    context: TaskContext,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> AsyncIterator[TaskResult]:
    """Run tasks with at most ``max_concurrency`` in flight.

    A finished slot is refilled with the next queued task before its result
    is yielded. Results come out in completion order; when several finish
    together they are reported in start order. Once the abort event is set
    no queued task starts; each gets an aborted result instead.
    """
    if not tasks:
        return

    limit = max(1, int(max_concurrency))
    queue = list(tasks)
    running: dict[asyncio.Task[TaskResult], int] = {}
    started = 0

    def _start_next() -> TaskResult | None:
        nonlocal started
        task = queue.pop(0)
        if context.aborted:
            return _not_started(task)
        future = asyncio.create_task(_run_guarded(task, context))
        running[future] = started
        started += 1
        return None

    try:
        skipped: list[TaskResult] = []
        while queue and len(running) < limit:
            result = _start_next()
            if result is not None:
                skipped.append(result)
        for result in skipped:
            yield result

        while running:
            done, _ = await asyncio.wait(running.keys(), return_when=asyncio.FIRST_COMPLETED)
            finished = sorted(done, key=lambda future: running[future])
            for future in finished:
                running.pop(future)

            skipped = []
            while queue and len(running) < limit:
                result = _start_next()
                if result is not None:
                    skipped.append(result)

            for future in finished:
                yield future.result()
            for result in skipped:
                yield result
    finally:
        # Started tool calls are allowed to finish even if nobody listens
        for future in running:
            future.add_done_callback(_log_orphan)


async def run_sequentially(tasks: list[Task], context: TaskContext) -> AsyncIterator[TaskResult]:
    """Run tasks one after another in the given order."""
    for task in tasks:
        if context.aborted:
            yield _not_started(task)
            continue
        yield await _run_guarded(task, context)


async def execute_tasks(
    tasks: list[Task],
    context: TaskContext,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> AsyncIterator[TaskResult]:
    """Run read-only tasks concurrently, then write tasks sequentially.

    No write starts before every read has finished; writes keep the order
    in which the model requested them.
    """
    if not tasks:
        return

    read_tasks = [task for task in tasks if task.is_read_only]
    write_tasks = [task for task in tasks if not task.is_read_only]

    if read_tasks:
        log.debug("Executing read tasks concurrently", count=len(read_tasks), max_concurrency=max_concurrency)
        async for result in run_concurrently(read_tasks, context, max_concurrency):
            yield result

    if write_tasks:
        log.debug("Executing write tasks sequentially", count=len(write_tasks))
        async for result in run_sequentially(write_tasks, context):
            yield result
