"""
TaskRunner — fire-and-forget background jobs.

Webhook handlers must answer Twilio immediately, so recording start, the
challenge deadline, judging and the rendering hand-off run as detached asyncio
tasks. Nobody awaits them; a failure is only visible in the logs and in the
persisted attempt row.

Usage:
    runner = TaskRunner()
    runner.spawn(judge.run(...), name="judge", call_sid=sid)
    await runner.wait_idle()     # shutdown / tests
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Coroutine

logger = structlog.get_logger()


class TaskRunner:

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str, **context: Any) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, name, context))
        return task

    def _on_done(self, task: asyncio.Task, name: str, context: dict[str, Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("background_task_cancelled", task=name, **context)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", task=name, error=str(exc),
                         exc_info=exc, **context)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self, timeout: float = None) -> None:
        """Wait until every task, including ones spawned meanwhile, is done.

        On timeout the tasks keep running and asyncio.TimeoutError is raised;
        cancelling them is up to the caller (cancel_all).
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if pending and deadline is not None and loop.time() >= deadline:
                raise asyncio.TimeoutError(f"{len(pending)} background task(s) still running")

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
