"""Challenge deadline: forces a live call to /end when the time is up."""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Protocol

from core.tasks import TaskRunner

logger = structlog.get_logger()


class CallRedirector(Protocol):
    async def update_call_url(self, call_sid: str, url: str) -> Any:
        ...


class DeadlineController:
    """
    Fire-and-forget timers. A timer is never cancelled: if the call already
    moved on (or hung up) Twilio rejects the redirect and we only log it.
    """

    def __init__(self, telephony: CallRedirector, runner: TaskRunner, global_url: str):
        self._telephony = telephony
        self._runner = runner
        self._end_url = f"{global_url.rstrip('/')}/end"

    def schedule(self, call_sid: str, seconds: float) -> asyncio.Task:
        logger.info("deadline_scheduled", call_sid=call_sid, seconds=seconds)
        return self._runner.spawn(self._expire(call_sid, seconds), name="deadline", call_sid=call_sid)

    async def _expire(self, call_sid: str, seconds: float) -> None:
        await asyncio.sleep(seconds)
        try:
            await self._telephony.update_call_url(call_sid, self._end_url)
            logger.info("deadline_fired", call_sid=call_sid)
        except Exception as e:
            logger.warning("deadline_redirect_failed", call_sid=call_sid, error=str(e))
