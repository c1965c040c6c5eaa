"""
SessionStore — concurrency-safe map from CallSid to live Session.

Every webhook for a call re-enters the store, so all access goes through a
single asyncio.Lock. Critical sections contain only dictionary operations and
deep copies: callers read a copy, release the lock, talk to slow services and
write the result back with a fresh acquisition. Every write bumps the
session revision, so replace() refuses a copy that went stale meanwhile.
Sessions never reference each other, so copies are self-contained.

remove() is the hand-off point from the live call to background judging; a
second remove() for the same call returns None.
"""
from __future__ import annotations

import asyncio
import copy
import structlog
from typing import Callable, Optional

from context.session import Session
from core.errors import SessionNotFoundError

logger = structlog.get_logger()


class SessionStore:
    """In-process store of live call sessions."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def get(self, call_sid: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(call_sid)
            return copy.deepcopy(session) if session else None

    async def require(self, call_sid: str) -> Session:
        session = await self.get(call_sid)
        if session is None:
            logger.error("session_missing", call_sid=call_sid)
            raise SessionNotFoundError(call_sid)
        return session

    async def upsert(self, call_sid: str, session: Session) -> None:
        async with self._lock:
            self._sessions[call_sid] = copy.deepcopy(session)

    async def mutate(self, call_sid: str, fn: Callable[[Session], None]) -> Session:
        """Apply fn to the live session atomically and return a copy.

        fn runs inside the critical section and must not await anything.
        """
        async with self._lock:
            session = self._sessions.get(call_sid)
            if session is None:
                logger.error("session_missing", call_sid=call_sid)
                raise SessionNotFoundError(call_sid)
            fn(session)
            session.revision += 1
            return copy.deepcopy(session)

    async def replace(self, call_sid: str, session: Session) -> bool:
        """Write back a copy taken with get().

        Refused (False) when the call has no live session any more, or when
        another write landed since the copy was taken.
        """
        async with self._lock:
            live = self._sessions.get(call_sid)
            if live is None:
                return False
            if live.revision != session.revision:
                logger.warning("session_write_conflict", call_sid=call_sid,
                               live_revision=live.revision, stale_revision=session.revision)
                return False
            stored = copy.deepcopy(session)
            stored.revision += 1
            self._sessions[call_sid] = stored
            return True

    async def remove(self, call_sid: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.pop(call_sid, None)

    def call_sids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
