"""
InMemoryGameStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with SqlGameStore
  - Reward debits serialized with an asyncio.Lock
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import asyncio
import random
import uuid
import structlog
from datetime import datetime, timezone
from typing import Optional

from database.store_base import BaseGameStore, clamp_challenge_time
from models.schemas import Attempt, Sponsor, User, Winner

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryGameStore(BaseGameStore):
    """
    Full-featured in-memory store with the same interface as SqlGameStore.
    Returns copies so callers never share state with the store.
    """

    def __init__(self, max_challenge_time: int = 60):
        self._max_challenge_time = max_challenge_time
        self._sponsors: dict[int, Sponsor] = {}
        self._users: dict[str, User] = {}           # phone → user
        self._attempts: dict[str, Attempt] = {}     # call_sid → attempt
        self._winners: dict[str, Winner] = {}       # key → winner
        self._ids = {"sponsor": 0, "attempt": 0, "winner": 0}
        self._ledger_lock = asyncio.Lock()
        logger.info("inmemory_store_initialized")

    def _next_id(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    # ── Sponsors ──────────────────────────────────────────

    async def create_sponsor(self, sponsor: Sponsor) -> Sponsor:
        sponsor = clamp_challenge_time(sponsor, self._max_challenge_time)
        sponsor = sponsor.model_copy(update={"id": self._next_id("sponsor")})
        self._sponsors[sponsor.id] = sponsor
        return sponsor

    async def get_sponsor(self, sponsor_id: int) -> Optional[Sponsor]:
        return self._sponsors.get(sponsor_id)

    async def get_sponsor_by_public_key(self, public_key: str) -> Optional[Sponsor]:
        return next((s for s in self._sponsors.values() if s.public_key == public_key), None)

    async def list_sponsors_by_user(self, user_id: str) -> list[Sponsor]:
        return [s for s in self._sponsors.values() if s.user_id == user_id]

    async def get_random_sponsor(self) -> Optional[Sponsor]:
        eligible = [
            s for s in self._sponsors.values()
            if s.active and s.available_tokens >= s.reward_tokens
        ]
        return random.choice(eligible) if eligible else None

    async def activate_sponsor(self, public_key: str) -> None:
        for sid, sponsor in self._sponsors.items():
            if sponsor.public_key == public_key:
                self._sponsors[sid] = sponsor.model_copy(update={"active": True, "initial_funded": True})

    async def withdraw_tokens(self, sponsor_id: int) -> Optional[int]:
        async with self._ledger_lock:
            sponsor = self._sponsors.get(sponsor_id)
            if sponsor is None or sponsor.available_tokens < sponsor.reward_tokens:
                logger.info("sponsor_tokens_insufficient", sponsor_id=sponsor_id)
                return None
            self._sponsors[sponsor_id] = sponsor.model_copy(
                update={"available_tokens": sponsor.available_tokens - sponsor.reward_tokens}
            )
            logger.info("sponsor_tokens_withdrawn", sponsor_id=sponsor_id, amount=sponsor.reward_tokens)
            return sponsor.reward_tokens

    # ── Users ─────────────────────────────────────────────

    async def get_or_create_user(self, phone_number: str) -> User:
        user = self._users.get(phone_number)
        if user is None:
            user = User(phone_number=phone_number, attempts_today=0, last_attempt=_utcnow())
            self._users[phone_number] = user
        return user.model_copy()

    async def update_user(self, user: User) -> None:
        self._users[user.phone_number] = user.model_copy(update={"last_attempt": _utcnow()})

    def put_user(self, user: User) -> None:
        """Seed a user row as-is (fixtures)."""
        self._users[user.phone_number] = user.model_copy()

    # ── Attempts ──────────────────────────────────────────

    async def create_attempt(self, user: User, sponsor: Sponsor, call_sid: str) -> Attempt:
        attempt = Attempt(
            id=self._next_id("attempt"),
            phone_number=user.phone_number,
            call_sid=call_sid,
            sponsor_question=sponsor.challenge_text,
            sponsor_name=sponsor.name,
            sponsor_token_mint=sponsor.token_mint,
            sponsor_total_reward=sponsor.original_tokens,
            sponsor_attempt_reward=sponsor.reward_tokens,
            sponsor_background_url=sponsor.background_url,
            sponsor_challenge_time=sponsor.challenge_time,
        )
        self._attempts[call_sid] = attempt
        return attempt.model_copy()

    async def get_attempt_by_sid(self, call_sid: str) -> Optional[Attempt]:
        attempt = self._attempts.get(call_sid)
        return attempt.model_copy() if attempt else None

    async def get_latest_attempt(self, phone_number: str) -> Optional[Attempt]:
        attempts = [a for a in self._attempts.values() if a.phone_number == phone_number]
        if not attempts:
            return None
        return max(attempts, key=lambda a: (a.created_at, a.id)).model_copy()

    async def list_attempts_since(self, since: datetime) -> list[Attempt]:
        attempts = [a for a in self._attempts.values() if a.created_at >= since]
        attempts.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return [a.model_copy() for a in attempts]

    def _update_attempt(self, call_sid: str, phone_number: str = None, **values) -> None:
        attempt = self._attempts.get(call_sid)
        if attempt is None or (phone_number is not None and attempt.phone_number != phone_number):
            return
        self._attempts[call_sid] = attempt.model_copy(update=values)

    async def update_attempt_judgement(self, call_sid: str, judgement: str) -> None:
        self._update_attempt(call_sid, challenge_status=judgement)

    async def update_attempt_video(self, phone_number: str, video_url: str, call_sid: str) -> None:
        self._update_attempt(call_sid, phone_number, video_url=video_url)

    async def update_attempt_winner(self, phone_number: str, is_winner: bool, call_sid: str) -> None:
        self._update_attempt(call_sid, phone_number, is_winner=is_winner)

    async def update_attempt_winner_url(self, phone_number: str, winner_url: str, call_sid: str) -> None:
        self._update_attempt(call_sid, phone_number, winner_url=winner_url)

    # ── Winners ───────────────────────────────────────────

    async def create_winner(self, name: str, sponsor_id: int) -> Winner:
        winner = Winner(id=self._next_id("winner"), key=str(uuid.uuid4()), name=name, sponsor_id=sponsor_id)
        self._winners[winner.key] = winner
        return winner

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "sponsors": len(self._sponsors),
            "users": len(self._users),
            "attempts": len(self._attempts),
            "winners": len(self._winners),
        }
