"""
Abstract Game Store — Interface for all persistence backends.

Implementations:
  - SqlGameStore      (PostgreSQL / SQLite via SQLAlchemy)
  - InMemoryGameStore (dict-based, single-process, no persistence)

withdraw_tokens() is the payout exclusivity point: implementations must make
the balance check and the decrement a single atomic step.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from models.schemas import Attempt, Sponsor, User, Winner


def clamp_challenge_time(sponsor: Sponsor, max_seconds: int) -> Sponsor:
    """Sponsors may not ask for a challenge longer than the configured cap."""
    if sponsor.challenge_time <= max_seconds:
        return sponsor
    return sponsor.model_copy(update={"challenge_time": max_seconds})


class BaseGameStore(ABC):
    """Interface that all game store backends must implement."""

    # ── Sponsors ──────────────────────────────────────────────

    @abstractmethod
    async def create_sponsor(self, sponsor: Sponsor) -> Sponsor:
        ...

    @abstractmethod
    async def get_sponsor(self, sponsor_id: int) -> Optional[Sponsor]:
        ...

    @abstractmethod
    async def get_sponsor_by_public_key(self, public_key: str) -> Optional[Sponsor]:
        ...

    @abstractmethod
    async def list_sponsors_by_user(self, user_id: str) -> list[Sponsor]:
        """Sponsors launched by one wallet, oldest first."""
        ...

    @abstractmethod
    async def get_random_sponsor(self) -> Optional[Sponsor]:
        """An active sponsor that can still pay out one reward, or None."""
        ...

    @abstractmethod
    async def activate_sponsor(self, public_key: str) -> None:
        ...

    @abstractmethod
    async def withdraw_tokens(self, sponsor_id: int) -> Optional[int]:
        """Debit reward_tokens if available; return the amount or None."""
        ...

    # ── Users ─────────────────────────────────────────────────

    @abstractmethod
    async def get_or_create_user(self, phone_number: str) -> User:
        ...

    @abstractmethod
    async def update_user(self, user: User) -> None:
        ...

    # ── Attempts ──────────────────────────────────────────────

    @abstractmethod
    async def create_attempt(self, user: User, sponsor: Sponsor, call_sid: str) -> Attempt:
        ...

    @abstractmethod
    async def get_attempt_by_sid(self, call_sid: str) -> Optional[Attempt]:
        ...

    @abstractmethod
    async def get_latest_attempt(self, phone_number: str) -> Optional[Attempt]:
        ...

    @abstractmethod
    async def list_attempts_since(self, since: datetime) -> list[Attempt]:
        """Attempts created at or after since, newest first."""
        ...

    @abstractmethod
    async def update_attempt_judgement(self, call_sid: str, judgement: str) -> None:
        ...

    @abstractmethod
    async def update_attempt_video(self, phone_number: str, video_url: str, call_sid: str) -> None:
        ...

    @abstractmethod
    async def update_attempt_winner(self, phone_number: str, is_winner: bool, call_sid: str) -> None:
        ...

    @abstractmethod
    async def update_attempt_winner_url(self, phone_number: str, winner_url: str, call_sid: str) -> None:
        ...

    # ── Winners ───────────────────────────────────────────────

    @abstractmethod
    async def create_winner(self, name: str, sponsor_id: int) -> Winner:
        ...
