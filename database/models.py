"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, SQLite.

Key design decisions:
  - Integer autoincrement keys for sponsors/attempts/winners, phone number
    as the natural key for users.
  - Token balances are BigInteger; the SPL amounts are raw base units.
  - Attempt rows copy the sponsor fields at call time so later sponsor edits
    do not rewrite history.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.schemas import Attempt, Sponsor, User, Winner


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_key() -> str:
    return str(uuid.uuid4())


# ──────────────────────────────────────────────────────────────
#  Sponsors
# ──────────────────────────────────────────────────────────────

class SponsorRow(Base):
    __tablename__ = "sponsors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), default="")
    active: Mapped[bool] = mapped_column(Boolean, default=False)
    background_url: Mapped[str] = mapped_column(String(512), default="")

    private_key: Mapped[str] = mapped_column(String(128), default="")
    public_key: Mapped[str] = mapped_column(String(64), default="", index=True)
    token_mint: Mapped[str] = mapped_column(String(64), default="")

    original_tokens: Mapped[int] = mapped_column(BigInteger, default=0)
    available_tokens: Mapped[int] = mapped_column(BigInteger, default=0)
    reward_tokens: Mapped[int] = mapped_column(BigInteger, default=0)

    challenge_time: Mapped[int] = mapped_column(Integer, default=30)
    system_instruction: Mapped[str] = mapped_column(Text, default="")
    greeting_text: Mapped[str] = mapped_column(Text, default="")
    start_text: Mapped[str] = mapped_column(Text, default="")
    challenge_text: Mapped[str] = mapped_column(Text, default="")
    end_text: Mapped[str] = mapped_column(Text, default="")
    won_text: Mapped[str] = mapped_column(Text, default="")
    lost_text: Mapped[str] = mapped_column(Text, default="")
    rating_threshold: Mapped[int] = mapped_column(Integer, default=6)
    initial_funded: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_sponsors_active", "active"),
    )

    def to_model(self) -> Sponsor:
        return Sponsor(
            id=self.id, name=self.name, user_id=self.user_id, active=self.active,
            background_url=self.background_url, private_key=self.private_key,
            public_key=self.public_key, token_mint=self.token_mint,
            original_tokens=self.original_tokens,
            available_tokens=self.available_tokens,
            reward_tokens=self.reward_tokens, challenge_time=self.challenge_time,
            system_instruction=self.system_instruction,
            greeting_text=self.greeting_text, start_text=self.start_text,
            challenge_text=self.challenge_text, end_text=self.end_text,
            won_text=self.won_text, lost_text=self.lost_text,
            rating_threshold=self.rating_threshold,
            initial_funded=self.initial_funded,
        )


# ──────────────────────────────────────────────────────────────
#  Users
# ──────────────────────────────────────────────────────────────

class UserRow(Base):
    __tablename__ = "users"

    phone_number: Mapped[str] = mapped_column(String(32), primary_key=True)
    attempts_today: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    banned: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_model(self) -> User:
        last = self.last_attempt
        # SQLite drops tzinfo on the way back
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return User(
            phone_number=self.phone_number,
            attempts_today=self.attempts_today,
            last_attempt=last,
            banned=self.banned,
        )


# ──────────────────────────────────────────────────────────────
#  Attempts
# ──────────────────────────────────────────────────────────────

class AttemptRow(Base):
    __tablename__ = "attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    call_sid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    sponsor_question: Mapped[str] = mapped_column(Text, default="")
    sponsor_name: Mapped[str] = mapped_column(String(256), default="")
    sponsor_token_mint: Mapped[str] = mapped_column(String(64), default="")
    sponsor_total_reward: Mapped[int] = mapped_column(BigInteger, default=0)
    sponsor_attempt_reward: Mapped[int] = mapped_column(BigInteger, default=0)
    sponsor_background_url: Mapped[str] = mapped_column(String(512), default="")
    sponsor_challenge_time: Mapped[int] = mapped_column(Integer, default=0)

    challenge_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    twitter_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    is_winner: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    winner_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_attempts_phone_created", "phone_number", "created_at"),
    )

    def to_model(self) -> Attempt:
        return Attempt(
            id=self.id, phone_number=self.phone_number, call_sid=self.call_sid,
            sponsor_question=self.sponsor_question,
            sponsor_name=self.sponsor_name,
            sponsor_token_mint=self.sponsor_token_mint,
            sponsor_total_reward=self.sponsor_total_reward,
            sponsor_attempt_reward=self.sponsor_attempt_reward,
            sponsor_background_url=self.sponsor_background_url,
            sponsor_challenge_time=self.sponsor_challenge_time,
            challenge_status=self.challenge_status, video_url=self.video_url,
            twitter_url=self.twitter_url, is_winner=self.is_winner,
            winner_url=self.winner_url, created_at=self.created_at,
        )


# ──────────────────────────────────────────────────────────────
#  Winners
# ──────────────────────────────────────────────────────────────

class WinnerRow(Base):
    __tablename__ = "winners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(64), unique=True, default=_new_key)
    name: Mapped[str] = mapped_column(String(256), default="")
    sponsor_id: Mapped[int] = mapped_column(Integer, ForeignKey("sponsors.id"), nullable=False)

    def to_model(self) -> Winner:
        return Winner(id=self.id, key=self.key, name=self.name, sponsor_id=self.sponsor_id)
