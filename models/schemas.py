"""
Core data models for the GameCall system.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class CallStage(str, Enum):
    START = "start"
    AWAITING_NAME = "awaiting_name"
    CHALLENGE = "challenge"
    END = "end"
    JUDGING = "judging"
    WON = "won"
    LOST = "lost"
    REJECTED = "rejected"
    OUT_OF_ATTEMPTS = "out_of_attempts"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TwilioCallStatus(str, Enum):
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    CANCELED = "canceled"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"


# ──────────────────────────────────────────────────────────────
#  Sponsor — funds a challenge and its reward
# ──────────────────────────────────────────────────────────────

class Sponsor(BaseModel):
    """A sponsor row. Frozen so a call keeps an immutable snapshot."""
    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str
    user_id: str = ""
    active: bool = False
    background_url: str = ""
    private_key: str = ""                     # base58 wallet secret
    public_key: str = ""
    token_mint: str = ""
    original_tokens: int = 0
    available_tokens: int = 0
    reward_tokens: int = 0
    challenge_time: int = 30                  # seconds
    system_instruction: str = ""
    greeting_text: str = ""
    start_text: str = ""
    challenge_text: str = ""
    end_text: str = ""
    won_text: str = ""
    lost_text: str = ""
    rating_threshold: int = 6
    initial_funded: bool = False


# ──────────────────────────────────────────────────────────────
#  User — a caller, keyed by phone number
# ──────────────────────────────────────────────────────────────

class User(BaseModel):
    phone_number: str
    attempts_today: int = 0
    last_attempt: datetime = Field(default_factory=_utcnow)
    banned: bool = False


# ──────────────────────────────────────────────────────────────
#  Attempt — one row per call
# ──────────────────────────────────────────────────────────────

class Attempt(BaseModel):
    id: int = 0
    phone_number: str
    call_sid: str
    sponsor_question: str = ""
    sponsor_name: str = ""
    sponsor_token_mint: str = ""
    sponsor_total_reward: int = 0
    sponsor_attempt_reward: int = 0
    sponsor_background_url: str = ""
    sponsor_challenge_time: int = 0
    challenge_status: Optional[str] = None    # judgement explanation
    video_url: Optional[str] = None
    twitter_url: Optional[str] = None
    is_winner: Optional[bool] = None
    winner_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Winner — created only on a successful settlement
# ──────────────────────────────────────────────────────────────

class Winner(BaseModel):
    id: int = 0
    key: str
    name: str
    sponsor_id: int


# ──────────────────────────────────────────────────────────────
#  Judgement — structured verdict from the language model
# ──────────────────────────────────────────────────────────────

class Judgement(BaseModel):
    won_prize: bool
    rating: int
    explanation: str

    @field_validator("rating")
    @classmethod
    def _clamp_rating(cls, v: int) -> int:
        return min(max(v, 1), 10)


# ──────────────────────────────────────────────────────────────
#  Webhook payloads
# ──────────────────────────────────────────────────────────────

class CallEvent(BaseModel):
    """A Twilio voice webhook (call status or gather result)."""
    call_sid: str
    from_number: str
    to_number: str
    status: TwilioCallStatus
    speech_result: Optional[str] = None
    speech_confidence: Optional[float] = None


class RecordingEvent(BaseModel):
    """A Twilio recording status callback."""
    call_sid: str
    recording_sid: str
