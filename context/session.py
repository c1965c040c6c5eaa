"""
Call session — the ephemeral per-call state shared by all webhook stages.

A session holds the sponsor snapshot, the caller's name and the transcript.
Every transcript entry carries a timespan relative to the session start so the
conversation can later be aligned with the call recording (subtitles).

Timing contract:
  - add_system_message() stamps start = end = now (instructions, host speech)
  - add_user_message() starts where the previous entry ended
  - close_last_message() moves the last entry's end to now; it is called when
    Twilio reports that the host's <Say> finished playing, right before the
    next entry is opened
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from models.schemas import CallStage, MessageRole, Sponsor

# Monotonic clock in seconds; swapped out in tests.
clock: Callable[[], float] = time.monotonic


def _now() -> float:
    return clock()


@dataclass
class Timespan:
    start: float
    end: float


@dataclass
class TranscriptLine:
    """An audible transcript entry handed to subtitle rendering."""
    role: MessageRole
    content: str
    timespan: Timespan


@dataclass
class Session:
    sponsor: Sponsor
    caller_name: str = ""
    start: float = field(default_factory=_now)
    messages: list[tuple[MessageRole, str]] = field(default_factory=list)
    timespans: list[Timespan] = field(default_factory=list)
    stage: CallStage = CallStage.START
    # Bumped by the SessionStore on every write; a stale copy cannot be written back
    revision: int = 0

    # ── Transcript ────────────────────────────────────────────

    def add_system_message(self, content: str, role: MessageRole = MessageRole.SYSTEM) -> None:
        now = _now()
        self.messages.append((MessageRole(role), content))
        self.timespans.append(Timespan(start=now, end=now))

    def add_user_message(self, content: str) -> None:
        now = _now()
        start = self.timespans[-1].end if self.timespans else now
        self.messages.append((MessageRole.USER, content))
        self.timespans.append(Timespan(start=start, end=now))

    def close_last_message(self) -> None:
        if self.timespans:
            self.timespans[-1].end = _now()

    def collect(self) -> list[TranscriptLine]:
        """User and host entries with their timespans, system entries dropped."""
        return [
            TranscriptLine(role=role, content=content, timespan=Timespan(span.start, span.end))
            for (role, content), span in zip(self.messages, self.timespans)
            if role != MessageRole.SYSTEM
        ]

    def chat_messages(self) -> list[dict[str, str]]:
        """The transcript in chat-completion format, instructions included."""
        return [{"role": role.value, "content": content} for role, content in self.messages]

    def relative_ms(self, span: Timespan) -> tuple[int, int]:
        """Offsets of a timespan from the session start, in milliseconds."""
        return (
            max(0, round((span.start - self.start) * 1000)),
            max(0, round((span.end - self.start) * 1000)),
        )

    # ── Templates ─────────────────────────────────────────────

    def start_text(self) -> str:
        return render_template(
            self.sponsor.start_text,
            name=self.caller_name,
            duration=str(self.sponsor.challenge_time),
        )


def render_template(text: str, **values: str) -> str:
    """Substitute {key} placeholders; unknown braces are left untouched."""
    for key, value in values.items():
        text = text.replace("{" + key + "}", value)
    return text
