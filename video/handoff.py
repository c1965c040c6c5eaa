"""
Rendering hand-off — prepares everything a call video needs.

After judging, the engine waits for the call recording to land on disk, then
writes the subtitles and the reviewer comment next to it and hands a RenderJob
to the renderer. Encoding and upload live outside this service; without a
renderer the job files are simply left for an external worker.

Layout per call:
    {recordings_dir}/{call_sid}/audio.mp3       /recording webhook, renamed from audio.mp3.part
    {recordings_dir}/{call_sid}/subtitles.srt
    {recordings_dir}/{call_sid}/comment.txt
    {drafts_dir}/{call_sid}.mp4                 renderer output
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from config.settings import MediaConfig
from context.session import Session
from database.store_base import BaseGameStore

logger = structlog.get_logger()


class BackgroundMode(str, Enum):
    GENERATED = "generated"     # good calls get a generated background
    SPONSOR = "sponsor"         # the sponsor's stock background


@dataclass
class RenderJob:
    call_sid: str
    audio_path: Path
    subtitles_path: Path
    comment_path: Path
    output_path: Path
    background: BackgroundMode
    background_url: str
    rating: int
    comment: str


Renderer = Callable[[RenderJob], Awaitable[None]]


def _srt_timestamp(ms: int) -> str:
    hours, ms = divmod(ms, 3_600_000)
    minutes, ms = divmod(ms, 60_000)
    seconds, ms = divmod(ms, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{ms:03d}"


def build_srt(session: Session) -> str:
    """Subtitles for every audible transcript entry, timed from the call start."""
    blocks = []
    for index, line in enumerate(session.collect(), start=1):
        start_ms, end_ms = session.relative_ms(line.timespan)
        blocks.append(
            f"{index}\n{_srt_timestamp(start_ms)} --> {_srt_timestamp(end_ms)}\n{line.content}\n"
        )
    return "\n".join(blocks)


def recording_path(media: MediaConfig, call_sid: str) -> Path:
    return Path(media.recordings_dir) / call_sid / "audio.mp3"


def _write_recording(path: Path, audio: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".part")
    partial.write_bytes(audio)
    partial.replace(path)


async def save_recording(media: MediaConfig, call_sid: str, audio: bytes) -> Path:
    """Store the call audio; it appears under its final name only once complete."""
    path = recording_path(media, call_sid)
    await asyncio.to_thread(_write_recording, path, audio)
    return path


class RenderHandoff:

    def __init__(self, media: MediaConfig, store: BaseGameStore, renderer: Optional[Renderer] = None):
        self._media = media
        self._store = store
        self._renderer = renderer

    async def _wait_for_recording(self, path: Path) -> None:
        while not path.exists():
            await asyncio.sleep(self._media.recording_poll_interval)

    async def prepare(self, call_sid: str, session: Session, rating: int) -> Optional[RenderJob]:
        """Build the job for one call; None when the recording never arrived."""
        call_dir = Path(self._media.recordings_dir) / call_sid
        drafts_dir = Path(self._media.drafts_dir)
        call_dir.mkdir(parents=True, exist_ok=True)
        drafts_dir.mkdir(parents=True, exist_ok=True)

        audio_path = recording_path(self._media, call_sid)
        try:
            await asyncio.wait_for(self._wait_for_recording(audio_path), self._media.recording_timeout)
        except asyncio.TimeoutError:
            logger.error("recording_wait_timed_out", call_sid=call_sid,
                         timeout=self._media.recording_timeout)
            return None

        subtitles_path = call_dir / "subtitles.srt"
        subtitles_path.write_text(build_srt(session), encoding="utf-8")

        attempt = await self._store.get_attempt_by_sid(call_sid)
        status = (attempt.challenge_status if attempt else None) or ""
        comment = f"{status} Sponsored by {session.sponsor.name}."
        comment_path = call_dir / "comment.txt"
        comment_path.write_text(comment, encoding="utf-8")

        background = (
            BackgroundMode.GENERATED
            if rating >= session.sponsor.rating_threshold
            else BackgroundMode.SPONSOR
        )
        return RenderJob(
            call_sid=call_sid,
            audio_path=audio_path,
            subtitles_path=subtitles_path,
            comment_path=comment_path,
            output_path=drafts_dir / f"{call_sid}.mp4",
            background=background,
            background_url=session.sponsor.background_url,
            rating=rating,
            comment=comment,
        )

    async def run(self, call_sid: str, session: Session, rating: int) -> Optional[RenderJob]:
        job = await self.prepare(call_sid, session, rating)
        if job is None:
            return None
        logger.info("render_job_ready", call_sid=call_sid, background=job.background.value, rating=rating)
        if self._renderer is not None:
            await self._renderer(job)
        return job
