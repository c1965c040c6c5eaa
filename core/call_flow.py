"""
Call Flow — the per-call state machine driven by Twilio webhooks.

Every webhook is a stateless HTTP request; the state that survives between
them lives in the SessionStore under the call's CallSid.

    /start ──► /redirect-gather/name ──► /name ──┬─► /challenge/start
                     ▲                           │        │
                     └───── name not found ◄─────┘        ▼
                                         /redirect-gather/challenge/respond
                                                 │   ▲
                                                 ▼   │
                                          /challenge/respond
                                                 │
                          deadline redirect ──► /end ──► /judge ──► (background)
                                                                 judge + settle

/redirect-gather/{path} exists only to stamp the end of the host's last
utterance: Twilio requests it right after the preceding <Say> finished.

The deadline task and the caller's speech race freely; whichever request
reaches the store first wins, and /judge removing the session is the point
after which nothing can change the call.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone

from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from channels.telephony.twiml import TwimlBuilder
from config.settings import Settings
from context.session import Session
from context.session_store import SessionStore
from core.deadline import DeadlineController
from core.errors import WebhookParseError
from core.judge import JudgeStage
from core.tasks import TaskRunner
from database.store_base import BaseGameStore
from models.schemas import CallEvent, CallStage, MessageRole, RecordingEvent, User
from video.handoff import save_recording

logger = structlog.get_logger()

# Routes a /redirect-gather/{path} may hand speech to
GATHER_TARGETS = frozenset({"name", "challenge/respond"})


class CallFlow:

    def __init__(
        self,
        settings: Settings,
        store: BaseGameStore,
        sessions: SessionStore,
        engine,
        telephony,
        deadline: DeadlineController,
        judge: JudgeStage,
        runner: TaskRunner,
    ):
        self._settings = settings
        self._game = settings.game
        self._texts = settings.texts
        self._store = store
        self._sessions = sessions
        self._engine = engine
        self._telephony = telephony
        self._deadline = deadline
        self._judge = judge
        self._runner = runner
        self.twiml = TwimlBuilder(settings.game, settings.global_url)

    # ── /start ────────────────────────────────────────────────

    def _count_attempt(self, user: User) -> None:
        today = datetime.now(timezone.utc).date()
        if user.last_attempt.astimezone(timezone.utc).date() != today:
            user.attempts_today = 1
        else:
            user.attempts_today += 1

    async def start(self, event: CallEvent) -> str:
        call_sid = event.call_sid
        log = logger.bind(call_sid=call_sid, phone=event.from_number)

        user = await self._store.get_or_create_user(event.from_number)
        if user.banned:
            log.info("call_rejected_banned")
            return self.twiml.reject()

        self._count_attempt(user)
        await self._store.update_user(user)
        log.info("call_started", attempts_today=user.attempts_today)

        if user.attempts_today > self._game.daily_response_limit:
            log.info("call_rejected_response_limit")
            return self.twiml.reject()

        if user.attempts_today > self._game.daily_attempt_limit:
            log.info("call_out_of_attempts")
            text = self._texts.out_of_attempts.replace("$attempts", str(self._game.daily_attempt_limit))
            return self.twiml.say_only(text)

        sponsor = await self._store.get_random_sponsor()
        if sponsor is None:
            log.warning("call_rejected_no_sponsor")
            return self.twiml.say_then_hangup(self._texts.no_sponsor)

        await self._store.create_attempt(user, sponsor, call_sid)

        session = Session(sponsor=sponsor)
        session.add_system_message(sponsor.system_instruction)
        session.add_system_message(sponsor.greeting_text, role=MessageRole.ASSISTANT)
        session.stage = CallStage.AWAITING_NAME
        await self._sessions.upsert(call_sid, session)

        self._runner.spawn(self._start_recording(call_sid), name="record_call", call_sid=call_sid)
        log.info("call_session_created", sponsor_id=sponsor.id)
        return self.twiml.say_then_redirect(sponsor.greeting_text, "redirect-gather/name")

    async def _start_recording(self, call_sid: str) -> None:
        """Twilio refuses to record until the call is in-progress, so retry."""
        callback = f"{self._settings.global_url}/recording"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._game.record_retry),
                wait=wait_fixed(self._game.record_retry_wait),
            ):
                with attempt:
                    result = await self._telephony.record_call(call_sid, callback)
        except RetryError as e:
            logger.error("recording_start_failed", call_sid=call_sid,
                         attempts=self._game.record_retry,
                         error=str(e.last_attempt.exception()))
            return
        logger.info("recording_started", call_sid=call_sid, recording_sid=result.get("sid", ""))

    # ── /redirect-gather/{path} ───────────────────────────────

    async def gather(self, path: str, event: CallEvent) -> str:
        path = path.strip("/")
        if path not in GATHER_TARGETS:
            raise WebhookParseError(f"Unknown gather target: {path}")
        await self._sessions.mutate(event.call_sid, lambda s: s.close_last_message())
        return self.twiml.gather(path)

    # ── /name ─────────────────────────────────────────────────

    async def name(self, event: CallEvent) -> str:
        call_sid = event.call_sid
        session = await self._sessions.require(call_sid)
        speech = event.speech_result

        name = None
        if speech:
            try:
                name = await self._engine.extract_name(speech)
            except Exception as e:
                logger.error("name_extraction_failed", call_sid=call_sid, error=str(e))
        logger.info("name_extracted", call_sid=call_sid, found=name is not None,
                    confidence=event.speech_confidence)

        if name:
            session.caller_name = name
            response = session.start_text()
            next_path = "challenge/start"
        else:
            response = self._texts.name_not_found
            next_path = "redirect-gather/name"

        def apply(live: Session) -> None:
            if name and not live.caller_name:
                live.caller_name = name
                live.stage = CallStage.CHALLENGE
            if speech:
                live.add_user_message(speech)
            live.add_system_message(response, role=MessageRole.ASSISTANT)

        await self._sessions.mutate(call_sid, apply)
        return self.twiml.say_then_redirect(response, next_path)

    # ── /challenge/start ──────────────────────────────────────

    async def challenge_start(self, event: CallEvent) -> str:
        def apply(live: Session) -> None:
            live.close_last_message()
            live.stage = CallStage.CHALLENGE

        session = await self._sessions.mutate(event.call_sid, apply)
        self._deadline.schedule(event.call_sid, session.sponsor.challenge_time)
        return self.twiml.gather("challenge/respond")

    # ── /challenge/respond ────────────────────────────────────

    async def challenge_respond(self, event: CallEvent) -> str:
        call_sid = event.call_sid
        if not event.speech_result:
            return self.twiml.redirect("redirect-gather/challenge/respond")

        # Copy out, talk to the model without the lock, write back
        session = await self._sessions.require(call_sid)
        session.add_user_message(event.speech_result)
        try:
            reply = await self._engine.generate_reply(session.chat_messages())
        except Exception as e:
            logger.error("challenge_reply_failed", call_sid=call_sid, error=str(e))
            reply = ""
        if not reply:
            reply = self._texts.apology
        session.add_system_message(reply, role=MessageRole.ASSISTANT)

        if not await self._sessions.replace(call_sid, session):
            # /end or /judge got there first; the reply was never spoken
            logger.warning("challenge_reply_dropped", call_sid=call_sid)
            return self.twiml.empty()
        return self.twiml.say_then_redirect(reply, "redirect-gather/challenge/respond")

    # ── /end ──────────────────────────────────────────────────

    async def end(self, event: CallEvent) -> str:
        def apply(live: Session) -> None:
            live.add_system_message(live.sponsor.end_text, role=MessageRole.ASSISTANT)
            live.stage = CallStage.END

        session = await self._sessions.mutate(event.call_sid, apply)
        logger.info("challenge_ended", call_sid=event.call_sid)
        return self.twiml.say_then_redirect(session.sponsor.end_text, "judge")

    # ── /judge ────────────────────────────────────────────────

    async def judge(self, event: CallEvent) -> str:
        call_sid = event.call_sid
        session = await self._sessions.remove(call_sid)
        if session is None:
            logger.warning("judge_without_session", call_sid=call_sid)
            return self.twiml.empty()

        session.close_last_message()
        session.stage = CallStage.JUDGING
        self._runner.spawn(
            self._judge.run(session, event.from_number, call_sid),
            name="judge", call_sid=call_sid,
        )
        return self.twiml.empty()

    # ── /recording ────────────────────────────────────────────

    async def recording(self, event: RecordingEvent) -> str:
        audio = await self._telephony.download_recording(event.recording_sid)
        await save_recording(self._settings.media, event.call_sid, audio)
        logger.info("recording_saved", call_sid=event.call_sid,
                    recording_sid=event.recording_sid, size=len(audio))
        return self.twiml.empty()
