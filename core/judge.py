"""Judgment Stage — the post-call verdict, run after the session is removed."""
from __future__ import annotations

import structlog

from context.session import Session
from core.engine import GameEngine
from core.settlement import SettlementPipeline
from core.tasks import TaskRunner
from database.store_base import BaseGameStore
from models.schemas import CallStage
from video.handoff import RenderHandoff

logger = structlog.get_logger()


class JudgeStage:

    def __init__(
        self,
        engine: GameEngine,
        store: BaseGameStore,
        settlement: SettlementPipeline,
        handoff: RenderHandoff,
        runner: TaskRunner,
        video_base_url: str,
    ):
        self._engine = engine
        self._store = store
        self._settlement = settlement
        self._handoff = handoff
        self._runner = runner
        self._video_base_url = video_base_url.rstrip("/")

    def video_url(self, call_sid: str) -> str:
        return f"{self._video_base_url}/{call_sid}.mp4"

    async def run(self, session: Session, phone_number: str, call_sid: str) -> CallStage:
        """
        Judge the call, record the verdict, kick off rendering and settle.
        JudgementError (unusable verdict) propagates and ends the task.
        """
        session.stage = CallStage.JUDGING
        judgement = await self._engine.judge(session.chat_messages())
        logger.info("call_judged", call_sid=call_sid, won_prize=judgement.won_prize,
                    rating=judgement.rating)

        await self._store.update_attempt_judgement(call_sid, judgement.explanation)

        self._runner.spawn(
            self._handoff.run(call_sid, session, judgement.rating),
            name="render_handoff", call_sid=call_sid,
        )

        video_url = self.video_url(call_sid)
        await self._store.update_attempt_video(phone_number, video_url, call_sid)

        if judgement.won_prize:
            stage = await self._settlement.settle_win(session, phone_number, call_sid, video_url)
        else:
            stage = await self._settlement.settle_loss(session, phone_number, call_sid)
        session.stage = stage
        return stage
