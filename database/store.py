"""
SqlGameStore — Portable SQL queries for PostgreSQL and SQLite.

The reward debit is one conditional UPDATE ... RETURNING so two winners of the
same sponsor can never both draw the last reward.
"""
from __future__ import annotations

import uuid
import structlog
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from config.settings import get_settings
from database.models import AttemptRow, SponsorRow, UserRow, WinnerRow
from database.session import get_session
from database.store_base import BaseGameStore, clamp_challenge_time
from models.schemas import Attempt, Sponsor, User, Winner

logger = structlog.get_logger()


class SqlGameStore(BaseGameStore):
    """
    Persistent game store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL and SQLite.
    """

    # ── Sponsor operations ─────────────────────────────────

    async def create_sponsor(self, sponsor: Sponsor) -> Sponsor:
        sponsor = clamp_challenge_time(sponsor, get_settings().game.max_challenge_time)
        async with get_session() as db:
            row = SponsorRow(**sponsor.model_dump(exclude={"id"}))
            db.add(row)
            await db.flush()
            logger.info("sponsor_created", sponsor_id=row.id, name=row.name)
            return row.to_model()

    async def get_sponsor(self, sponsor_id: int) -> Optional[Sponsor]:
        async with get_session() as db:
            row = await db.get(SponsorRow, sponsor_id)
            return row.to_model() if row else None

    async def get_sponsor_by_public_key(self, public_key: str) -> Optional[Sponsor]:
        async with get_session() as db:
            result = await db.execute(select(SponsorRow).where(SponsorRow.public_key == public_key))
            row = result.scalars().first()
            return row.to_model() if row else None

    async def list_sponsors_by_user(self, user_id: str) -> list[Sponsor]:
        async with get_session() as db:
            result = await db.execute(
                select(SponsorRow).where(SponsorRow.user_id == user_id).order_by(SponsorRow.id)
            )
            return [row.to_model() for row in result.scalars()]

    async def get_random_sponsor(self) -> Optional[Sponsor]:
        async with get_session() as db:
            stmt = (
                select(SponsorRow)
                .where(
                    SponsorRow.active.is_(True),
                    SponsorRow.available_tokens >= SponsorRow.reward_tokens,
                )
                .order_by(func.random())
                .limit(1)
            )
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return row.to_model() if row else None

    async def activate_sponsor(self, public_key: str) -> None:
        async with get_session() as db:
            await db.execute(
                update(SponsorRow)
                .where(SponsorRow.public_key == public_key)
                .values(active=True, initial_funded=True)
            )

    async def withdraw_tokens(self, sponsor_id: int) -> Optional[int]:
        async with get_session() as db:
            stmt = (
                update(SponsorRow)
                .where(
                    SponsorRow.id == sponsor_id,
                    SponsorRow.available_tokens >= SponsorRow.reward_tokens,
                )
                .values(available_tokens=SponsorRow.available_tokens - SponsorRow.reward_tokens)
                .returning(SponsorRow.reward_tokens)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            amount = result.scalar_one_or_none()
            logger.info("sponsor_tokens_withdrawn" if amount is not None else "sponsor_tokens_insufficient",
                        sponsor_id=sponsor_id, amount=amount)
            return amount

    # ── User operations ────────────────────────────────────

    async def get_or_create_user(self, phone_number: str) -> User:
        async with get_session() as db:
            row = await db.get(UserRow, phone_number)
            if row is not None:
                return row.to_model()
        try:
            async with get_session() as db:
                row = UserRow(
                    phone_number=phone_number,
                    attempts_today=0,
                    last_attempt=datetime.now(timezone.utc),
                    banned=False,
                )
                db.add(row)
                await db.flush()
                return row.to_model()
        except IntegrityError:
            # A simultaneous first call from the same number inserted it
            logger.info("user_insert_raced", phone=phone_number)
            async with get_session() as db:
                row = await db.get(UserRow, phone_number)
                return row.to_model()

    async def update_user(self, user: User) -> None:
        async with get_session() as db:
            await db.execute(
                update(UserRow)
                .where(UserRow.phone_number == user.phone_number)
                .values(
                    attempts_today=user.attempts_today,
                    last_attempt=datetime.now(timezone.utc),
                    banned=user.banned,
                )
            )

    # ── Attempt operations ─────────────────────────────────

    async def create_attempt(self, user: User, sponsor: Sponsor, call_sid: str) -> Attempt:
        async with get_session() as db:
            row = AttemptRow(
                phone_number=user.phone_number,
                call_sid=call_sid,
                sponsor_question=sponsor.challenge_text,
                sponsor_name=sponsor.name,
                sponsor_token_mint=sponsor.token_mint,
                sponsor_total_reward=sponsor.original_tokens,
                sponsor_attempt_reward=sponsor.reward_tokens,
                sponsor_background_url=sponsor.background_url,
                sponsor_challenge_time=sponsor.challenge_time,
                challenge_status=None,
                video_url=None,
                twitter_url=None,
                is_winner=None,
                winner_url=None,
            )
            db.add(row)
            await db.flush()
            return row.to_model()

    async def get_attempt_by_sid(self, call_sid: str) -> Optional[Attempt]:
        async with get_session() as db:
            result = await db.execute(select(AttemptRow).where(AttemptRow.call_sid == call_sid))
            row = result.scalar_one_or_none()
            return row.to_model() if row else None

    async def get_latest_attempt(self, phone_number: str) -> Optional[Attempt]:
        async with get_session() as db:
            stmt = (
                select(AttemptRow)
                .where(AttemptRow.phone_number == phone_number)
                .order_by(AttemptRow.created_at.desc(), AttemptRow.id.desc())
                .limit(1)
            )
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return row.to_model() if row else None

    async def list_attempts_since(self, since: datetime) -> list[Attempt]:
        async with get_session() as db:
            stmt = (
                select(AttemptRow)
                .where(AttemptRow.created_at >= since)
                .order_by(AttemptRow.created_at.desc(), AttemptRow.id.desc())
            )
            result = await db.execute(stmt)
            return [row.to_model() for row in result.scalars()]

    async def _update_attempt(self, call_sid: str, phone_number: str = None, **values) -> None:
        async with get_session() as db:
            stmt = update(AttemptRow).where(AttemptRow.call_sid == call_sid)
            if phone_number is not None:
                stmt = stmt.where(AttemptRow.phone_number == phone_number)
            await db.execute(stmt.values(**values))

    async def update_attempt_judgement(self, call_sid: str, judgement: str) -> None:
        await self._update_attempt(call_sid, challenge_status=judgement)

    async def update_attempt_video(self, phone_number: str, video_url: str, call_sid: str) -> None:
        await self._update_attempt(call_sid, phone_number, video_url=video_url)

    async def update_attempt_winner(self, phone_number: str, is_winner: bool, call_sid: str) -> None:
        await self._update_attempt(call_sid, phone_number, is_winner=is_winner)

    async def update_attempt_winner_url(self, phone_number: str, winner_url: str, call_sid: str) -> None:
        await self._update_attempt(call_sid, phone_number, winner_url=winner_url)

    # ── Winner operations ──────────────────────────────────

    async def create_winner(self, name: str, sponsor_id: int) -> Winner:
        async with get_session() as db:
            row = WinnerRow(key=str(uuid.uuid4()), name=name, sponsor_id=sponsor_id)
            db.add(row)
            await db.flush()
            return row.to_model()
