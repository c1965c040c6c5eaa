"""
Sponsor Launchpad — how a sponsor gets from a form to a live game.

    POST /api/payment           launch fee transaction for the sponsor's wallet to sign
    POST /api/launchpad         signed fee in, sponsor row out (inactive, own fresh wallet)
    POST /api/deposit           token deposit transaction into the sponsor's wallet
    POST /api/activate-sponsor  signed deposit in; once the tokens are on-chain the
                                sponsor becomes active and callers can draw it

A sponsor is only ever activated after its wallet holds original_tokens, so
every reward the store debits is backed on-chain.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from config.settings import LaunchpadConfig
from core.errors import SponsorActivationError, SponsorNotFoundError, WalletAuthError
from database.store_base import BaseGameStore
from ledger.base import Ledger
from models.schemas import Attempt, Sponsor

logger = structlog.get_logger()


class SponsorLaunch(BaseModel):
    """What a sponsor fills in on the launchpad."""
    name: str
    user_id: str                     # the launching wallet's public key
    background_url: str = ""
    token_mint: str
    original_tokens: int
    reward_tokens: int
    challenge_time: int
    system_instruction: str
    challenge: str
    rating_threshold: int = 6
    transaction: str                 # signed launch fee, base64


def listing_message(now: datetime) -> str:
    """What a wallet signs to list its sponsors; valid for the current UTC hour."""
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d %H:00:00")


class SponsorService:

    def __init__(self, store: BaseGameStore, ledger: Ledger, config: LaunchpadConfig):
        self._store = store
        self._ledger = ledger
        self._config = config

    async def _require(self, public_key: str) -> Sponsor:
        sponsor = await self._store.get_sponsor_by_public_key(public_key)
        if sponsor is None:
            raise SponsorNotFoundError(public_key)
        return sponsor

    # ── Launch ────────────────────────────────────────────────

    async def payment_transaction(self, sender_public_key: str) -> str:
        return await self._ledger.build_launch_payment(sender_public_key, self._config.launch_fee_lamports)

    async def launch(self, request: SponsorLaunch) -> tuple[Sponsor, str]:
        """Submit the launch fee, then create the sponsor with a fresh wallet."""
        signature = await self._ledger.submit_cosigned(request.transaction)

        wallet = self._ledger.new_keypair()
        sponsor = await self._store.create_sponsor(Sponsor(
            name=request.name.strip(),
            user_id=request.user_id.strip(),
            active=False,
            background_url=request.background_url.strip(),
            private_key=wallet.secret,
            public_key=wallet.public_key,
            token_mint=request.token_mint.strip(),
            original_tokens=request.original_tokens,
            available_tokens=request.original_tokens,
            reward_tokens=request.reward_tokens,
            challenge_time=request.challenge_time,
            system_instruction=request.system_instruction,
            greeting_text=self._config.greeting_text,
            challenge_text=request.challenge,
            start_text=f"{self._config.start_prefix} {request.challenge}",
            end_text=self._config.end_text,
            won_text=self._config.won_text,
            lost_text=self._config.lost_text,
            rating_threshold=request.rating_threshold,
            initial_funded=False,
        ))
        logger.info("sponsor_launched", sponsor_id=sponsor.id, wallet=sponsor.public_key,
                    user_id=sponsor.user_id, fee_signature=signature)
        return sponsor, signature

    # ── Funding ───────────────────────────────────────────────

    async def deposit_transaction(self, sender_public_key: str, sponsor_public_key: str) -> str:
        sponsor = await self._require(sponsor_public_key)
        return await self._ledger.build_token_deposit(
            sender_public_key, sponsor.public_key, sponsor.token_mint, sponsor.original_tokens,
        )

    async def activate(self, sponsor_public_key: str, transaction: str) -> tuple[Sponsor, str]:
        """Submit the signed deposit and activate once the wallet holds the tokens."""
        sponsor = await self._require(sponsor_public_key)
        if sponsor.initial_funded:
            raise SponsorActivationError("Initial deposit was already made")

        signature = await self._ledger.submit_cosigned(transaction)
        balance = await self._ledger.token_balance(sponsor.public_key, sponsor.token_mint)
        if balance < sponsor.original_tokens:
            logger.error("sponsor_deposit_short", sponsor_id=sponsor.id, balance=balance,
                         expected=sponsor.original_tokens, signature=signature)
            raise SponsorActivationError(
                f"Wallet holds {balance} tokens, {sponsor.original_tokens} required"
            )

        await self._store.activate_sponsor(sponsor.public_key)
        logger.info("sponsor_activated", sponsor_id=sponsor.id, balance=balance, signature=signature)
        return await self._require(sponsor_public_key), signature

    # ── Listings ──────────────────────────────────────────────

    async def sponsors_for_wallet(
        self, public_key: str, signature: str, now: Optional[datetime] = None,
    ) -> list[Sponsor]:
        message = listing_message(now or datetime.now(timezone.utc))
        if not self._ledger.verify_message(public_key, signature, message):
            raise WalletAuthError("Invalid wallet signature")
        return await self._store.list_sponsors_by_user(public_key)

    async def recent_attempts(self, now: Optional[datetime] = None) -> list[Attempt]:
        """Attempts of the last listing_days that already have a video."""
        since = (now or datetime.now(timezone.utc)) - timedelta(days=self._config.listing_days)
        return [a for a in await self._store.list_attempts_since(since) if a.video_url]
