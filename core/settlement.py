"""
Settlement Pipeline — turns a verdict into a payout or a consolation text.

Win path (order matters):
  1. withdraw_tokens()        atomic ledger debit; None → treated as a loss
  2. create Winner row
  3. mark attempt is_winner = true
  4. fresh claim keypair
  5. on-chain transfer        failure → SettlementError, no refund
  6. persist claim URL
  7. SMS won text             {name} {link} {video_url}

Loss path: is_winner = false, SMS lost text ({name}).

Steps after the debit are irreversible from the caller's point of view. A
failed transfer leaves the debit and the winner row in place and is logged
with everything needed to reconcile it by hand.
"""
from __future__ import annotations

import structlog

from channels.sms_adapter import SmsNotifier
from context.session import Session, render_template
from core.errors import SettlementError
from database.store_base import BaseGameStore
from ledger.base import Ledger
from models.schemas import CallStage

logger = structlog.get_logger()


class SettlementPipeline:

    def __init__(self, store: BaseGameStore, ledger: Ledger, notifier: SmsNotifier, claim_url: str):
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._claim_url = claim_url

    def claim_link(self, secret: str) -> str:
        return f"{self._claim_url}?key={secret}"

    async def settle_win(self, session: Session, phone_number: str, call_sid: str, video_url: str) -> CallStage:
        sponsor = session.sponsor
        amount = await self._store.withdraw_tokens(sponsor.id)
        if amount is None:
            logger.info("settlement_downgraded_to_loss", call_sid=call_sid, sponsor_id=sponsor.id)
            return await self.settle_loss(session, phone_number, call_sid)

        winner = await self._store.create_winner(session.caller_name, sponsor.id)
        await self._store.update_attempt_winner(phone_number, True, call_sid)

        claim = self._ledger.new_keypair()
        try:
            signature = await self._ledger.transfer(
                sponsor.private_key, claim.public_key, sponsor.token_mint, amount,
            )
        except Exception as e:
            logger.error(
                "settlement_transfer_failed",
                call_sid=call_sid,
                phone=phone_number,
                sponsor_id=sponsor.id,
                winner_id=winner.id,
                token_mint=sponsor.token_mint,
                amount=amount,
                receiver=claim.public_key,
                error=str(e),
            )
            raise SettlementError(f"Transfer for call {call_sid} failed after debit") from e

        link = self.claim_link(claim.secret)
        await self._store.update_attempt_winner_url(phone_number, link, call_sid)
        logger.info("settlement_paid", call_sid=call_sid, sponsor_id=sponsor.id,
                    amount=amount, signature=signature)

        text = render_template(sponsor.won_text, name=session.caller_name, link=link, video_url=video_url)
        await self._notifier.send(phone_number, text, call_sid=call_sid)
        return CallStage.WON

    async def settle_loss(self, session: Session, phone_number: str, call_sid: str) -> CallStage:
        await self._store.update_attempt_winner(phone_number, False, call_sid)
        text = render_template(session.sponsor.lost_text, name=session.caller_name)
        await self._notifier.send(phone_number, text, call_sid=call_sid)
        logger.info("settlement_lost", call_sid=call_sid, sponsor_id=session.sponsor.id)
        return CallStage.LOST
