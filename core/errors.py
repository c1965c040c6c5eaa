"""Exception hierarchy for the call engine."""
from __future__ import annotations


class GameCallError(Exception):
    """Base class for all call-engine errors."""


class SessionNotFoundError(GameCallError):
    """A webhook arrived for a call that has no live session."""

    def __init__(self, call_sid: str):
        super().__init__(f"No session for call {call_sid}")
        self.call_sid = call_sid


class WebhookAuthError(GameCallError):
    """Missing or invalid X-Twilio-Signature."""


class WebhookParseError(GameCallError):
    """The webhook body is missing required fields."""


class JudgementError(GameCallError):
    """The judge model returned no usable verdict."""


class SettlementError(GameCallError):
    """The on-chain transfer failed after the ledger debit."""


class TransactionRejectedError(GameCallError):
    """A signed transaction from a wallet is malformed or lacks the treasury signature."""


class WalletAuthError(GameCallError):
    """A wallet signature over the request message did not verify."""


class SponsorNotFoundError(GameCallError):
    """No sponsor owns the given wallet public key."""

    def __init__(self, public_key: str):
        super().__init__(f"No sponsor with wallet {public_key}")
        self.public_key = public_key


class SponsorActivationError(GameCallError):
    """The sponsor is already funded or its deposit did not arrive."""
