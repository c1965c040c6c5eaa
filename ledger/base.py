"""
Abstract Ledger — Interface for the token rail rewards are paid on.

Implementations:
  - SolanaLedger (SPL token transfers over JSON-RPC)

Besides payouts the ledger serves the sponsor launchpad: it builds the launch
fee and deposit transactions the sponsor's wallet signs, submits them once
they come back signed, and reads token balances to confirm a deposit landed.
Unsigned and partially signed transactions travel as base64 strings.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WalletKeypair:
    """A freshly generated wallet: a claim wallet for a winner or a sponsor's wallet."""
    public_key: str
    secret: str


class Ledger(ABC):

    @abstractmethod
    def new_keypair(self) -> WalletKeypair:
        ...

    @abstractmethod
    async def transfer(
        self,
        sender_private_key: str,
        receiver_public_key: str,
        token_mint: str,
        amount: int,
    ) -> str:
        """Move amount base units of token_mint; return the transaction signature."""
        ...

    @abstractmethod
    async def token_balance(self, owner_public_key: str, token_mint: str) -> int:
        """Base units of token_mint held by the owner's token account (0 if it has none)."""
        ...

    # ── Launchpad ─────────────────────────────────────────────

    @abstractmethod
    async def build_launch_payment(self, sender_public_key: str, lamports: int) -> str:
        """Launch fee transfer to the treasury, fee-paid and pre-signed by the treasury."""
        ...

    @abstractmethod
    async def build_token_deposit(
        self,
        sender_public_key: str,
        receiver_public_key: str,
        token_mint: str,
        amount: int,
    ) -> str:
        """Token deposit into a sponsor wallet, fee-paid and pre-signed by the treasury."""
        ...

    @abstractmethod
    async def submit_cosigned(self, transaction: str) -> str:
        """Send a transaction built above once the user signed it; return its signature.

        Raises TransactionRejectedError when it cannot be decoded or was not
        co-signed by the treasury.
        """
        ...

    @abstractmethod
    def verify_message(self, public_key: str, signature: str, message: str) -> bool:
        """True when signature is the wallet's signature over message."""
        ...

    async def close(self) -> None:
        pass
