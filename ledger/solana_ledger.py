"""
SolanaLedger — SPL token payouts from a sponsor wallet.

Transfer flow:
1. Look up the mint account; its owner is the token program (Token or Token-2022)
2. Derive the sender and receiver associated token accounts, creating any
   that does not exist yet (paid by the sender)
3. Send one transaction: compute budget + SPL transfer, signed by the sender
4. Wait for confirmation

Any RPC error propagates; the caller decides whether the payout is lost.

Launchpad transactions are built the other way round: the treasury pays the
fee and signs first, the sponsor's wallet adds its signature in the browser,
and submit_cosigned() sends the result after checking the treasury signed it.
"""
from __future__ import annotations

import base64
import binascii
import structlog
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.errors import BincodeError
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams as SolTransferParams
from solders.system_program import transfer as sol_transfer
from solders.transaction import Transaction
from spl.token.instructions import (
    TransferParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer,
)

from config.settings import LedgerConfig
from core.errors import TransactionRejectedError
from ledger.base import Ledger, WalletKeypair

logger = structlog.get_logger()


class SolanaLedger(Ledger):

    def __init__(self, config: LedgerConfig):
        self._config = config
        self._client: Optional[AsyncClient] = None

    def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self._config.rpc_url, commitment=Confirmed)
        return self._client

    def new_keypair(self) -> WalletKeypair:
        keypair = Keypair()
        return WalletKeypair(public_key=str(keypair.pubkey()), secret=str(keypair))

    # ── Transfers ─────────────────────────────────────────────

    def _budget(self) -> list[Instruction]:
        return [
            set_compute_unit_limit(self._config.compute_unit_limit),
            set_compute_unit_price(self._config.compute_unit_price),
        ]

    async def _send(self, payer: Keypair, instructions: list[Instruction]) -> str:
        client = self._get_client()
        blockhash = (await client.get_latest_blockhash()).value.blockhash
        message = Message(self._budget() + instructions, payer.pubkey())
        tx = Transaction([payer], message, blockhash)
        signature = (await client.send_transaction(tx, opts=TxOpts(preflight_commitment=Confirmed))).value
        await client.confirm_transaction(signature, commitment=Confirmed)
        return str(signature)

    async def _token_program(self, mint: Pubkey) -> Pubkey:
        account = (await self._get_client().get_account_info(mint)).value
        if account is None:
            raise ValueError(f"Token mint {mint} not found")
        return account.owner

    async def _ensure_ata(
        self, payer: Keypair, owner: Pubkey, mint: Pubkey, token_program: Pubkey,
    ) -> Pubkey:
        ata = get_associated_token_address(owner, mint, token_program)
        existing = (await self._get_client().get_account_info(ata)).value
        if existing is not None:
            return ata
        await self._send(payer, [
            create_associated_token_account(payer.pubkey(), owner, mint, token_program),
        ])
        logger.info("solana_ata_created", owner=str(owner), ata=str(ata))
        return ata

    async def transfer(
        self,
        sender_private_key: str,
        receiver_public_key: str,
        token_mint: str,
        amount: int,
    ) -> str:
        sender = Keypair.from_base58_string(sender_private_key)
        receiver = Pubkey.from_string(receiver_public_key)
        mint = Pubkey.from_string(token_mint)

        token_program = await self._token_program(mint)
        source = await self._ensure_ata(sender, sender.pubkey(), mint, token_program)
        destination = await self._ensure_ata(sender, receiver, mint, token_program)

        ix = transfer(TransferParams(
            program_id=token_program,
            source=source,
            dest=destination,
            owner=sender.pubkey(),
            amount=amount,
        ))
        signature = await self._send(sender, [ix])
        logger.info("solana_transfer_confirmed", mint=token_mint,
                    receiver=receiver_public_key, amount=amount, signature=signature)
        return signature

    async def token_balance(self, owner_public_key: str, token_mint: str) -> int:
        mint = Pubkey.from_string(token_mint)
        token_program = await self._token_program(mint)
        ata = get_associated_token_address(Pubkey.from_string(owner_public_key), mint, token_program)
        client = self._get_client()
        if (await client.get_account_info(ata)).value is None:
            return 0
        return int((await client.get_token_account_balance(ata)).value.amount)

    # ── Launchpad ─────────────────────────────────────────────

    def _treasury(self) -> Keypair:
        if not self._config.treasury_private_key:
            raise ValueError("ledger.treasury_private_key is not configured")
        return Keypair.from_base58_string(self._config.treasury_private_key)

    async def _presign(self, payer: Keypair, instructions: list[Instruction]) -> str:
        blockhash = (await self._get_client().get_latest_blockhash()).value.blockhash
        tx = Transaction.new_unsigned(Message(instructions + self._budget(), payer.pubkey()))
        tx.partial_sign([payer], blockhash)
        return base64.b64encode(bytes(tx)).decode()

    async def build_launch_payment(self, sender_public_key: str, lamports: int) -> str:
        treasury = self._treasury()
        ix = sol_transfer(SolTransferParams(
            from_pubkey=Pubkey.from_string(sender_public_key),
            to_pubkey=treasury.pubkey(),
            lamports=lamports,
        ))
        return await self._presign(treasury, [ix])

    async def build_token_deposit(
        self,
        sender_public_key: str,
        receiver_public_key: str,
        token_mint: str,
        amount: int,
    ) -> str:
        treasury = self._treasury()
        sender = Pubkey.from_string(sender_public_key)
        mint = Pubkey.from_string(token_mint)

        token_program = await self._token_program(mint)
        source = await self._ensure_ata(treasury, sender, mint, token_program)
        destination = await self._ensure_ata(treasury, Pubkey.from_string(receiver_public_key),
                                             mint, token_program)
        ix = transfer(TransferParams(
            program_id=token_program,
            source=source,
            dest=destination,
            owner=sender,
            amount=amount,
        ))
        return await self._presign(treasury, [ix])

    async def submit_cosigned(self, transaction: str) -> str:
        try:
            tx = Transaction.from_bytes(base64.b64decode(transaction, validate=True))
        except (binascii.Error, BincodeError, ValueError) as e:
            raise TransactionRejectedError(f"Undecodable transaction: {e}") from e

        treasury = Pubkey.from_string(self._config.treasury_public_key)
        signers = tx.message.account_keys[:tx.message.header.num_required_signatures]
        treasury_signed = any(
            key == treasury and tx.signatures[i] != Signature.default()
            for i, key in enumerate(signers)
        )
        if not treasury_signed:
            raise TransactionRejectedError("Transaction is not signed by the treasury")

        client = self._get_client()
        signature = (await client.send_raw_transaction(
            bytes(tx), opts=TxOpts(preflight_commitment=Confirmed),
        )).value
        await client.confirm_transaction(signature, commitment=Confirmed)
        logger.info("solana_cosigned_confirmed", signature=str(signature))
        return str(signature)

    def verify_message(self, public_key: str, signature: str, message: str) -> bool:
        try:
            return Signature.from_string(signature).verify(
                Pubkey.from_string(public_key), message.encode(),
            )
        except ValueError:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
