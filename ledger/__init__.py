"""Token rail for settling rewards."""
from ledger.base import WalletKeypair, Ledger
from ledger.solana_ledger import SolanaLedger

__all__ = ["WalletKeypair", "Ledger", "SolanaLedger"]
