"""Encrypted wallet storage and scoped unlocking."""

from ecoswap.wallet.base import WalletRecord
from ecoswap.wallet.vault import UnlockedWallet, WalletVault

__all__ = [
    "UnlockedWallet",
    "WalletRecord",
    "WalletVault",
]
