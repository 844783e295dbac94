"""Local persistence of encrypted wallet records."""

from ecoswap.store.database import WalletStore
from ecoswap.store.models import Base, StoredWallet
from ecoswap.store.repository import ImmutableWalletError, WalletExistsError, WalletRepository

__all__ = [
    "Base",
    "ImmutableWalletError",
    "StoredWallet",
    "WalletExistsError",
    "WalletRepository",
    "WalletStore",
]
