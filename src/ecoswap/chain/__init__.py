"""Solana ledger access: plans, instructions, RPC and the ledger client."""

from ecoswap.chain.base import (
    AssetMetadata,
    SignatureStatus,
    SignedTransaction,
    TransferPlan,
    UnsignedTransaction,
)
from ecoswap.chain.client import LedgerClient
from ecoswap.chain.rpc import SolanaRpc

__all__ = [
    "AssetMetadata",
    "LedgerClient",
    "SignatureStatus",
    "SignedTransaction",
    "SolanaRpc",
    "TransferPlan",
    "UnsignedTransaction",
]
