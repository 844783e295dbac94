"""Backend collaborator interface.

The application backend initiates each flow step (returning where the
funds go, which endpoint to use and the caller's encrypted wallet) and
records the off-ledger side effects once the ledger confirms.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ecoswap.wallet.base import WalletRecord


class BackendStep(str, Enum):
    """Backend-side step a flow stage maps onto."""
    MINT_FEE = "mint_fee"      # SwapCoin fee to treasury before minting
    MINT = "mint"              # Unique asset mint completion
    ESCROW = "escrow"          # Order payment held in escrow
    OWNERSHIP = "ownership"    # Unique asset handed to the buyer


class InitResponse(BaseModel):
    """Result of a backend step initiation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    destination: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("treasuryKey", "destinationKey", "destination"),
        description="Treasury, escrow or recipient wallet",
    )
    rpc_url: str = Field(
        ..., validation_alias=AliasChoices("rpcUrl", "rpc_url"), description="Solana RPC URL"
    )
    asset_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("mintAddress", "assetId", "asset_id"),
        description="Token or unique asset mint",
    )
    encrypted_secret: str = Field(
        ...,
        validation_alias=AliasChoices("encKey", "encrypted_secret"),
        description="Base64 encrypted wallet key",
        repr=False,
    )
    public_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("publicKey", "public_key"),
        description="Wallet address",
    )
    amount: Optional[Decimal] = Field(None, description="Amount set by the backend")
    decimals: Optional[int] = Field(None, description="Mint decimals")
    name: Optional[str] = Field(None, description="Unique asset name (mint step)")
    symbol: Optional[str] = Field(None, description="Unique asset symbol (mint step)")
    uri: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("uri", "metadataUri", "metadata_uri"),
        description="Off-chain metadata JSON (mint step)",
    )

    def wallet_record(self, public_key: Optional[str] = None) -> WalletRecord:
        """Rebuild the caller's WalletRecord from the response."""
        return WalletRecord.from_encoded(
            self.public_key or public_key or "", self.encrypted_secret
        )


class CommitResponse(BaseModel):
    """Result of recording a confirmed transaction with the backend."""

    model_config = ConfigDict(extra="allow")

    ok: bool = True
    detail: Optional[str] = None


class Backend(ABC):
    """Abstract base class for the application backend."""

    @abstractmethod
    async def init(self, step: BackendStep, params: dict[str, Any], secret: str) -> InitResponse:
        """Initiate a flow step.

        Raises:
            BackendError: On any failure
        """
        raise NotImplementedError()

    @abstractmethod
    async def commit(
        self, step: BackendStep, signature: str, params: dict[str, Any]
    ) -> CommitResponse:
        """Record a confirmed on-ledger transaction.

        Must be idempotent per signature; it is retried after failures.

        Raises:
            BackendError: On any failure
        """
        raise NotImplementedError()

    @abstractmethod
    async def register_wallet(self, record: WalletRecord, secret: str) -> None:
        """Register a newly created wallet for the current account."""
        raise NotImplementedError()

    @abstractmethod
    async def get_balance(self) -> Decimal:
        """Off-ledger SwapCoin balance shown to the user."""
        raise NotImplementedError()
