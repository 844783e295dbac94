"""Base types for ledger transactions.

Transaction flow:
1. Build an unsigned transaction from a TransferPlan (public keys only)
2. Sign it inside a wallet unlock scope
3. Submit and wait for "confirmed" commitment
4. On doubt, look the signature up before doing anything else
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ecoswap.errors import InvalidTransferPlan

PubkeyLike = Union[Pubkey, str]

UNIQUE_ASSET_DECIMALS = 0
UNIQUE_ASSET_AMOUNT = Decimal(1)
MAX_U64 = 2**64 - 1

# Token Metadata field limits, in UTF-8 bytes
MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 10
MAX_URI_LENGTH = 200

# Commitment levels that count as landed
CONFIRMED_LEVELS = ("confirmed", "finalized")


def to_pubkey(value: PubkeyLike) -> Pubkey:
    """Parse a base58 address into a Pubkey.

    Raises:
        InvalidTransferPlan: If the address is malformed
    """
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except (ValueError, TypeError):
        raise InvalidTransferPlan(f"invalid account address: {value!r}") from None


@dataclass(frozen=True)
class TransferPlan:
    """What to move, from whom, to whom.

    Attributes:
        amount: Amount in display units
        decimals: Mint decimals (6 for SwapCoin, 0 for unique assets)
        source_owner: Wallet that signs and pays
        destination_owner: Receiving wallet
        asset_id: Mint address
    """
    amount: Decimal
    decimals: int
    source_owner: Pubkey
    destination_owner: Pubkey
    asset_id: Pubkey

    def __post_init__(self):
        if not 0 <= self.decimals <= 9:
            raise InvalidTransferPlan(f"unsupported decimals: {self.decimals}")
        if self.amount <= 0:
            raise InvalidTransferPlan("amount must be positive")
        if self.base_units > MAX_U64:
            raise InvalidTransferPlan("amount too large")

    @classmethod
    def fungible(
        cls,
        amount: Union[Decimal, int, str],
        decimals: int,
        source_owner: PubkeyLike,
        destination_owner: PubkeyLike,
        asset_id: PubkeyLike,
    ) -> "TransferPlan":
        """Build a fungible token transfer plan."""
        return cls(
            amount=_to_decimal(amount),
            decimals=decimals,
            source_owner=to_pubkey(source_owner),
            destination_owner=to_pubkey(destination_owner),
            asset_id=to_pubkey(asset_id),
        )

    @classmethod
    def unique_asset(
        cls,
        source_owner: PubkeyLike,
        destination_owner: PubkeyLike,
        asset_id: PubkeyLike,
        amount: Union[Decimal, int, str] = 1,
    ) -> "TransferPlan":
        """Build a unique-asset (NFT) transfer plan.

        Raises:
            InvalidTransferPlan: If any amount other than 1 is requested
        """
        if _to_decimal(amount) != UNIQUE_ASSET_AMOUNT:
            raise InvalidTransferPlan(
                f"unique assets transfer exactly 1 unit, got {amount}",
                user_message="Only a single unit of this asset can be transferred.",
            )
        return cls(
            amount=UNIQUE_ASSET_AMOUNT,
            decimals=UNIQUE_ASSET_DECIMALS,
            source_owner=to_pubkey(source_owner),
            destination_owner=to_pubkey(destination_owner),
            asset_id=to_pubkey(asset_id),
        )

    @property
    def is_unique_asset(self) -> bool:
        return self.decimals == UNIQUE_ASSET_DECIMALS and self.amount == UNIQUE_ASSET_AMOUNT

    @property
    def base_units(self) -> int:
        """Amount scaled by 10^decimals.

        Raises:
            InvalidTransferPlan: If the amount has more precision than the mint
        """
        scaled = self.amount.scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidTransferPlan(
                f"amount {self.amount} has more than {self.decimals} decimal places"
            )
        return int(scaled)


@dataclass(frozen=True)
class AssetMetadata:
    """Name, symbol and off-chain JSON URI recorded for a minted asset."""
    name: str
    symbol: str
    uri: str

    def __post_init__(self):
        if not self.name or not self.uri:
            raise InvalidTransferPlan("asset metadata needs a name and a uri")
        for label, value, limit in (
            ("name", self.name, MAX_NAME_LENGTH),
            ("symbol", self.symbol, MAX_SYMBOL_LENGTH),
            ("uri", self.uri, MAX_URI_LENGTH),
        ):
            if len(value.encode("utf-8")) > limit:
                raise InvalidTransferPlan(
                    f"asset {label} longer than {limit} bytes",
                    user_message=f"The asset {label} is too long.",
                )


@dataclass
class UnsignedTransaction:
    """A built transaction awaiting the owner's signature.

    Attributes:
        message: Compiled message (instructions + recent blockhash)
        blockhash: Recent blockhash baked into the message
        last_valid_block_height: Height after which the blockhash expires
        extra_signers: Ephemeral co-signers (e.g. a fresh mint account)
        mint_address: Set when the transaction creates a new mint
        description: Human-readable summary for logs
    """
    message: Message
    blockhash: Hash
    last_valid_block_height: int
    extra_signers: list[Keypair] = field(default_factory=list)
    mint_address: Optional[str] = None
    description: str = ""


@dataclass
class SignedTransaction:
    """A fully signed transaction ready to broadcast.

    The first signature identifies the transaction on the ledger and is
    known before broadcast.
    """
    transaction: Transaction
    signature: str
    last_valid_block_height: int
    mint_address: Optional[str] = None


@dataclass
class SignatureStatus:
    """Ledger status of a transaction signature."""
    signature: str
    slot: Optional[int] = None
    confirmation_status: Optional[str] = None
    err: Optional[object] = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def landed(self) -> bool:
        """Confirmed on-ledger without error."""
        return not self.failed and self.confirmation_status in CONFIRMED_LEVELS

    @property
    def pending(self) -> bool:
        """Seen by the cluster but not yet confirmed; it may still land."""
        return not self.failed and not self.landed


def _to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidTransferPlan(f"invalid amount: {value!r}") from None
    if not result.is_finite():
        raise InvalidTransferPlan(f"invalid amount: {value!r}")
    return result
