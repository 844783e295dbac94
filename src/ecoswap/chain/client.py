"""Ledger client for Solana SPL token operations.

Stateless facade over one RPC endpoint: resolves associated token
accounts, builds checked transfers and unique-asset mints, signs with a
caller-supplied keypair and waits for "confirmed" commitment.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

import httpx
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ecoswap.chain.base import (
    AssetMetadata,
    PubkeyLike,
    SignatureStatus,
    SignedTransaction,
    TransferPlan,
    UnsignedTransaction,
    to_pubkey,
)
from ecoswap.chain.instructions import (
    MINT_ACCOUNT_SIZE,
    create_associated_token_account_idempotent,
    create_metadata_account_v3,
    create_mint_account,
    get_associated_token_address,
    initialize_mint2,
    mint_to,
    revoke_mint_authority,
    transfer_checked,
)
from ecoswap.chain.rpc import SolanaRpc
from ecoswap.config import Settings, get_settings
from ecoswap.errors import (
    InsufficientFundsError,
    LedgerTimeoutError,
    NetworkError,
    RejectedError,
)

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class LedgerClient:
    """Solana ledger operations for one RPC endpoint."""

    def __init__(
        self,
        rpc: SolanaRpc,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
        faucet_enabled: bool = False,
        min_native_balance: int = 5000,
        faucet_topup_lamports: int = 50_000_000,
    ):
        self.rpc = rpc
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.faucet_enabled = faucet_enabled
        self.min_native_balance = min_native_balance
        self.faucet_topup_lamports = faucet_topup_lamports

    @classmethod
    def for_endpoint(
        cls,
        rpc_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LedgerClient":
        """Create a client from settings, optionally overriding the endpoint."""
        settings = settings or get_settings()
        rpc = SolanaRpc(
            rpc_url or settings.solana_rpc_url,
            timeout=settings.http_timeout,
            commitment=settings.commitment,
            transport=transport,
        )
        return cls(
            rpc,
            confirm_timeout=settings.confirm_timeout,
            poll_interval=settings.confirm_poll_interval,
            faucet_enabled=settings.faucet_topup_enabled,
            min_native_balance=settings.min_native_balance,
            faucet_topup_lamports=settings.faucet_topup_lamports,
        )

    # ======================
    # Accounts
    # ======================

    async def resolve_token_account(
        self, owner: PubkeyLike, asset_id: PubkeyLike
    ) -> tuple[Pubkey, bool]:
        """Derive the associated token account and check whether it exists.

        Returns:
            Tuple of (address, exists)
        """
        address = get_associated_token_address(to_pubkey(owner), to_pubkey(asset_id))
        info = await self.rpc.get_account_info(str(address))
        return address, info is not None

    async def resolve_or_create_token_account(
        self, owner: PubkeyLike, asset_id: PubkeyLike, payer: Keypair
    ) -> Pubkey:
        """Return the owner's token account, creating it if absent.

        Idempotent: a second call finds the account and submits nothing.
        Creation uses the idempotent ATA instruction, so a race with
        another creator cannot fail or double-create.
        """
        owner_key = to_pubkey(owner)
        mint = to_pubkey(asset_id)
        address, exists = await self.resolve_token_account(owner_key, mint)
        if exists:
            return address

        logger.info(f"Creating token account {address} for {owner_key} (mint {mint})")
        unsigned = await self._build(
            [create_associated_token_account_idempotent(payer.pubkey(), owner_key, mint)],
            payer.pubkey(),
            description=f"create token account {address}",
        )
        signed = self.sign(unsigned, payer)
        await self.submit_and_confirm(signed)
        return address

    async def get_token_balance(
        self, owner: PubkeyLike, asset_id: PubkeyLike, decimals: Optional[int] = None
    ) -> Decimal:
        """Token balance of the owner's associated account in display units.

        Returns Decimal(0) when the account does not exist.
        """
        address = get_associated_token_address(to_pubkey(owner), to_pubkey(asset_id))
        value = await self.rpc.get_token_account_balance(str(address))
        if value is None:
            return Decimal(0)
        places = int(value.get("decimals", 0)) if decimals is None else decimals
        return Decimal(int(value["amount"])).scaleb(-places)

    async def get_native_balance(self, owner: PubkeyLike) -> int:
        """Native balance in lamports."""
        return await self.rpc.get_balance(str(to_pubkey(owner)))

    async def ensure_minimum_balance(
        self, owner: PubkeyLike, threshold: Optional[int] = None
    ) -> int:
        """Make sure the owner can pay network fees.

        Requests a faucet airdrop only when explicitly enabled (devnet /
        testnet). Otherwise a low balance is an error the caller must fund.

        Returns:
            Native balance in lamports after any top-up

        Raises:
            InsufficientFundsError: Balance below threshold and faucet disabled
        """
        owner_key = to_pubkey(owner)
        threshold = self.min_native_balance if threshold is None else threshold
        balance = await self.rpc.get_balance(str(owner_key))
        if balance >= threshold:
            return balance

        if not self.faucet_enabled:
            raise InsufficientFundsError(
                f"native balance {balance} below required {threshold} lamports",
                user_message="Your wallet cannot cover network fees. Please fund it first.",
            )

        logger.info(
            f"Low native balance for {owner_key} ({balance / LAMPORTS_PER_SOL} SOL), "
            f"requesting {self.faucet_topup_lamports} lamports from faucet"
        )
        signature = await self.rpc.request_airdrop(str(owner_key), self.faucet_topup_lamports)
        await self._wait_for_confirmation(signature, last_valid_block_height=None)
        return await self.rpc.get_balance(str(owner_key))

    # ======================
    # Building
    # ======================

    async def build_transfer(self, plan: TransferPlan) -> UnsignedTransaction:
        """Build a checked token transfer.

        The source owner pays for creating the destination token account
        when it does not exist yet.

        Raises:
            InsufficientFundsError: Source holds less than the plan amount
        """
        amount = plan.base_units
        source = get_associated_token_address(plan.source_owner, plan.asset_id)
        destination, destination_exists = await self.resolve_token_account(
            plan.destination_owner, plan.asset_id
        )

        balance = await self.rpc.get_token_account_balance(str(source))
        available = int(balance["amount"]) if balance else 0
        if available < amount:
            raise InsufficientFundsError(
                f"token balance {available} below transfer amount {amount}"
            )

        instructions: list[Instruction] = []
        if not destination_exists:
            instructions.append(
                create_associated_token_account_idempotent(
                    plan.source_owner, plan.destination_owner, plan.asset_id
                )
            )
        instructions.append(
            transfer_checked(
                source,
                plan.asset_id,
                destination,
                plan.source_owner,
                amount,
                plan.decimals,
            )
        )

        return await self._build(
            instructions,
            plan.source_owner,
            description=(
                f"transfer {plan.amount} of {plan.asset_id} "
                f"{plan.source_owner} -> {plan.destination_owner}"
            ),
        )

    async def build_mint(
        self, owner: PubkeyLike, metadata: Optional[AssetMetadata] = None
    ) -> UnsignedTransaction:
        """Build a transaction minting one unique asset to the owner.

        Creates a fresh mint with 0 decimals, mints exactly one unit into
        the owner's token account, records `metadata` in a Token Metadata
        account with the owner as verified creator, and revokes the mint
        authority.
        """
        owner_key = to_pubkey(owner)
        mint = Keypair()
        mint_key = mint.pubkey()
        rent = await self.rpc.get_minimum_balance_for_rent_exemption(MINT_ACCOUNT_SIZE)
        token_account = get_associated_token_address(owner_key, mint_key)

        instructions = [
            create_mint_account(owner_key, mint_key, rent),
            initialize_mint2(mint_key, 0, owner_key, owner_key),
            create_associated_token_account_idempotent(owner_key, owner_key, mint_key),
            mint_to(mint_key, token_account, owner_key, 1),
        ]
        if metadata is not None:
            instructions.append(
                create_metadata_account_v3(
                    mint_key,
                    mint_authority=owner_key,
                    payer=owner_key,
                    update_authority=owner_key,
                    name=metadata.name,
                    symbol=metadata.symbol,
                    uri=metadata.uri,
                    creator=owner_key,
                )
            )
        instructions.append(revoke_mint_authority(mint_key, owner_key))
        unsigned = await self._build(
            instructions, owner_key, description=f"mint unique asset {mint_key}"
        )
        unsigned.extra_signers.append(mint)
        unsigned.mint_address = str(mint_key)
        return unsigned

    async def _build(
        self, instructions: list[Instruction], payer: Pubkey, description: str = ""
    ) -> UnsignedTransaction:
        blockhash, last_valid_block_height = await self.rpc.get_latest_blockhash()
        recent = Hash.from_string(blockhash)
        return UnsignedTransaction(
            message=Message.new_with_blockhash(instructions, payer, recent),
            blockhash=recent,
            last_valid_block_height=last_valid_block_height,
            description=description,
        )

    # ======================
    # Signing and submission
    # ======================

    def sign(self, unsigned: UnsignedTransaction, keypair: Keypair) -> SignedTransaction:
        """Sign with the owner keypair plus any ephemeral co-signers."""
        tx = Transaction([keypair, *unsigned.extra_signers], unsigned.message, unsigned.blockhash)
        return SignedTransaction(
            transaction=tx,
            signature=str(tx.signatures[0]),
            last_valid_block_height=unsigned.last_valid_block_height,
            mint_address=unsigned.mint_address,
        )

    async def submit_and_confirm(
        self, signed: SignedTransaction, timeout: Optional[float] = None
    ) -> str:
        """Broadcast and wait for "confirmed" commitment.

        Returns:
            Transaction signature

        Raises:
            NetworkError: Broadcast failed in transport
            RejectedError: Preflight or on-ledger failure, or blockhash expired
            LedgerTimeoutError: Not confirmed within the bounded wait
        """
        logger.info(f"Broadcasting transaction {signed.signature}")
        await self.rpc.send_transaction(bytes(signed.transaction))
        await self._wait_for_confirmation(
            signed.signature, signed.last_valid_block_height, timeout
        )
        logger.info(f"Transaction confirmed: {signed.signature}")
        return signed.signature

    async def _wait_for_confirmation(
        self,
        signature: str,
        last_valid_block_height: Optional[int],
        timeout: Optional[float] = None,
    ) -> SignatureStatus:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.confirm_timeout if timeout is None else timeout)

        while True:
            try:
                status = await self.get_signature_status(signature)
            except NetworkError as e:
                # Already broadcast; a flaky poll is not a failed transfer
                logger.warning(f"Status poll failed for {signature}: {e}")
                status = None

            if status is not None:
                if status.failed:
                    raise RejectedError(f"transaction {signature} failed: {status.err}")
                if status.landed:
                    return status

            if loop.time() >= deadline:
                raise LedgerTimeoutError(
                    f"transaction {signature} not confirmed in time", signature=signature
                )

            if last_valid_block_height is not None:
                try:
                    expired = await self.is_blockhash_expired(last_valid_block_height)
                except NetworkError:
                    expired = False
                if expired:
                    # Re-check once: it may have landed just before expiry
                    status = await self.get_signature_status(signature)
                    if status is not None and status.landed:
                        return status
                    raise RejectedError(f"transaction {signature} expired before confirmation")

            await asyncio.sleep(self.poll_interval)

    # ======================
    # Status
    # ======================

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Look a signature up; None if the ledger has never seen it."""
        statuses = await self.rpc.get_signature_statuses([signature])
        raw = statuses[0] if statuses else None
        if raw is None:
            return None
        return SignatureStatus(
            signature=signature,
            slot=raw.get("slot"),
            confirmation_status=raw.get("confirmationStatus"),
            err=raw.get("err"),
        )

    async def is_blockhash_expired(self, last_valid_block_height: int) -> bool:
        """True once a transaction with this blockhash can no longer land."""
        return await self.rpc.get_block_height() > last_valid_block_height
