"""Pytest configuration and fixtures."""

import itertools
import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["FAUCET_TOPUP_ENABLED"] = "false"
os.environ["DEBUG"] = "true"

from ecoswap.backend.base import Backend, BackendStep, CommitResponse, InitResponse
from ecoswap.chain.base import SignatureStatus, SignedTransaction, UnsignedTransaction
from ecoswap.config import Settings
from ecoswap.crypto import EncryptionService, encode_blob
from ecoswap.logging_config import clear_sensitive
from ecoswap.store.database import WalletStore
from ecoswap.store.repository import WalletRepository
from ecoswap.utils.locks import clear_flow_claims
from ecoswap.wallet.vault import WalletVault

WALLET_SECRET = "abc123xy"
RPC_URL = "https://rpc.test.invalid"

# Low iteration count keeps unlock-heavy tests fast
TEST_KDF_ITERATIONS = 1_000

ASSET_METADATA = {
    "name": "Eco Tee #1",
    "symbol": "ECO",
    "metadataUri": "https://meta.test.invalid/1.json",
}


@pytest.fixture(autouse=True)
def reset_registries():
    """Clear flow claims and redaction values between tests."""
    clear_flow_claims()
    clear_sensitive()
    yield
    clear_flow_claims()
    clear_sensitive()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        confirm_timeout=0.05,
        confirm_poll_interval=0.0,
        kdf_iterations=TEST_KDF_ITERATIONS,
    )


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService(salt="some-salt", iterations=TEST_KDF_ITERATIONS)


@pytest.fixture
def vault(encryption) -> WalletVault:
    return WalletVault(encryption)


@pytest.fixture
def wallet_record(vault):
    return vault.create(WALLET_SECRET)


@pytest.fixture
def treasury() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def token_mint() -> str:
    return str(Pubkey.new_unique())


# ======================
# Fakes
# ======================


class FakeLedger:
    """In-memory ledger double.

    Attributes:
        submit_outcomes: Per-submission result; None confirms, an exception
            instance is raised (the signature still "exists" if marked landed)
        statuses: signature -> SignatureStatus returned by status lookups
        expired: Result of is_blockhash_expired
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.submit_outcomes: list[Optional[Exception]] = []
        self.statuses: dict[str, SignatureStatus] = {}
        self.expired = True
        self.plans = []
        self.mints = []
        self.mint_metadata = []
        self.submitted: list[str] = []
        self.signers: list[str] = []
        self.balance_checks = 0

    async def ensure_minimum_balance(self, owner, threshold=None) -> int:
        self.balance_checks += 1
        return 1_000_000_000

    async def build_transfer(self, plan) -> UnsignedTransaction:
        self.plans.append(plan)
        return UnsignedTransaction(
            message=None, blockhash=None, last_valid_block_height=1_000, description="transfer"
        )

    async def build_mint(self, owner, metadata=None) -> UnsignedTransaction:
        mint = str(Pubkey.new_unique())
        self.mints.append(mint)
        self.mint_metadata.append(metadata)
        return UnsignedTransaction(
            message=None,
            blockhash=None,
            last_valid_block_height=1_000,
            mint_address=mint,
            description="mint",
        )

    def sign(self, unsigned: UnsignedTransaction, keypair: Keypair) -> SignedTransaction:
        self.signers.append(str(keypair.pubkey()))
        return SignedTransaction(
            transaction=None,
            signature=f"sig-{next(self._ids)}",
            last_valid_block_height=unsigned.last_valid_block_height,
            mint_address=unsigned.mint_address,
        )

    async def submit_and_confirm(self, signed: SignedTransaction, timeout=None) -> str:
        self.submitted.append(signed.signature)
        outcome = self.submit_outcomes.pop(0) if self.submit_outcomes else None
        if outcome is not None:
            raise outcome
        self.statuses[signed.signature] = SignatureStatus(
            signed.signature, slot=1, confirmation_status="confirmed"
        )
        return signed.signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        return self.statuses.get(signature)

    async def is_blockhash_expired(self, last_valid_block_height: int) -> bool:
        return self.expired

    def mark_landed(self, signature: str) -> None:
        self.statuses[signature] = SignatureStatus(
            signature, slot=2, confirmation_status="finalized"
        )


class FakeBackend(Backend):
    """Backend double returning the test wallet on every init."""

    def __init__(self, record, destination: str, asset_id: str):
        self.record = record
        self.destination = destination
        self.asset_id = asset_id
        self.init_errors: list[Exception] = []
        self.commit_errors: list[Exception] = []
        self.init_calls: list[tuple[BackendStep, dict]] = []
        self.commit_calls: list[tuple[BackendStep, str, dict]] = []
        self.metadata = dict(ASSET_METADATA)
        self.registered = []

    async def init(self, step, params, secret) -> InitResponse:
        self.init_calls.append((step, dict(params)))
        if self.init_errors:
            raise self.init_errors.pop(0)
        return InitResponse.model_validate(
            {
                "treasuryKey": self.destination,
                "rpcUrl": RPC_URL,
                "mintAddress": self.asset_id,
                "encKey": encode_blob(self.record.encrypted_secret),
                "publicKey": self.record.public_key,
                **self.metadata,
            }
        )

    async def commit(self, step, signature, params) -> CommitResponse:
        self.commit_calls.append((step, signature, dict(params)))
        if self.commit_errors:
            raise self.commit_errors.pop(0)
        return CommitResponse(ok=True)

    async def register_wallet(self, record, secret) -> None:
        self.registered.append(record)

    async def get_balance(self) -> Decimal:
        return Decimal("100")


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fake_backend(wallet_record, treasury, token_mint) -> FakeBackend:
    return FakeBackend(wallet_record, treasury, token_mint)


# ======================
# Database
# ======================


@pytest_asyncio.fixture
async def wallet_store(settings) -> AsyncGenerator[WalletStore, None]:
    """Create in-memory wallet store for testing."""
    async with WalletStore("sqlite+aiosqlite:///:memory:", settings=settings) as store:
        yield store


@pytest_asyncio.fixture
async def db_session(wallet_store) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with wallet_store.session() as session:
        yield session


@pytest_asyncio.fixture
async def wallet_repo(db_session: AsyncSession) -> WalletRepository:
    return WalletRepository(db_session)
