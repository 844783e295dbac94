"""Wallet vault.

Creates Solana keypairs sealed under a user secret and unlocks them for
the duration of a single signing operation.

WARNING: The unlocked keypair must not outlive the ``with`` block that
produced it. Do not store it on objects, in caches or across flow steps.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ecoswap.crypto import EncryptionService, get_encryption_service
from ecoswap.errors import DecryptionError, InvalidSecret, KeyDerivationError
from ecoswap.wallet.base import SECRET_KEY_LENGTH, WalletRecord

logger = logging.getLogger(__name__)


class UnlockedWallet:
    """Signing handle valid only inside WalletVault.unlock()."""

    def __init__(self, keypair: Keypair):
        self._keypair: Optional[Keypair] = keypair
        self.public_key: Pubkey = keypair.pubkey()

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            raise RuntimeError("wallet handle used outside its unlock scope")
        return self._keypair

    @property
    def is_open(self) -> bool:
        return self._keypair is not None

    def close(self) -> None:
        self._keypair = None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"UnlockedWallet({self.public_key}, {state})"


class WalletVault:
    """Creates and unlocks encrypted wallets.

    Usage:
        vault = WalletVault()
        record = vault.create(secret)
        with vault.unlock(record, secret) as wallet:
            signed = ledger.sign(unsigned_tx, wallet.keypair)
    """

    def __init__(self, encryption: Optional[EncryptionService] = None):
        self._encryption = encryption or get_encryption_service()

    def create(self, secret: str) -> WalletRecord:
        """Generate a new keypair and encrypt it under the secret.

        No network I/O; registering the record is the caller's job.

        Raises:
            KeyDerivationError: If the secret is empty
        """
        keypair = Keypair()
        raw = bytearray(bytes(keypair))
        try:
            blob = self._encryption.encrypt(raw, secret)
        finally:
            _scrub(raw)

        record = WalletRecord(public_key=str(keypair.pubkey()), encrypted_secret=blob)
        logger.info(f"Created wallet {record.public_key}")
        return record

    @contextmanager
    def unlock(self, record: WalletRecord, secret: str) -> Iterator[UnlockedWallet]:
        """Decrypt the record and yield a scoped signing handle.

        Raises:
            InvalidSecret: For any decryption failure, including an empty
                secret or a blob that does not hold this record's key
        """
        wallet = UnlockedWallet(self._open(record, secret))
        try:
            yield wallet
        finally:
            wallet.close()
            logger.debug(f"Wallet {record.public_key} locked")

    def verify_secret(self, record: WalletRecord, secret: str) -> bool:
        """Check whether the secret unlocks the record."""
        try:
            with self.unlock(record, secret):
                return True
        except InvalidSecret:
            return False

    def _open(self, record: WalletRecord, secret: str) -> Keypair:
        try:
            raw = bytearray(self._encryption.decrypt(record.encrypted_secret, secret))
        except (DecryptionError, KeyDerivationError):
            # Never retried here; the caller prompts for the secret again
            logger.warning(f"Unlock failed for wallet {record.public_key}")
            raise InvalidSecret("wallet could not be unlocked") from None

        try:
            if len(raw) != SECRET_KEY_LENGTH:
                raise InvalidSecret("wallet could not be unlocked")
            try:
                keypair = Keypair.from_bytes(bytes(raw))
            except ValueError:
                raise InvalidSecret("wallet could not be unlocked") from None
        finally:
            _scrub(raw)

        if record.public_key and str(keypair.pubkey()) != record.public_key:
            logger.warning(f"Decrypted key does not match wallet {record.public_key}")
            raise InvalidSecret("wallet could not be unlocked")

        return keypair


def _scrub(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0
