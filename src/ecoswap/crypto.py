"""Cryptographic utilities for wallet key storage.

Derives an AES-256 key from the user's wallet secret with PBKDF2-SHA256
and seals raw key material with AES-GCM.

Blob format: [iv 12B][ciphertext + GCM tag 16B]

Security Note:
    The key is re-derived on every call and never cached.
    Never log secrets, plaintext or ciphertext values.
"""

import base64
import binascii
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ecoswap.errors import DecryptionError, KeyDerivationError

logger = logging.getLogger(__name__)

IV_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

DEFAULT_SALT = "some-salt"
DEFAULT_ITERATIONS = 100_000


def generate_wallet_secret() -> str:
    """Generate a random wallet secret for a new registration.

    Returns:
        32-character hex string (128 bits)
    """
    return secrets.token_hex(16)


def encode_blob(blob: bytes) -> str:
    """Encode an encrypted blob for transport (base64)."""
    return base64.b64encode(blob).decode("ascii")


def decode_blob(encoded: str) -> bytes:
    """Decode a transported blob.

    Raises:
        DecryptionError: If the value is not valid base64
    """
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        raise DecryptionError("malformed encrypted blob") from None


class EncryptionService:
    """Encrypts and decrypts key material under a user secret.

    Usage:
        service = EncryptionService()
        blob = service.encrypt(secret_key_bytes, "abc123xy")
        secret_key_bytes = service.decrypt(blob, "abc123xy")
    """

    def __init__(self, salt: Optional[str] = None, iterations: Optional[int] = None):
        """Initialize with the process-wide KDF policy.

        Args:
            salt: Public salt (defaults to settings)
            iterations: PBKDF2 iterations (defaults to settings)
        """
        if salt is None or iterations is None:
            from ecoswap.config import get_settings

            settings = get_settings()
            salt = salt if salt is not None else settings.kdf_salt
            iterations = iterations if iterations is not None else settings.kdf_iterations

        self._salt = salt.encode("utf-8")
        self._iterations = iterations

    @property
    def iterations(self) -> int:
        return self._iterations

    def derive_key(self, secret: str) -> bytes:
        """Derive a 32-byte AES key from the secret.

        Deterministic for a given (secret, salt) pair.

        Raises:
            KeyDerivationError: If the secret is empty
        """
        if not secret:
            raise KeyDerivationError("wallet secret must not be empty")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=self._salt,
            iterations=self._iterations,
        )
        return kdf.derive(secret.encode("utf-8"))

    def encrypt(self, plaintext: bytes, secret: str) -> bytes:
        """Encrypt raw key material.

        A fresh random IV is drawn for every call.

        Returns:
            iv || ciphertext || tag
        """
        key = self.derive_key(secret)
        iv = os.urandom(IV_SIZE)
        ct = AESGCM(key).encrypt(iv, bytes(plaintext), None)
        return iv + ct

    def decrypt(self, blob: bytes, secret: str) -> bytes:
        """Decrypt a blob produced by encrypt().

        Raises:
            KeyDerivationError: If the secret is empty
            DecryptionError: On a malformed blob or authentication failure
        """
        key = self.derive_key(secret)

        # Same error for short blobs and bad tags
        if len(blob) < IV_SIZE + TAG_SIZE:
            raise DecryptionError("decryption failed")

        iv = blob[:IV_SIZE]
        ct = blob[IV_SIZE:]
        try:
            return AESGCM(key).decrypt(iv, ct, None)
        except InvalidTag:
            raise DecryptionError("decryption failed") from None


def get_encryption_service() -> EncryptionService:
    """Get an encryption service using the configured KDF policy."""
    return EncryptionService()
