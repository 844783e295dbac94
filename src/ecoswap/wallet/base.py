"""Wallet record types.

A WalletRecord pairs a Solana account identity with its encrypted
secret key. It is created once at registration and never mutated.
"""

from dataclasses import dataclass

from ecoswap.crypto import decode_blob, encode_blob

PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 64  # ed25519 seed + public key, as solders serializes it


@dataclass(frozen=True)
class WalletRecord:
    """Ledger account identity and its encrypted private key.

    Attributes:
        public_key: Base58 account address
        encrypted_secret: iv (12 bytes) || ciphertext + tag
    """
    public_key: str
    encrypted_secret: bytes

    def __repr__(self) -> str:
        # Blob stays out of reprs and tracebacks
        return f"WalletRecord(public_key={self.public_key!r})"

    def to_dict(self) -> dict:
        """Serialize for transport to the backend."""
        return {
            "public_key": self.public_key,
            "private_key": encode_blob(self.encrypted_secret),
        }

    @classmethod
    def from_encoded(cls, public_key: str, encoded_secret: str) -> "WalletRecord":
        """Build a record from a base64-encoded blob."""
        return cls(public_key=public_key, encrypted_secret=decode_blob(encoded_secret))
