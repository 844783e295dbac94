"""Error taxonomy for wallet, ledger and flow operations.

Every error carries ``retryable`` and a ``user_message`` that is safe to
show in the UI. Cryptographic failures never reveal whether the secret or
the data was at fault.
"""

from typing import Optional


class EcoswapError(Exception):
    """Base class for all ecoswap errors."""

    retryable: bool = False
    user_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if user_message is not None:
            self.user_message = user_message


# ======================
# Crypto
# ======================

class CryptoError(EcoswapError):
    """Base class for key derivation and encryption failures."""


class KeyDerivationError(CryptoError):
    """Raised when a key cannot be derived (empty secret)."""

    user_message = "Please enter your wallet password."


class DecryptionError(CryptoError):
    """Raised for any decryption failure (wrong secret or corrupted blob)."""

    user_message = "Incorrect wallet password."


class InvalidSecret(DecryptionError):
    """Raised by the vault when a wallet cannot be unlocked."""


# ======================
# Ledger
# ======================

class LedgerError(EcoswapError):
    """Base class for ledger network failures."""


class NetworkError(LedgerError):
    """RPC endpoint unreachable or unhealthy."""

    retryable = True
    user_message = "The network is unreachable. No funds were moved, please try again."


class RejectedError(LedgerError):
    """The ledger refused the transaction."""

    retryable = True
    user_message = "The transaction was rejected. No funds were moved."


class InsufficientFundsError(RejectedError):
    """Source account cannot cover the transfer or the network fee."""

    retryable = False
    user_message = "Insufficient balance. Please top up your wallet before proceeding."


class LedgerTimeoutError(LedgerError, TimeoutError):
    """No confirmation within the bounded wait."""

    retryable = True
    user_message = "The transaction was not confirmed in time."

    def __init__(self, message: str = "", signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


class TransferPending(LedgerError):
    """A submitted transaction is not confirmed yet and may still land."""

    retryable = True
    user_message = "Your previous transfer is still being processed. Please wait and retry."


# ======================
# Backend
# ======================

class BackendError(EcoswapError):
    """The application backend failed or returned an error."""

    retryable = True
    user_message = "The server could not process the request. Please try again."

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message)
        self.status_code = status_code


# ======================
# Validation
# ======================

class InvalidTransferPlan(EcoswapError, ValueError):
    """Transfer parameters are invalid; requires new user input."""

    user_message = "The transfer amount is invalid."


# ======================
# Flow control
# ======================

class FlowError(EcoswapError):
    """Base class for orchestrator contract violations."""


class AlreadyInProgress(FlowError):
    """A flow with the same identifier is already running."""

    user_message = "This transaction is already being processed."


class AlreadyConfirmedMismatch(FlowError):
    """Ledger status contradicts the recorded flow outcome."""

    user_message = "The transaction needs manual review. Please contact support."


class RetryNotAllowed(FlowError):
    """The flow is not in a retryable terminal phase."""


class SecretRequired(FlowError):
    """A retry path that signs again needs the wallet secret."""

    user_message = "Please enter your wallet password."
