"""Error taxonomy for wallet and transfer operations.

Every error carries a stable ``code`` (stored on failed ledger records and
returned by the API) and a ``category`` that tells the caller what to do:

- configuration: operator must fix the deployment; do not retry
- precondition: nothing was submitted; retry once the condition changes
- submission: nothing landed on chain; safe to retry
- onchain: the chain rejected the transaction; only a fresh attempt helps
- timeout: outcome unknown; reconcile before retrying
"""

from decimal import Decimal
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Category of a failure."""

    CONFIGURATION = "configuration"
    PRECONDITION = "precondition"
    SUBMISSION = "submission"
    ONCHAIN = "onchain"
    TIMEOUT = "timeout"


class RelayPayError(Exception):
    """Base exception for all relaypay errors."""

    code = "RELAYPAY_ERROR"
    category = ErrorCategory.PRECONDITION
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "category": self.category.value,
            "retryable": self.retryable,
            "message": self.message,
        }


# ======================
# Wallet / key errors
# ======================


class WalletError(RelayPayError):
    """Exception raised by the key and wallet store."""

    code = "WALLET_ERROR"


class KeyNotFound(WalletError):
    """No active wallet exists for the user."""

    code = "KEY_NOT_FOUND"


class DecryptionFailed(WalletError):
    """Stored ciphertext failed authentication or is malformed."""

    code = "DECRYPTION_FAILED"
    category = ErrorCategory.CONFIGURATION


class KeypairMismatch(WalletError):
    """Address derived from a stored key differs from the stored address."""

    code = "KEYPAIR_MISMATCH"
    category = ErrorCategory.CONFIGURATION


class WalletNotMigrated(WalletError):
    """Wallet still holds plaintext keys and plaintext reads are disabled."""

    code = "WALLET_NOT_MIGRATED"
    category = ErrorCategory.CONFIGURATION


# ======================
# Transfer errors
# ======================


class TransferError(RelayPayError):
    """Exception raised by the gasless transfer orchestrator.

    Errors raised after broadcast carry the hashes that reached the network.
    """

    code = "TRANSFER_ERROR"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        permit_tx_hash: Optional[str] = None,
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.permit_tx_hash = permit_tx_hash


class RelayerNotConfigured(TransferError):
    code = "RELAYER_NOT_CONFIGURED"
    category = ErrorCategory.CONFIGURATION


class UnsupportedNetwork(TransferError):
    code = "UNSUPPORTED_NETWORK"


class InvalidAmount(TransferError):
    code = "INVALID_AMOUNT"


class InvalidDestination(TransferError):
    code = "INVALID_DESTINATION"


class InsufficientUserBalance(TransferError):
    """User's token balance is below the requested amount."""

    code = "INSUFFICIENT_USER_BALANCE"

    def __init__(self, message: str, observed_balance: Decimal, requested: Decimal):
        super().__init__(message)
        self.observed_balance = observed_balance
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["observed_balance"] = str(self.observed_balance)
        data["requested"] = str(self.requested)
        return data


class InsufficientRelayerBalance(TransferError):
    """Relayer cannot pay network fees. Operator must top it up."""

    code = "INSUFFICIENT_RELAYER_BALANCE"
    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, observed_balance: Decimal, required: Decimal):
        super().__init__(message)
        self.observed_balance = observed_balance
        self.required = required


class SubmissionFailed(TransferError):
    """Transaction could not be built or broadcast."""

    code = "SUBMISSION_FAILED"
    category = ErrorCategory.SUBMISSION
    retryable = True


class OnChainExecutionFailed(TransferError):
    """Transaction was mined but reverted or returned an error."""

    code = "ONCHAIN_EXECUTION_FAILED"
    category = ErrorCategory.ONCHAIN


class TransferUnconfirmed(TransferError):
    """Transaction was broadcast but its outcome is unknown."""

    code = "TRANSFER_UNCONFIRMED"
    category = ErrorCategory.TIMEOUT


class TransferTimedOut(TransferUnconfirmed):
    code = "TRANSFER_TIMED_OUT"


class TransferInProgress(TransferError):
    """Another transfer for the same user and network holds the lock."""

    code = "TRANSFER_IN_PROGRESS"
    retryable = True


# ======================
# Oracle / ledger errors
# ======================


class OracleUnavailable(RelayPayError):
    """Balance could not be read from the chain."""

    code = "ORACLE_UNAVAILABLE"
    category = ErrorCategory.SUBMISSION
    retryable = True


class TransferNotFound(LookupError):
    """Exception raised when a transfer record does not exist."""
    pass


class RpcError(Exception):
    """Transport or JSON-RPC error from a chain client."""

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(message)
        self.method = method
