"""Custom exceptions for the shielded ledger orchestrator."""


class ZKLedgerException(Exception):
    """Base exception for all orchestrator errors."""

    code = "internal_error"

    def __init__(self, message: str = "", **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        """Structured payload returned to synchronous callers."""
        return {
            "error": self.message,
            "code": self.code,
            "detail": self.detail,
        }


class ConfigurationError(ZKLedgerException):
    """Raised when the runtime configuration is unusable."""

    code = "configuration_error"


# Request Errors
class ValidationError(ZKLedgerException):
    """Raised when a request is malformed or missing fields."""

    code = "validation_error"


class SecurityViolation(ZKLedgerException):
    """Raised when an input has no ledger backing or a false tree position."""

    code = "security_violation"


# Cryptography Errors
class CryptoError(ZKLedgerException):
    """Base exception for cryptographic errors."""

    code = "crypto_error"


class InvalidCommitmentError(CryptoError):
    """Raised when a commitment or note field is invalid."""

    code = "invalid_commitment"


class InvalidNullifierError(CryptoError):
    """Raised when a nullifier cannot be derived."""

    code = "invalid_nullifier"


class EncryptionError(CryptoError):
    """Raised when note encryption fails."""

    code = "encryption_error"


class DecryptionError(CryptoError):
    """Raised when note decryption fails."""

    code = "decryption_error"


# Merkle Tree Errors
class MerkleTreeError(ZKLedgerException):
    """Base exception for Merkle accumulator errors."""

    code = "merkle_error"


class TreeHeightExceededError(MerkleTreeError):
    """Raised when the tree is full."""

    code = "tree_full"


class InvalidLeafIndexError(MerkleTreeError):
    """Raised when leaf index is invalid."""

    code = "invalid_leaf_index"


class RootMismatchError(MerkleTreeError):
    """Raised when a synchronized root disagrees with the ledger."""

    code = "root_mismatch"


# Prover Errors
class ProverFailure(ZKLedgerException):
    """Raised when the external proof computation fails."""

    code = "prover_failure"

    def __init__(self, reason: str, tail: str = ""):
        super().__init__(reason, tail=tail)
        self.reason = reason
        self.tail = tail


class QueueLookupError(ZKLedgerException):
    """Raised when a job id is unknown or has been evicted."""

    code = "job_not_found"


# Ledger Errors
class RelayerFailure(ZKLedgerException):
    """Raised when the ledger rejects a submission."""

    code = "relayer_failure"


# Wallet / Scheduling Errors
class InsufficientFundsError(ZKLedgerException):
    """Raised when a wallet cannot cover a transfer."""

    code = "insufficient_funds"


class InvalidTransitionError(ZKLedgerException):
    """Raised when an edge would revisit or skip a lifecycle state."""

    code = "invalid_transition"


# Diagnostics (recorded, never raised by the scheduler)
class BalanceInconsistency(ZKLedgerException):
    """Wallet balance differs from the sum of its UTXOs."""

    code = "balance_inconsistent"


class WrongAmountReceived(ZKLedgerException):
    """Receiver's newest UTXO does not carry the transferred amount."""

    code = "wrong_amount_received"
