"""Exception hierarchy for shieldpool.

Every error raised by the client core derives from ``ShieldPoolError`` and
carries a severity, a category and, for transaction builds, the pipeline
stage it was raised in so callers can decide whether reserved notes must be
released.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    CRYPTOGRAPHIC = "cryptographic"
    TREE = "tree"
    NOTE = "note"
    TRANSACTION = "transaction"
    CONFIGURATION = "configuration"
    LEDGER = "ledger"
    SYSTEM = "system"


class BuildStage(Enum):
    """Transaction build pipeline stages."""

    VALIDATE = "validate"
    COLLECT_INPUTS = "collect_inputs"
    RESOLVE_PROOFS = "resolve_proofs"
    BUILD_OUTPUTS = "build_outputs"
    ASSEMBLE_WITNESS = "assemble_witness"
    PROVE = "prove"
    SUBMIT = "submit"


class ShieldPoolError(Exception):
    """Base exception for all shieldpool errors."""

    def __init__(
        self,
        message: str,
        stage: Optional[BuildStage] = None,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "stage": self.stage.value if self.stage else None,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.stage is not None:
            parts.append(f"Stage: {self.stage.value}")

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ConfigMismatchError(ShieldPoolError):
    """Local pool parameters disagree with the ledger's deployed values."""

    def __init__(self, message: str, mismatches: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(
            message,
            error_code="CONFIG_MISMATCH",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.mismatches = mismatches or {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["mismatches"] = {k: [str(v[0]), str(v[1])] for k, v in self.mismatches.items()}
        return data


class TreeDesyncError(ShieldPoolError):
    """The locally derived Merkle root does not match the ledger's root."""

    def __init__(
        self,
        message: str,
        local_root: Optional[int] = None,
        expected_root: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            error_code="TREE_DESYNC",
            category=ErrorCategory.TREE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.local_root = local_root
        self.expected_root = expected_root

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "local_root": hex(self.local_root) if self.local_root is not None else None,
                "expected_root": hex(self.expected_root)
                if self.expected_root is not None
                else None,
            }
        )
        return data


class TreeFullError(ShieldPoolError):
    """The accumulator has no free leaf positions left."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="TREE_FULL",
            category=ErrorCategory.TREE,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )


class StaleNoteError(ShieldPoolError):
    """A selected note's commitment is not present in the rebuilt tree."""

    def __init__(self, message: str, commitment: Optional[int] = None, **kwargs):
        super().__init__(
            message, error_code="STALE_NOTE", category=ErrorCategory.NOTE, **kwargs
        )
        self.commitment = commitment


class InsufficientFundsError(ShieldPoolError):
    """Unspent notes cannot cover the requested amount."""

    def __init__(
        self,
        message: str,
        required: Optional[int] = None,
        available: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            error_code="INSUFFICIENT_FUNDS",
            category=ErrorCategory.TRANSACTION,
            **kwargs,
        )
        self.required = required
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"required": self.required, "available": self.available})
        return data


class AmountOutOfRangeError(ShieldPoolError):
    """An external amount falls outside the pool's configured bounds."""

    def __init__(
        self,
        message: str,
        amount: Optional[int] = None,
        bound: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            error_code="AMOUNT_OUT_OF_RANGE",
            category=ErrorCategory.VALIDATION,
            **kwargs,
        )
        self.amount = amount
        self.bound = bound

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"amount": self.amount, "bound": self.bound})
        return data


class EncryptionError(ShieldPoolError):
    """A note payload could not be encrypted for the recipient."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="ENCRYPTION_FAILED",
            category=ErrorCategory.CRYPTOGRAPHIC,
            **kwargs,
        )


class DecryptionError(ShieldPoolError):
    """A ciphertext was not encrypted for this key, or is corrupted."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="DECRYPTION_FAILED",
            category=ErrorCategory.CRYPTOGRAPHIC,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class MissingSpendingKeyError(ShieldPoolError):
    """A spend-only operation was attempted on a note held without its key."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="MISSING_SPENDING_KEY",
            category=ErrorCategory.CRYPTOGRAPHIC,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )


class InvalidWitnessError(ShieldPoolError):
    """The witness bundle is malformed, or the prover rejected it."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="INVALID_WITNESS",
            category=ErrorCategory.TRANSACTION,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )


class NoteStateError(ShieldPoolError):
    """An illegal note state transition was requested."""

    def __init__(
        self,
        message: str,
        commitment: Optional[int] = None,
        current_state: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            message, error_code="NOTE_STATE", category=ErrorCategory.NOTE, **kwargs
        )
        self.commitment = commitment
        self.current_state = current_state


class SubmissionError(ShieldPoolError):
    """The ledger rejected a submitted transaction."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", BuildStage.SUBMIT)
        super().__init__(
            message,
            error_code="SUBMISSION_REJECTED",
            category=ErrorCategory.LEDGER,
            **kwargs,
        )
        self.tx_hash = tx_hash


class LedgerError(ShieldPoolError):
    """Transient failure talking to the ledger or its event log."""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code="LEDGER_UNAVAILABLE",
            category=ErrorCategory.LEDGER,
            retryable=True,
            **kwargs,
        )
        self.endpoint = endpoint
