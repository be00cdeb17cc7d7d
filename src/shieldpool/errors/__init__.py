"""shieldpool error handling.

Exception hierarchy for the pool client core and the retry policy used by
ledger adapters.
"""

from .exceptions import (
    AmountOutOfRangeError,
    BuildStage,
    ConfigMismatchError,
    DecryptionError,
    EncryptionError,
    ErrorCategory,
    ErrorSeverity,
    InsufficientFundsError,
    InvalidWitnessError,
    LedgerError,
    MissingSpendingKeyError,
    NoteStateError,
    ShieldPoolError,
    StaleNoteError,
    SubmissionError,
    TreeDesyncError,
    TreeFullError,
)
from .recovery import RetryPolicy, with_retry

__all__ = [
    # Exceptions
    "ShieldPoolError",
    "ConfigMismatchError",
    "TreeDesyncError",
    "TreeFullError",
    "StaleNoteError",
    "InsufficientFundsError",
    "AmountOutOfRangeError",
    "EncryptionError",
    "DecryptionError",
    "MissingSpendingKeyError",
    "InvalidWitnessError",
    "NoteStateError",
    "SubmissionError",
    "LedgerError",
    "ErrorSeverity",
    "ErrorCategory",
    "BuildStage",
    # Recovery
    "RetryPolicy",
    "with_retry",
]
