"""
Shielded pool client core.

This module provides:
- Notes (UTXOs) and the local note store with its reservation protocol
- The transaction builder and witness bundle
- Ext data hashing and bridge encoding
- The async pool client and its collaborator interfaces
"""

from .client import ShieldedPoolClient
from .config import (
    DEFAULT_MAX_DEPOSIT,
    DEFAULT_MIN_WITHDRAW,
    MAX_AMOUNT,
    MAX_FEE,
    PoolConfig,
    PoolParameters,
    parse_ether,
)
from .ext_data import (
    EXT_DATA_TYPE,
    PROOF_ARGS_TYPE,
    ZERO_ADDRESS,
    AbiBridgeEncoder,
    ExtData,
    encode_for_bridge,
)
from .interfaces import (
    BridgeEncoder,
    CommitmentEvent,
    EventSource,
    LedgerClient,
    NullifierEvent,
    ProofArtifact,
    Prover,
    SubmissionReceipt,
)
from .note import Note
from .note_store import NoteRecord, NoteState, NoteStore
from .transaction import (
    BuildResult,
    InputWitness,
    NoteTransition,
    OutputWitness,
    TransactionBuilder,
    TransactionRequest,
    TransactionWitness,
    select_notes,
)

__all__ = [
    # Client
    "ShieldedPoolClient",
    # Configuration
    "PoolConfig",
    "PoolParameters",
    "parse_ether",
    "MAX_AMOUNT",
    "MAX_FEE",
    "DEFAULT_MIN_WITHDRAW",
    "DEFAULT_MAX_DEPOSIT",
    # Notes
    "Note",
    "NoteStore",
    "NoteRecord",
    "NoteState",
    # Transactions
    "TransactionBuilder",
    "TransactionRequest",
    "TransactionWitness",
    "InputWitness",
    "OutputWitness",
    "BuildResult",
    "NoteTransition",
    "select_notes",
    # Ext data
    "ExtData",
    "ZERO_ADDRESS",
    "EXT_DATA_TYPE",
    "PROOF_ARGS_TYPE",
    "AbiBridgeEncoder",
    "encode_for_bridge",
    # Interfaces
    "LedgerClient",
    "EventSource",
    "Prover",
    "BridgeEncoder",
    "CommitmentEvent",
    "NullifierEvent",
    "ProofArtifact",
    "SubmissionReceipt",
]
