"""
Collaborator boundaries of the pool client.

The client core never talks to a chain, an indexer or a prover directly; it
depends on the abstract interfaces below. ``shieldpool.chain`` provides a
web3-backed ledger and event source, ``shieldpool.testing`` in-memory ones.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .config import PoolParameters

if TYPE_CHECKING:
    from .ext_data import ExtData
    from .transaction import TransactionWitness


@dataclass(frozen=True)
class CommitmentEvent:
    """A commitment inserted by the ledger, with its encrypted output."""

    commitment: int
    index: int
    encrypted_output: bytes = b""
    block_number: Optional[int] = None


@dataclass(frozen=True)
class NullifierEvent:
    """A nullifier published by a spend."""

    nullifier: int
    block_number: Optional[int] = None


@dataclass
class ProofArtifact:
    """Proof returned by the prover, with the public signals it proves."""

    proof: bytes
    public_signals: List[int]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> bool:
        return bool(self.proof) and bool(self.public_signals)


@dataclass
class SubmissionReceipt:
    """Outcome of submitting a transaction to the ledger."""

    success: bool
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class LedgerClient(ABC):
    """Authoritative pool state and transaction verification."""

    @abstractmethod
    async def get_last_root(self) -> int:
        """Current Merkle root of the pool."""
        pass

    @abstractmethod
    async def is_spent(self, nullifier: int) -> bool:
        """Whether ``nullifier`` has been published."""
        pass

    @abstractmethod
    async def get_parameters(self) -> PoolParameters:
        """Deployed pool parameters."""
        pass

    @abstractmethod
    async def submit(
        self, proof: ProofArtifact, witness: "TransactionWitness", ext_data: "ExtData"
    ) -> SubmissionReceipt:
        """Verify and apply a proven transaction."""
        pass


class EventSource(ABC):
    """Ordered, append-only view of the ledger's event log."""

    @abstractmethod
    async def fetch_commitments(self, from_block: int = 0) -> Sequence[CommitmentEvent]:
        """Commitment insertions in leaf order."""
        pass

    @abstractmethod
    async def fetch_nullifiers(self, from_block: int = 0) -> Sequence[NullifierEvent]:
        pass


class Prover(ABC):
    """Proof generation for a witness bundle."""

    @abstractmethod
    async def prove(self, witness: "TransactionWitness") -> ProofArtifact:
        """
        Prove ``witness``.

        Raises:
            InvalidWitnessError: the witness does not satisfy the circuit
        """
        pass


class BridgeEncoder(ABC):
    """Encodes a proven transaction for relay to a second domain."""

    @abstractmethod
    def encode(self, proof: bytes, witness: "TransactionWitness") -> bytes:
        pass
