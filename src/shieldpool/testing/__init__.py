"""shieldpool testing infrastructure.

In-memory collaborators for exercising the pool client without a chain or a
real prover.
"""

from .ledger import ROOT_HISTORY_SIZE, InMemoryLedger
from .prover import MockProver

__all__ = [
    "InMemoryLedger",
    "MockProver",
    "ROOT_HISTORY_SIZE",
]
