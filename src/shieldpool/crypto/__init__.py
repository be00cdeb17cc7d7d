"""
Cryptographic primitives for shieldpool.

This module provides:
- The Poseidon hash domain over the BN254 scalar field, circomlib compatible
- keccak reduction into the field
- The fixed-height Merkle accumulator over note commitments
"""

from .hashing import (
    CIRCOMLIB_BN254,
    FIELD_SIZE,
    GrainLFSR,
    HashDomainParams,
    PoseidonHasher,
    from_hex,
    get_default_hasher,
    keccak_field,
    poseidon_hash,
    random_field_element,
    to_fixed_hex,
)
from .merkle import ZERO_VALUE, MerkleAccumulator, MerkleProof

__all__ = [
    "CIRCOMLIB_BN254",
    "FIELD_SIZE",
    "GrainLFSR",
    "HashDomainParams",
    "PoseidonHasher",
    "get_default_hasher",
    "poseidon_hash",
    "keccak_field",
    "random_field_element",
    "to_fixed_hex",
    "from_hex",
    "ZERO_VALUE",
    "MerkleAccumulator",
    "MerkleProof",
]
