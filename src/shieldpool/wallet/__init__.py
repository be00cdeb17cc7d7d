"""
Wallet primitives for shieldpool.

Keypairs, addresses and note payload encryption.
"""

from .encryption import (
    EncryptedPayload,
    EncryptionAlgorithm,
    EncryptionConfig,
    NoteCipher,
)
from .keypair import Keypair, parse_address

__all__ = [
    "Keypair",
    "parse_address",
    "NoteCipher",
    "EncryptedPayload",
    "EncryptionAlgorithm",
    "EncryptionConfig",
]
