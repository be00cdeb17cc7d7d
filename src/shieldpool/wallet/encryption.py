"""
Note payload encryption.

Payloads are sealed to a recipient's X25519 encryption key: an ephemeral key
agreement, HKDF-SHA256 key derivation bound to both public keys, then an AEAD
(ChaCha20-Poly1305 by default). The wire format is

    version (1) || ephemeral public key (32) || nonce (12) || ciphertext + tag

where the version byte also selects the AEAD.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
HEADER_LENGTH = 1 + KEY_LENGTH + NONCE_LENGTH
KDF_INFO = b"shieldpool/note-encryption/v1"


class EncryptionAlgorithm(Enum):
    """AEAD used for note payloads, keyed by wire version byte."""

    CHACHA20_POLY1305 = 1
    AES_256_GCM = 2


@dataclass
class EncryptionConfig:
    """Configuration for note encryption."""

    algorithm: EncryptionAlgorithm = EncryptionAlgorithm.CHACHA20_POLY1305

    def to_dict(self) -> Dict[str, Any]:
        return {"algorithm": self.algorithm.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionConfig":
        return cls(algorithm=EncryptionAlgorithm[data.get("algorithm", "CHACHA20_POLY1305")])


@dataclass(frozen=True)
class EncryptedPayload:
    """Sealed note payload."""

    algorithm: EncryptionAlgorithm
    ephemeral_public_key: bytes
    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return (
            bytes([self.algorithm.value])
            + self.ephemeral_public_key
            + self.nonce
            + self.ciphertext
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedPayload":
        if len(data) < HEADER_LENGTH + TAG_LENGTH:
            raise DecryptionError("Ciphertext too short")
        try:
            algorithm = EncryptionAlgorithm(data[0])
        except ValueError:
            raise DecryptionError(f"Unknown ciphertext version {data[0]}")
        return cls(
            algorithm=algorithm,
            ephemeral_public_key=data[1 : 1 + KEY_LENGTH],
            nonce=data[1 + KEY_LENGTH : HEADER_LENGTH],
            ciphertext=data[HEADER_LENGTH:],
        )


def public_key_bytes(key: Union[X25519PrivateKey, X25519PublicKey]) -> bytes:
    """Raw 32-byte encoding of an X25519 public key."""
    if isinstance(key, X25519PrivateKey):
        key = key.public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


def private_key_bytes(key: X25519PrivateKey) -> bytes:
    """Raw 32-byte encoding of an X25519 private key."""
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


class NoteCipher:
    """Seals and opens note payloads for X25519 encryption keys."""

    def __init__(self, config: EncryptionConfig = None):
        self.config = config or EncryptionConfig()

    def _derive_key(self, shared_secret: bytes, ephemeral: bytes, recipient: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=ephemeral + recipient,
            info=KDF_INFO,
        )
        return hkdf.derive(shared_secret)

    @staticmethod
    def _aead(algorithm: EncryptionAlgorithm, key: bytes):
        if algorithm == EncryptionAlgorithm.CHACHA20_POLY1305:
            return ChaCha20Poly1305(key)
        elif algorithm == EncryptionAlgorithm.AES_256_GCM:
            return AESGCM(key)
        raise EncryptionError(f"Unsupported algorithm: {algorithm}")

    def encrypt(self, payload: bytes, recipient_public_key: bytes) -> bytes:
        """Seal ``payload`` to ``recipient_public_key`` (32 raw bytes)."""
        if not payload:
            raise EncryptionError("Cannot encrypt empty payload")

        try:
            recipient = X25519PublicKey.from_public_bytes(bytes(recipient_public_key))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Malformed recipient encryption key: {e}", cause=e)

        ephemeral = X25519PrivateKey.generate()
        ephemeral_public = public_key_bytes(ephemeral)
        try:
            shared = ephemeral.exchange(recipient)
        except ValueError as e:
            raise EncryptionError(f"Invalid recipient encryption key: {e}", cause=e)

        key = self._derive_key(shared, ephemeral_public, bytes(recipient_public_key))
        nonce = secrets.token_bytes(NONCE_LENGTH)
        ciphertext = self._aead(self.config.algorithm, key).encrypt(nonce, payload, None)

        return EncryptedPayload(
            algorithm=self.config.algorithm,
            ephemeral_public_key=ephemeral_public,
            nonce=nonce,
            ciphertext=ciphertext,
        ).to_bytes()

    def decrypt(self, data: bytes, private_key: X25519PrivateKey) -> bytes:
        """Open a sealed payload with the recipient's private key."""
        sealed = EncryptedPayload.from_bytes(bytes(data))

        try:
            ephemeral = X25519PublicKey.from_public_bytes(sealed.ephemeral_public_key)
            shared = private_key.exchange(ephemeral)
        except ValueError as e:
            raise DecryptionError(f"Invalid ephemeral key: {e}", cause=e)

        key = self._derive_key(
            shared, sealed.ephemeral_public_key, public_key_bytes(private_key)
        )
        try:
            return self._aead(sealed.algorithm, key).decrypt(
                sealed.nonce, sealed.ciphertext, None
            )
        except InvalidTag:
            raise DecryptionError("Ciphertext was not sealed for this key or is corrupted")
