"""
Shielded pool keypairs.

A keypair bundles two independent secrets:

- the spending key, a field element whose Poseidon hash is the public key
  that owns note commitments, and
- an X25519 encryption key used only to seal note payloads, so viewing can be
  delegated without granting spend authority.

Addresses are ``0x`` followed by the 32-byte public key and the 32-byte
encryption public key, both hex encoded.
"""

import logging
import secrets
from typing import Any, Dict, Optional, Tuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..crypto.hashing import FIELD_SIZE, PoseidonHasher, get_default_hasher
from ..errors import DecryptionError, MissingSpendingKeyError
from .encryption import NoteCipher, private_key_bytes, public_key_bytes

logger = logging.getLogger(__name__)

ADDRESS_LENGTH = 2 + 64 + 64
SPENDING_KEY_INFO = b"shieldpool/spending-key"
ENCRYPTION_KEY_INFO = b"shieldpool/encryption-key"


def _expand_seed(seed: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info).derive(seed)


def parse_address(address: str) -> Tuple[int, bytes]:
    """Split an address into ``(public_key, encryption_public_key)``."""
    if not isinstance(address, str):
        raise ValueError("Address must be a string")
    s = address.strip()
    if len(s) != ADDRESS_LENGTH or not s.startswith(("0x", "0X")):
        raise ValueError("Address must be 0x followed by 128 hex characters")
    try:
        raw = bytes.fromhex(s[2:])
    except ValueError as e:
        raise ValueError(f"Address is not valid hex: {e}")
    public_key = int.from_bytes(raw[:32], "big")
    if public_key >= FIELD_SIZE:
        raise ValueError("Address public key is not a field element")
    return public_key, raw[32:]


class Keypair:
    """Spending and encryption keys of one pool account."""

    def __init__(
        self,
        spending_key: Optional[int] = None,
        encryption_private_key: Optional[X25519PrivateKey] = None,
        public_key: Optional[int] = None,
        encryption_public_key: Optional[bytes] = None,
        hasher: Optional[PoseidonHasher] = None,
        cipher: Optional[NoteCipher] = None,
    ):
        self._hasher = hasher or get_default_hasher()
        self._cipher = cipher or NoteCipher()

        if spending_key is not None:
            if spending_key <= 0 or spending_key >= self._hasher.modulus:
                raise ValueError("Spending key must be a non-zero field element")
            derived = self._hasher.hash([spending_key])
            if public_key is not None and public_key != derived:
                raise ValueError("Public key does not match spending key")
            public_key = derived
        elif public_key is None:
            raise ValueError("Either a spending key or a public key is required")
        elif public_key < 0 or public_key >= self._hasher.modulus:
            raise ValueError("Public key must be a field element")

        if encryption_private_key is not None:
            derived_enc = public_key_bytes(encryption_private_key)
            if encryption_public_key is not None and bytes(encryption_public_key) != derived_enc:
                raise ValueError("Encryption public key does not match private key")
            encryption_public_key = derived_enc
        elif encryption_public_key is None:
            raise ValueError("Either an encryption private key or public key is required")

        if len(encryption_public_key) != 32:
            raise ValueError("Encryption public key must be 32 bytes")

        self._spending_key = spending_key
        self._encryption_private_key = encryption_private_key
        self.public_key = public_key
        self.encryption_public_key = bytes(encryption_public_key)

    @classmethod
    def generate(
        cls,
        seed: Optional[Union[bytes, str]] = None,
        hasher: Optional[PoseidonHasher] = None,
    ) -> "Keypair":
        """
        Create a keypair, deterministically when ``seed`` is given.

        Args:
            seed: Secret seed material; random 32 bytes when omitted
            hasher: Hash domain for the public key
        """
        if seed is None:
            seed = secrets.token_bytes(32)
        elif isinstance(seed, str):
            seed = seed.encode("utf-8")
        if not seed:
            raise ValueError("Seed cannot be empty")

        hasher = hasher or get_default_hasher()
        # 64 bytes keeps the modular reduction bias negligible
        spending_key = (
            int.from_bytes(_expand_seed(seed, SPENDING_KEY_INFO, 64), "big")
            % (hasher.modulus - 1)
        ) + 1
        encryption_key = X25519PrivateKey.from_private_bytes(
            _expand_seed(seed, ENCRYPTION_KEY_INFO, 32)
        )
        return cls(
            spending_key=spending_key,
            encryption_private_key=encryption_key,
            hasher=hasher,
        )

    @classmethod
    def from_address(cls, address: str, hasher: Optional[PoseidonHasher] = None) -> "Keypair":
        """Recipient-only keypair for addressing notes to a third party."""
        public_key, encryption_public_key = parse_address(address)
        return cls(
            public_key=public_key,
            encryption_public_key=encryption_public_key,
            hasher=hasher,
        )

    @property
    def can_spend(self) -> bool:
        return self._spending_key is not None

    @property
    def can_view(self) -> bool:
        return self._encryption_private_key is not None

    @property
    def spending_key(self) -> int:
        if self._spending_key is None:
            raise MissingSpendingKeyError("Keypair holds no spending key")
        return self._spending_key

    @property
    def hasher(self) -> PoseidonHasher:
        return self._hasher

    def address(self) -> str:
        """Shareable encoding of the public key and encryption public key."""
        return "0x" + self.public_key.to_bytes(32, "big").hex() + self.encryption_public_key.hex()

    def sign(self, commitment: int, index: int) -> int:
        """Spend authorization binding a commitment to its tree position."""
        return self._hasher.hash([self.spending_key, commitment, index])

    def encrypt(self, payload: bytes, recipient_encryption_public_key: Optional[bytes] = None) -> bytes:
        """Seal ``payload`` for the recipient, or for this keypair by default."""
        if recipient_encryption_public_key is None:
            recipient_encryption_public_key = self.encryption_public_key
        return self._cipher.encrypt(payload, recipient_encryption_public_key)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Open a payload sealed to this keypair's encryption key."""
        if self._encryption_private_key is None:
            raise DecryptionError("Keypair holds no encryption private key")
        return self._cipher.decrypt(ciphertext, self._encryption_private_key)

    def view_only(self) -> "Keypair":
        """Copy that can scan and decrypt notes but not spend them."""
        return Keypair(
            public_key=self.public_key,
            encryption_private_key=self._encryption_private_key,
            hasher=self._hasher,
            cipher=self._cipher,
        )

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """Hex-encoded key material; secrets only on request."""
        data: Dict[str, Any] = {
            "public_key": hex(self.public_key),
            "encryption_public_key": self.encryption_public_key.hex(),
            "address": self.address(),
        }
        if include_secrets:
            data["spending_key"] = hex(self._spending_key) if self._spending_key else None
            data["encryption_private_key"] = (
                private_key_bytes(self._encryption_private_key).hex()
                if self._encryption_private_key
                else None
            )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], hasher: Optional[PoseidonHasher] = None) -> "Keypair":
        spending_key = data.get("spending_key")
        encryption_private_key = data.get("encryption_private_key")
        return cls(
            spending_key=int(spending_key, 16) if spending_key else None,
            encryption_private_key=X25519PrivateKey.from_private_bytes(
                bytes.fromhex(encryption_private_key)
            )
            if encryption_private_key
            else None,
            public_key=int(data["public_key"], 16) if data.get("public_key") else None,
            encryption_public_key=bytes.fromhex(data["encryption_public_key"])
            if data.get("encryption_public_key")
            else None,
            hasher=hasher,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Keypair):
            return False
        return (
            self.public_key == other.public_key
            and self.encryption_public_key == other.encryption_public_key
        )

    def __hash__(self) -> int:
        return hash((self.public_key, self.encryption_public_key))

    def __repr__(self) -> str:
        mode = "spend" if self.can_spend else ("view" if self.can_view else "address")
        return f"Keypair({self.address()[:18]}..., {mode})"
