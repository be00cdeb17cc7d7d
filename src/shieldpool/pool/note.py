"""
Shielded notes (UTXOs).

A note is ``(amount, owner public key, blinding)`` plus its leaf position once
inserted into the accumulator. Only its commitment is published on insertion;
spending it publishes the nullifier, which requires both the owner's spending
key and the note's position.
"""

import logging
from typing import Any, Dict, Optional

from ..crypto.hashing import random_field_element
from ..errors import DecryptionError, MissingSpendingKeyError
from ..wallet.keypair import Keypair

logger = logging.getLogger(__name__)

AMOUNT_BYTES = 31
BLINDING_BYTES = 31
PAYLOAD_LENGTH = AMOUNT_BYTES + BLINDING_BYTES
MAX_NOTE_AMOUNT = 2 ** (8 * AMOUNT_BYTES)
MAX_BLINDING = 2 ** (8 * BLINDING_BYTES)


class Note:
    """Value record owned by a keypair."""

    def __init__(
        self,
        amount: int = 0,
        keypair: Optional[Keypair] = None,
        blinding: Optional[int] = None,
        index: Optional[int] = None,
    ):
        """
        Create a note.

        Args:
            amount: Value in base units
            keypair: Owner; a fresh random keypair when omitted
            blinding: Uniqueness source; drawn from the OS CSPRNG when omitted
            index: Leaf position, ``None`` until the commitment is inserted
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValueError("Note amount must be an integer")
        if amount < 0 or amount >= MAX_NOTE_AMOUNT:
            raise ValueError("Note amount out of range")

        if blinding is None:
            blinding = random_field_element(8 * BLINDING_BYTES)
        elif blinding < 0 or blinding >= MAX_BLINDING:
            raise ValueError("Blinding out of range")

        if index is not None and index < 0:
            raise ValueError("Note index cannot be negative")

        self.amount = amount
        self.keypair = keypair or Keypair.generate()
        self.blinding = blinding
        self.index = index
        self._commitment: Optional[int] = None

    @classmethod
    def zero(cls, keypair: Keypair) -> "Note":
        """Zero-amount placeholder used to pad a transaction."""
        return cls(amount=0, keypair=keypair)

    @property
    def owner_public_key(self) -> int:
        return self.keypair.public_key

    def commitment(self) -> int:
        """Hash(amount, owner public key, blinding)."""
        if self._commitment is None:
            self._commitment = self.keypair.hasher.hash(
                [self.amount, self.keypair.public_key, self.blinding]
            )
        return self._commitment

    def nullifier(self, index: Optional[int] = None) -> int:
        """
        Hash(commitment, index, sign(commitment, index)).

        Args:
            index: Leaf position; defaults to the note's recorded index
        """
        position = self.index if index is None else index
        if position is None:
            raise ValueError("Note has no tree position to derive a nullifier from")
        if not self.keypair.can_spend:
            raise MissingSpendingKeyError(
                "Cannot derive a nullifier for a note held without its spending key",
                metadata={"commitment": hex(self.commitment())},
            )

        commitment = self.commitment()
        signature = self.keypair.sign(commitment, position)
        return self.keypair.hasher.hash([commitment, position, signature])

    def payload(self) -> bytes:
        """Plaintext payload: amount and blinding, 31 bytes each."""
        return self.amount.to_bytes(AMOUNT_BYTES, "big") + self.blinding.to_bytes(
            BLINDING_BYTES, "big"
        )

    def encrypt(self, recipient: Optional[Keypair] = None) -> bytes:
        """Seal the payload for ``recipient``, by default the note's owner."""
        target = recipient or self.keypair
        return self.keypair.encrypt(self.payload(), target.encryption_public_key)

    @classmethod
    def decode_strict(
        cls, ciphertext: bytes, keypair: Keypair, index: Optional[int] = None
    ) -> "Note":
        """Decrypt a payload addressed to ``keypair``; raises ``DecryptionError``."""
        payload = keypair.decrypt(ciphertext)
        if len(payload) != PAYLOAD_LENGTH:
            raise DecryptionError(
                f"Note payload must be {PAYLOAD_LENGTH} bytes, got {len(payload)}"
            )
        return cls(
            amount=int.from_bytes(payload[:AMOUNT_BYTES], "big"),
            keypair=keypair,
            blinding=int.from_bytes(payload[AMOUNT_BYTES:], "big"),
            index=index,
        )

    @classmethod
    def decode(
        cls, ciphertext: bytes, keypair: Keypair, index: Optional[int] = None
    ) -> Optional["Note"]:
        """Decrypt a scanned payload; ``None`` when it is not ours."""
        try:
            return cls.decode_strict(ciphertext, keypair, index)
        except DecryptionError:
            return None

    def with_index(self, index: int) -> "Note":
        """Copy of this note materialized at leaf ``index``."""
        return Note(
            amount=self.amount, keypair=self.keypair, blinding=self.blinding, index=index
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "owner": hex(self.keypair.public_key),
            "commitment": hex(self.commitment()),
            "index": self.index,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Note):
            return False
        return self.commitment() == other.commitment() and self.index == other.index

    def __hash__(self) -> int:
        return hash((self.commitment(), self.index))

    def __repr__(self) -> str:
        return f"Note(amount={self.amount}, commitment={hex(self.commitment())[:12]}..., index={self.index})"
