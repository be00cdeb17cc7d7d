"""
External data passed through to the verifier.

The ext data carries everything about a transaction that is public but not a
circuit signal: the withdrawal recipient, the relayer and its fee, and the
encrypted outputs. The circuit binds to it through ``ext_data_hash``, the
keccak of its ABI encoding reduced into the field.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from eth_abi import encode
from web3 import Web3

from ..crypto.hashing import keccak_field, to_fixed_hex
from .interfaces import BridgeEncoder

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

EXT_DATA_TYPE = (
    "(address,int256,address,uint256,bytes,bytes,bool,uint256)"
)
PROOF_ARGS_TYPE = "(bytes,bytes32,bytes32[],bytes32[2],uint256,bytes32)"


@dataclass(frozen=True)
class ExtData:
    """Public transaction metadata hashed into the proof."""

    recipient: str = ZERO_ADDRESS
    ext_amount: int = 0
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    encrypted_output1: bytes = b""
    encrypted_output2: bytes = b""
    is_l1_withdrawal: bool = False
    l1_fee: int = 0

    def __post_init__(self):
        # eth_abi rejects addresses with an invalid checksum
        object.__setattr__(self, "recipient", Web3.to_checksum_address(self.recipient))
        object.__setattr__(self, "relayer", Web3.to_checksum_address(self.relayer))
        if self.fee < 0 or self.l1_fee < 0:
            raise ValueError("Fees cannot be negative")

    def as_tuple(self) -> tuple:
        return (
            self.recipient,
            self.ext_amount,
            self.relayer,
            self.fee,
            self.encrypted_output1,
            self.encrypted_output2,
            self.is_l1_withdrawal,
            self.l1_fee,
        )

    def encode(self) -> bytes:
        """ABI encoding of the ext data tuple."""
        return encode([EXT_DATA_TYPE], [self.as_tuple()])

    def hash(self) -> int:
        return keccak_field(self.encode())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "extAmount": to_fixed_hex(self.ext_amount),
            "relayer": self.relayer,
            "fee": to_fixed_hex(self.fee),
            "encryptedOutput1": "0x" + self.encrypted_output1.hex(),
            "encryptedOutput2": "0x" + self.encrypted_output2.hex(),
            "isL1Withdrawal": self.is_l1_withdrawal,
            "l1Fee": to_fixed_hex(self.l1_fee),
        }


def _bytes32(value: int) -> bytes:
    return value.to_bytes(32, "big")


def proof_args(
    proof: bytes,
    root: int,
    nullifiers: Sequence[int],
    commitments: Sequence[int],
    public_amount: int,
    ext_data_hash: int,
) -> tuple:
    """Proof arguments in the ledger's calldata layout."""
    return (
        bytes(proof),
        _bytes32(root),
        [_bytes32(n) for n in nullifiers],
        [_bytes32(c) for c in commitments],
        public_amount,
        _bytes32(ext_data_hash),
    )


class AbiBridgeEncoder(BridgeEncoder):
    """Encodes proof arguments and ext data for relay to another domain."""

    def encode(self, proof: bytes, witness: Any) -> bytes:
        args = proof_args(
            proof,
            witness.root,
            witness.nullifiers,
            witness.commitments,
            witness.public_amount,
            witness.ext_data_hash,
        )
        payload = encode(
            [PROOF_ARGS_TYPE, EXT_DATA_TYPE], [args, witness.ext_data.as_tuple()]
        )
        logger.debug(f"Encoded {len(payload)} byte bridge payload")
        return payload


def encode_for_bridge(proof: bytes, witness: Any) -> bytes:
    return AbiBridgeEncoder().encode(proof, witness)
