"""
Unit tests for ext data hashing and bridge encoding.
"""

from types import SimpleNamespace

import pytest
from eth_abi import decode

from shieldpool.crypto.hashing import FIELD_SIZE
from shieldpool.pool.ext_data import (
    EXT_DATA_TYPE,
    PROOF_ARGS_TYPE,
    ZERO_ADDRESS,
    AbiBridgeEncoder,
    ExtData,
    encode_for_bridge,
    proof_args,
)

RECIPIENT = "0x" + "ab" * 20


class TestExtData:
    """Test ExtData."""

    def test_addresses_checksummed(self):
        ext = ExtData(recipient=RECIPIENT)
        assert ext.recipient != RECIPIENT
        assert ext.recipient.lower() == RECIPIENT
        assert ext.relayer == ZERO_ADDRESS

    def test_invalid_address(self):
        with pytest.raises(ValueError):
            ExtData(recipient="0x1234")

    def test_negative_fee(self):
        with pytest.raises(ValueError):
            ExtData(fee=-1)

    def test_hash_in_field(self):
        ext = ExtData(recipient=RECIPIENT, ext_amount=-10, fee=1, encrypted_output1=b"\x01")
        assert 0 <= ext.hash() < FIELD_SIZE

    def test_hash_binds_every_field(self):
        base = ExtData(recipient=RECIPIENT, ext_amount=-10, fee=1)
        assert base.hash() == ExtData(recipient=RECIPIENT, ext_amount=-10, fee=1).hash()
        assert base.hash() != ExtData(recipient=RECIPIENT, ext_amount=-10, fee=2).hash()
        assert base.hash() != ExtData(recipient=RECIPIENT, ext_amount=-11, fee=1).hash()
        assert base.hash() != ExtData(
            recipient=RECIPIENT, ext_amount=-10, fee=1, is_l1_withdrawal=True
        ).hash()

    def test_encode_layout(self):
        ext = ExtData(recipient=RECIPIENT, ext_amount=-10, encrypted_output2=b"\xff\xee")
        (decoded,) = decode([EXT_DATA_TYPE], ext.encode())
        assert decoded[0].lower() == RECIPIENT
        assert decoded[1] == -10
        assert decoded[5] == b"\xff\xee"

    def test_to_dict(self):
        data = ExtData(ext_amount=-1, encrypted_output1=b"\x01").to_dict()
        assert data["extAmount"] == "0x" + (FIELD_SIZE - 1).to_bytes(32, "big").hex()
        assert data["encryptedOutput1"] == "0x01"
        assert data["isL1Withdrawal"] is False


class TestBridgeEncoding:
    """Test the bridge payload."""

    def _witness(self):
        return SimpleNamespace(
            root=7,
            nullifiers=[1, 2],
            commitments=[3, 4],
            public_amount=FIELD_SIZE - 5,
            ext_data_hash=9,
            ext_data=ExtData(recipient=RECIPIENT, ext_amount=-5),
        )

    def test_proof_args(self):
        args = proof_args(b"\x01", 7, [1, 2], [3, 4], 5, 9)
        assert args[0] == b"\x01"
        assert args[1] == (7).to_bytes(32, "big")
        assert len(args[2]) == 2
        assert args[4] == 5

    def test_encode_decodes(self):
        witness = self._witness()
        payload = AbiBridgeEncoder().encode(b"proof", witness)
        args, ext = decode([PROOF_ARGS_TYPE, EXT_DATA_TYPE], payload)

        assert args[0] == b"proof"
        assert int.from_bytes(args[1], "big") == 7
        assert [int.from_bytes(n, "big") for n in args[2]] == [1, 2]
        assert args[4] == FIELD_SIZE - 5
        assert ext[1] == -5

    def test_encode_for_bridge(self):
        witness = self._witness()
        assert encode_for_bridge(b"proof", witness) == AbiBridgeEncoder().encode(b"proof", witness)
