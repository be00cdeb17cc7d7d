"""
Unit tests for note payload encryption.
"""

import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from shieldpool.errors import DecryptionError, EncryptionError
from shieldpool.wallet.encryption import (
    HEADER_LENGTH,
    TAG_LENGTH,
    EncryptedPayload,
    EncryptionAlgorithm,
    EncryptionConfig,
    NoteCipher,
    private_key_bytes,
    public_key_bytes,
)


@pytest.fixture
def recipient():
    return X25519PrivateKey.generate()


class TestNoteCipher:
    """Test NoteCipher."""

    @pytest.mark.parametrize("algorithm", list(EncryptionAlgorithm))
    def test_round_trip(self, recipient, algorithm):
        """Test decrypt(encrypt(m)) == m for every AEAD."""
        cipher = NoteCipher(EncryptionConfig(algorithm=algorithm))
        sealed = cipher.encrypt(b"note payload", public_key_bytes(recipient))
        assert sealed[0] == algorithm.value
        assert NoteCipher().decrypt(sealed, recipient) == b"note payload"

    def test_ciphertext_layout(self, recipient):
        sealed = NoteCipher().encrypt(b"x" * 62, public_key_bytes(recipient))
        assert len(sealed) == HEADER_LENGTH + 62 + TAG_LENGTH

    def test_encryption_is_randomized(self, recipient):
        cipher = NoteCipher()
        key = public_key_bytes(recipient)
        assert cipher.encrypt(b"same", key) != cipher.encrypt(b"same", key)

    def test_wrong_key(self, recipient):
        sealed = NoteCipher().encrypt(b"secret", public_key_bytes(recipient))
        with pytest.raises(DecryptionError):
            NoteCipher().decrypt(sealed, X25519PrivateKey.generate())

    def test_corrupted_ciphertext(self, recipient):
        sealed = bytearray(NoteCipher().encrypt(b"secret", public_key_bytes(recipient)))
        sealed[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            NoteCipher().decrypt(bytes(sealed), recipient)

    def test_short_ciphertext(self, recipient):
        with pytest.raises(DecryptionError, match="too short"):
            NoteCipher().decrypt(b"\x01" * 10, recipient)

    def test_unknown_version(self, recipient):
        sealed = bytearray(NoteCipher().encrypt(b"secret", public_key_bytes(recipient)))
        sealed[0] = 99
        with pytest.raises(DecryptionError, match="version"):
            NoteCipher().decrypt(bytes(sealed), recipient)

    def test_empty_payload(self, recipient):
        with pytest.raises(EncryptionError):
            NoteCipher().encrypt(b"", public_key_bytes(recipient))

    def test_malformed_recipient_key(self):
        with pytest.raises(EncryptionError):
            NoteCipher().encrypt(b"payload", b"\x00" * 31)


class TestEncryptedPayload:
    """Test the wire format."""

    def test_bytes_round_trip(self):
        payload = EncryptedPayload(
            algorithm=EncryptionAlgorithm.AES_256_GCM,
            ephemeral_public_key=b"\x01" * 32,
            nonce=b"\x02" * 12,
            ciphertext=b"\x03" * 20,
        )
        assert EncryptedPayload.from_bytes(payload.to_bytes()) == payload

    def test_key_helpers(self, recipient):
        assert len(public_key_bytes(recipient)) == 32
        assert public_key_bytes(recipient) == public_key_bytes(recipient.public_key())
        assert len(private_key_bytes(recipient)) == 32


class TestEncryptionConfig:
    """Test EncryptionConfig."""

    def test_dict_round_trip(self):
        config = EncryptionConfig(algorithm=EncryptionAlgorithm.AES_256_GCM)
        assert EncryptionConfig.from_dict(config.to_dict()).algorithm == config.algorithm

    def test_default(self):
        assert EncryptionConfig().algorithm == EncryptionAlgorithm.CHACHA20_POLY1305
