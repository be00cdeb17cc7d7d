"""
Unit tests for pool keypairs and addresses.
"""

import pytest

from shieldpool.crypto.hashing import FIELD_SIZE, get_default_hasher
from shieldpool.errors import DecryptionError, EncryptionError, MissingSpendingKeyError
from shieldpool.wallet.keypair import Keypair, parse_address


class TestKeypairGeneration:
    """Test keypair generation."""

    def test_seeded_generation_is_deterministic(self):
        """Test the same seed gives identical keys."""
        a = Keypair.generate(b"correct horse battery staple")
        b = Keypair.generate(b"correct horse battery staple")
        assert a.spending_key == b.spending_key
        assert a.public_key == b.public_key
        assert a.encryption_public_key == b.encryption_public_key
        assert a.address() == b.address()

    def test_string_seed(self):
        assert Keypair.generate("seed").address() == Keypair.generate(b"seed").address()

    def test_different_seeds(self):
        assert Keypair.generate(b"one").public_key != Keypair.generate(b"two").public_key

    def test_random_generation(self):
        assert Keypair.generate().public_key != Keypair.generate().public_key

    def test_empty_seed_rejected(self):
        with pytest.raises(ValueError):
            Keypair.generate(b"")

    def test_public_key_is_hash_of_spending_key(self):
        keypair = Keypair.generate(b"seed")
        assert keypair.public_key == get_default_hasher().hash([keypair.spending_key])

    def test_spending_key_range(self):
        with pytest.raises(ValueError):
            Keypair(spending_key=0)

    def test_requires_key_material(self):
        with pytest.raises(ValueError):
            Keypair()

    def test_mismatched_public_key(self):
        keypair = Keypair.generate(b"seed")
        with pytest.raises(ValueError, match="does not match"):
            Keypair(
                spending_key=keypair.spending_key,
                public_key=keypair.public_key + 1,
                encryption_public_key=keypair.encryption_public_key,
            )


class TestAddress:
    """Test address encoding."""

    def test_address_format(self):
        address = Keypair.generate(b"seed").address()
        assert address.startswith("0x")
        assert len(address) == 130

    def test_address_round_trip(self):
        keypair = Keypair.generate(b"seed")
        public_key, encryption_public_key = parse_address(keypair.address())
        assert public_key == keypair.public_key
        assert encryption_public_key == keypair.encryption_public_key

    def test_from_address(self):
        """Test a recipient keypair can receive but not spend or view."""
        keypair = Keypair.generate(b"seed")
        recipient = Keypair.from_address(keypair.address())
        assert recipient == keypair
        assert not recipient.can_spend
        assert not recipient.can_view
        with pytest.raises(MissingSpendingKeyError):
            recipient.spending_key

    @pytest.mark.parametrize(
        "address",
        ["", "0x1234", "1x" + "00" * 64, "0x" + "zz" * 64, "0x" + "00" * 65],
    )
    def test_invalid_addresses(self, address):
        with pytest.raises(ValueError):
            parse_address(address)

    def test_non_string_address(self):
        with pytest.raises(ValueError):
            parse_address(b"0x00")

    def test_public_key_outside_field(self):
        """Test a public key at or above the field modulus is rejected."""
        encryption_public_key = Keypair.generate(b"seed").encryption_public_key
        for public_key in (FIELD_SIZE, 2**256 - 1):
            address = "0x" + public_key.to_bytes(32, "big").hex() + encryption_public_key.hex()
            with pytest.raises(ValueError, match="field element"):
                parse_address(address)
            with pytest.raises(ValueError, match="field element"):
                Keypair.from_address(address)
            with pytest.raises(ValueError, match="field element"):
                Keypair(public_key=public_key, encryption_public_key=encryption_public_key)

    def test_largest_field_element_accepted(self):
        encryption_public_key = Keypair.generate(b"seed").encryption_public_key
        address = "0x" + (FIELD_SIZE - 1).to_bytes(32, "big").hex() + encryption_public_key.hex()
        assert Keypair.from_address(address).public_key == FIELD_SIZE - 1


class TestKeypairOperations:
    """Test signing and encryption through a keypair."""

    def test_sign(self):
        keypair = Keypair.generate(b"seed")
        hasher = get_default_hasher()
        assert keypair.sign(11, 3) == hasher.hash([keypair.spending_key, 11, 3])
        assert keypair.sign(11, 3) != keypair.sign(11, 4)

    def test_sign_requires_spending_key(self):
        recipient = Keypair.from_address(Keypair.generate(b"seed").address())
        with pytest.raises(MissingSpendingKeyError):
            recipient.sign(1, 0)

    def test_encrypt_to_self(self):
        keypair = Keypair.generate(b"seed")
        ciphertext = keypair.encrypt(b"hello")
        assert keypair.decrypt(ciphertext) == b"hello"

    def test_encrypt_to_recipient(self):
        sender = Keypair.generate(b"sender")
        receiver = Keypair.generate(b"receiver")
        ciphertext = sender.encrypt(b"payload", receiver.encryption_public_key)
        assert receiver.decrypt(ciphertext) == b"payload"
        with pytest.raises(DecryptionError):
            sender.decrypt(ciphertext)

    def test_encrypt_malformed_recipient_key(self):
        with pytest.raises(EncryptionError):
            Keypair.generate(b"seed").encrypt(b"payload", b"\x01" * 5)

    def test_decrypt_without_private_key(self):
        keypair = Keypair.generate(b"seed")
        recipient = Keypair.from_address(keypair.address())
        ciphertext = keypair.encrypt(b"payload")
        with pytest.raises(DecryptionError):
            recipient.decrypt(ciphertext)

    def test_view_only(self):
        """Test a view-only copy decrypts but cannot spend."""
        keypair = Keypair.generate(b"seed")
        viewer = keypair.view_only()
        assert viewer.can_view
        assert not viewer.can_spend
        assert viewer.decrypt(keypair.encrypt(b"payload")) == b"payload"
        assert viewer.address() == keypair.address()


class TestKeypairSerialization:
    """Test keypair serialization."""

    def test_to_dict_hides_secrets(self):
        data = Keypair.generate(b"seed").to_dict()
        assert "spending_key" not in data
        assert "encryption_private_key" not in data

    def test_dict_round_trip_with_secrets(self):
        keypair = Keypair.generate(b"seed")
        restored = Keypair.from_dict(keypair.to_dict(include_secrets=True))
        assert restored.spending_key == keypair.spending_key
        assert restored.decrypt(keypair.encrypt(b"x")) == b"x"

    def test_public_dict_round_trip(self):
        keypair = Keypair.generate(b"seed")
        restored = Keypair.from_dict(keypair.to_dict())
        assert restored == keypair
        assert not restored.can_spend

    def test_repr_never_shows_secrets(self):
        keypair = Keypair.generate(b"seed")
        text = repr(keypair)
        assert hex(keypair.spending_key)[2:] not in text
        assert "spend" in text

    def test_hashable(self):
        keypair = Keypair.generate(b"seed")
        assert len({keypair, Keypair.from_address(keypair.address())}) == 1
