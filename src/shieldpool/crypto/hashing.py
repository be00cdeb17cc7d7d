"""
Field arithmetic hash functions for the shielded pool.

All commitments, nullifiers, Merkle nodes and public keys are Poseidon hashes
over the BN254 scalar field. The sponge is used in the fixed-width mode the
pool circuits use: for ``n`` inputs the permutation width is ``t = n + 1``, the
capacity element is placed first and the output is ``state[0]`` after the
permutation.

Two constant sources are supported:

- ``grain``: round constants and Cauchy MDS matrices drawn from the Grain
  LFSR exactly as the Poseidon reference parameter script does. With the
  default round counts this is the circomlib BN254 instance that deployed
  pool circuits and on-chain hashers use.
- ``sha256``: constants expanded from a seed string with SHA-256, for
  private test domains.
"""

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple, Union

from web3 import Web3

logger = logging.getLogger(__name__)

FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Partial round counts for widths t = 2 .. 17 at 128-bit security.
PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)

CONSTANT_SOURCES = ("grain", "sha256")


class GrainLFSR:
    """80-bit Grain LFSR in self-shrinking mode.

    Seeded with the instance description (field type, S-box type, field size,
    width and round counts) and warmed up for 160 clocks before any output.
    """

    STATE_BITS = 80

    def __init__(self, field_bits: int, width: int, full_rounds: int, partial_rounds: int):
        bits = (
            _to_bits(1, 2)  # prime field
            + _to_bits(0, 4)  # x^alpha S-box
            + _to_bits(field_bits, 12)
            + _to_bits(width, 12)
            + _to_bits(full_rounds, 10)
            + _to_bits(partial_rounds, 10)
            + [1] * 30
        )
        # bit i of the int is sequence position i
        self._state = sum(bit << i for i, bit in enumerate(bits))
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        bit = ((s >> 62) ^ (s >> 51) ^ (s >> 38) ^ (s >> 23) ^ (s >> 13) ^ s) & 1
        self._state = (s >> 1) | (bit << (self.STATE_BITS - 1))
        return bit

    def next_bit(self) -> int:
        while True:
            keep = self._clock()
            bit = self._clock()
            if keep:
                return bit

    def random_bits(self, count: int) -> int:
        """Next ``count`` output bits read as a big-endian integer."""
        value = 0
        for _ in range(count):
            value = (value << 1) | self.next_bit()
        return value

    def field_element(self, modulus: int) -> int:
        """Rejection-sampled field element."""
        bits = modulus.bit_length()
        value = self.random_bits(bits)
        while value >= modulus:
            value = self.random_bits(bits)
        return value

    def cauchy_matrix(self, width: int, modulus: int) -> List[List[int]]:
        """M[i][j] = 1 / (x_i + y_j) over 2 * width distinct sampled points."""
        bits = modulus.bit_length()
        while True:
            points = [self.random_bits(bits) % modulus for _ in range(2 * width)]
            while len(set(points)) != len(points):
                points = [self.random_bits(bits) % modulus for _ in range(2 * width)]
            xs, ys = points[:width], points[width:]
            if any((x + y) % modulus == 0 for x in xs for y in ys):
                continue
            return [[pow(x + y, modulus - 2, modulus) for y in ys] for x in xs]


def _to_bits(value: int, width: int) -> List[int]:
    return [(value >> (width - 1 - i)) & 1 for i in range(width)]


@dataclass(frozen=True)
class HashDomainParams:
    """Parameters of the Poseidon instance shared with the verifier.

    ``seed`` only feeds the ``sha256`` constant source.
    """

    field_modulus: int = FIELD_SIZE
    full_rounds: int = 8
    partial_rounds: Tuple[int, ...] = field(default=PARTIAL_ROUNDS)
    alpha: int = 5
    constants: str = "grain"
    seed: str = "poseidon"

    def __post_init__(self) -> None:
        if self.field_modulus <= 2:
            raise ValueError("Field modulus must be an odd prime")
        if self.full_rounds <= 0 or self.full_rounds % 2:
            raise ValueError("Full rounds must be a positive even number")
        if not self.partial_rounds:
            raise ValueError("Partial round table cannot be empty")
        if any(r < 0 for r in self.partial_rounds):
            raise ValueError("Partial round counts must be non-negative")
        if self.alpha < 3:
            raise ValueError("S-box exponent must be at least 3")
        if self.constants not in CONSTANT_SOURCES:
            raise ValueError(
                f"Unknown constant source {self.constants!r}, expected one of {CONSTANT_SOURCES}"
            )
        if not self.seed:
            raise ValueError("Round constant seed cannot be empty")

    @classmethod
    def circomlib(cls) -> "HashDomainParams":
        """The circomlib Poseidon instance over BN254."""
        return cls()

    @classmethod
    def seeded(cls, seed: str) -> "HashDomainParams":
        """A private domain with SHA-256 expanded constants."""
        return cls(constants="sha256", seed=seed)

    @property
    def max_inputs(self) -> int:
        """Largest number of field elements hashed in one call."""
        return len(self.partial_rounds)

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return {
            "field_modulus": self.field_modulus,
            "full_rounds": self.full_rounds,
            "partial_rounds": list(self.partial_rounds),
            "alpha": self.alpha,
            "constants": self.constants,
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HashDomainParams":
        """Create parameters from dictionary."""
        return cls(
            field_modulus=int(data.get("field_modulus", FIELD_SIZE)),
            full_rounds=int(data.get("full_rounds", 8)),
            partial_rounds=tuple(int(r) for r in data.get("partial_rounds", PARTIAL_ROUNDS)),
            alpha=int(data.get("alpha", 5)),
            constants=str(data.get("constants", "grain")),
            seed=str(data.get("seed", "poseidon")),
        )


CIRCOMLIB_BN254 = HashDomainParams.circomlib()

_parameter_cache: Dict[Tuple[HashDomainParams, int], Tuple[List[int], List[List[int]]]] = {}
_parameter_lock = threading.Lock()


class PoseidonHasher:
    """Poseidon permutation over a prime field.

    Round constants and MDS matrices are derived lazily per width and cached
    per domain, shared by every hasher in the process.
    """

    def __init__(self, params: HashDomainParams = None):
        self.params = params or HashDomainParams()

    @property
    def modulus(self) -> int:
        return self.params.field_modulus

    def _grain_parameters(self, width: int) -> Tuple[List[int], List[List[int]]]:
        """Round constants then MDS matrix, in the order the generator emits them."""
        p = self.params.field_modulus
        full_rounds = self.params.full_rounds
        partial_rounds = self.params.partial_rounds[width - 2]
        grain = GrainLFSR(p.bit_length(), width, full_rounds, partial_rounds)

        constants = [grain.field_element(p) for _ in range((full_rounds + partial_rounds) * width)]
        return constants, grain.cauchy_matrix(width, p)

    def _round_constants(self, width: int) -> List[int]:
        """Expand round constants for ``width`` from the domain seed."""
        p = self.params.field_modulus
        rounds = self.params.full_rounds + self.params.partial_rounds[width - 2]
        prefix = self.params.seed.encode("utf-8") + width.to_bytes(2, "big")

        constants = []
        for i in range(rounds * width):
            digest = hashlib.sha256(prefix + i.to_bytes(4, "big")).digest()
            constants.append(int.from_bytes(digest, "big") % p)
        return constants

    def _mds_matrix(self, width: int) -> List[List[int]]:
        """Cauchy matrix M[i][j] = 1 / (x_i + y_j) with x_i = i, y_j = width + j."""
        p = self.params.field_modulus
        return [
            [pow(i + width + j, p - 2, p) for j in range(width)] for i in range(width)
        ]

    def _parameters(self, width: int) -> Tuple[List[int], List[List[int]]]:
        key = (self.params, width)
        cached = _parameter_cache.get(key)
        if cached is None:
            with _parameter_lock:
                cached = _parameter_cache.get(key)
                if cached is None:
                    if self.params.constants == "grain":
                        cached = self._grain_parameters(width)
                    else:
                        cached = (self._round_constants(width), self._mds_matrix(width))
                    _parameter_cache[key] = cached
                    logger.debug(
                        f"Derived {self.params.constants} Poseidon parameters for width {width}"
                    )
        return cached

    def _check_input(self, value: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Hash input must be an integer, got {type(value).__name__}")
        if value < 0 or value >= self.params.field_modulus:
            raise ValueError("Hash input is not a canonical field element")
        return value

    def hash(self, inputs: Sequence[int]) -> int:
        """
        Hash a sequence of field elements.

        Args:
            inputs: 1 to ``params.max_inputs`` canonical field elements

        Returns:
            The first state element after the permutation
        """
        n = len(inputs)
        if n == 0 or n > self.params.max_inputs:
            raise ValueError(
                f"Poseidon accepts 1 to {self.params.max_inputs} inputs, got {n}"
            )

        p = self.params.field_modulus
        alpha = self.params.alpha
        width = n + 1
        constants, mds = self._parameters(width)

        full_rounds = self.params.full_rounds
        partial_rounds = self.params.partial_rounds[width - 2]
        half_full = full_rounds // 2

        state = [0] + [self._check_input(x) for x in inputs]
        for r in range(full_rounds + partial_rounds):
            offset = r * width
            state = [(s + constants[offset + i]) % p for i, s in enumerate(state)]

            if r < half_full or r >= half_full + partial_rounds:
                state = [pow(s, alpha, p) for s in state]
            else:
                state[0] = pow(state[0], alpha, p)

            state = [sum(m * s for m, s in zip(row, state)) % p for row in mds]

        return state[0]

    def hash2(self, left: int, right: int) -> int:
        """Hash an ordered pair (Merkle node combiner)."""
        return self.hash([left, right])

    def __call__(self, *inputs: int) -> int:
        return self.hash(inputs)


_default_hasher: PoseidonHasher = None
_default_lock = threading.Lock()


def get_default_hasher() -> PoseidonHasher:
    """Process-wide hasher with the default domain parameters."""
    global _default_hasher
    if _default_hasher is None:
        with _default_lock:
            if _default_hasher is None:
                _default_hasher = PoseidonHasher()
    return _default_hasher


def poseidon_hash(*inputs: int) -> int:
    """Poseidon hash under the default domain."""
    return get_default_hasher().hash(inputs)


def keccak_field(data: bytes, modulus: int = FIELD_SIZE) -> int:
    """keccak256 of ``data`` reduced into the field."""
    return int.from_bytes(Web3.keccak(data), "big") % modulus


def random_field_element(bits: int = 248) -> int:
    """Uniform random value below ``2**bits`` from the OS CSPRNG."""
    if bits <= 0 or bits > 253:
        raise ValueError("bits must be in 1..253")
    return secrets.randbits(bits)


def to_fixed_hex(value: Union[int, bytes], length: int = 32) -> str:
    """Render ``value`` as a 0x-prefixed, zero-padded big-endian hex string."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        if len(raw) > length:
            raise ValueError(f"Value does not fit in {length} bytes")
        return "0x" + raw.rjust(length, b"\x00").hex()
    if value < 0:
        value = FIELD_SIZE + value
    return "0x" + value.to_bytes(length, byteorder="big").hex()


def from_hex(hex_string: str) -> int:
    """Parse a hex string, with or without 0x prefix, as a big-endian integer."""
    s = hex_string.strip()
    if s.startswith(("0x", "0X")):
        s = s[2:]
    if not s:
        raise ValueError("Empty hex string")
    return int(s, 16)
