"""
Pool configuration.

Every value here must match the ledger's deployment exactly; a mismatch
yields proofs the verifier rejects, so ``PoolConfig.check_against`` is run
before any transaction work.
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from web3 import Web3

from ..crypto.hashing import HashDomainParams, PoseidonHasher
from ..crypto.merkle import MAX_HEIGHT, ZERO_VALUE
from ..errors import ConfigMismatchError

logger = logging.getLogger(__name__)

# Amounts are fixed-point with 248 bits of headroom below the field size.
MAX_AMOUNT = 2**248
MAX_FEE = 2**248

DEFAULT_MIN_WITHDRAW = int(Web3.to_wei(Decimal("0.05"), "ether"))
DEFAULT_MAX_DEPOSIT = int(Web3.to_wei(Decimal("1"), "ether"))


def parse_ether(value: Any) -> int:
    """Convert an ether-denominated amount to base units."""
    return int(Web3.to_wei(Decimal(str(value)), "ether"))


@dataclass
class PoolParameters:
    """Parameters as reported by the ledger; ``None`` means not reported."""

    tree_height: Optional[int] = None
    min_withdraw: Optional[int] = None
    max_deposit: Optional[int] = None
    input_counts: Optional[Tuple[int, ...]] = None
    output_count: Optional[int] = None
    zero_value: Optional[int] = None
    hash_domain: Optional[HashDomainParams] = None
    # hash of two zero leaves under the ledger's own hasher
    zero_node: Optional[int] = None


@dataclass
class PoolConfig:
    """Client-side pool configuration."""

    tree_height: int = 23
    input_counts: Tuple[int, ...] = (2, 16)
    output_count: int = 2
    min_withdraw: int = DEFAULT_MIN_WITHDRAW
    max_deposit: int = DEFAULT_MAX_DEPOSIT
    zero_value: int = ZERO_VALUE
    hash_domain: HashDomainParams = field(default_factory=HashDomainParams)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration."""
        self.input_counts = tuple(self.input_counts)
        self.validate()

    def validate(self) -> None:
        if self.tree_height < 1 or self.tree_height > MAX_HEIGHT:
            raise ValueError(f"Tree height must be between 1 and {MAX_HEIGHT}")

        if not self.input_counts:
            raise ValueError("At least one input count is required")

        if any(n <= 0 for n in self.input_counts):
            raise ValueError("Input counts must be positive")

        if list(self.input_counts) != sorted(set(self.input_counts)):
            raise ValueError("Input counts must be unique and ascending")

        if self.output_count != 2:
            raise ValueError("Output count must be 2: one recipient note and one change note")

        if self.min_withdraw < 0:
            raise ValueError("Minimum withdrawal cannot be negative")

        if self.max_deposit <= 0:
            raise ValueError("Maximum deposit must be positive")

        if self.max_deposit >= MAX_AMOUNT:
            raise ValueError("Maximum deposit exceeds the amount range")

        if self.hash_domain.max_inputs < 3:
            raise ValueError("Hash domain must accept at least 3 inputs")

        if self.zero_value < 0 or self.zero_value >= self.hash_domain.field_modulus:
            raise ValueError("Zero value must be a field element")

    @property
    def max_inputs(self) -> int:
        return self.input_counts[-1]

    def input_count_for(self, selected: int) -> int:
        """Smallest circuit input size that fits ``selected`` notes."""
        for size in self.input_counts:
            if size >= selected:
                return size
        raise ValueError(
            f"{selected} inputs exceed the largest circuit size {self.max_inputs}"
        )

    def create_hasher(self) -> PoseidonHasher:
        return PoseidonHasher(self.hash_domain)

    def check_against(self, parameters: PoolParameters) -> None:
        """Raise ``ConfigMismatchError`` for every value the ledger disagrees on."""
        mismatches: Dict[str, Tuple[Any, Any]] = {}

        for name in (
            "tree_height",
            "min_withdraw",
            "max_deposit",
            "output_count",
            "zero_value",
            "hash_domain",
        ):
            remote = getattr(parameters, name)
            local = getattr(self, name)
            if remote is not None and remote != local:
                mismatches[name] = (local, remote)

        if parameters.zero_node is not None:
            local_node = self.create_hasher().hash2(self.zero_value, self.zero_value)
            if parameters.zero_node != local_node:
                mismatches["zero_node"] = (local_node, parameters.zero_node)

        if parameters.input_counts is not None and tuple(parameters.input_counts) != self.input_counts:
            mismatches["input_counts"] = (self.input_counts, tuple(parameters.input_counts))

        if mismatches:
            logger.error(f"Pool configuration mismatch: {sorted(mismatches)}")
            raise ConfigMismatchError(
                "Local pool parameters disagree with the ledger: "
                + ", ".join(sorted(mismatches)),
                mismatches=mismatches,
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "tree_height": self.tree_height,
            "input_counts": list(self.input_counts),
            "output_count": self.output_count,
            "min_withdraw": str(self.min_withdraw),
            "max_deposit": str(self.max_deposit),
            "zero_value": str(self.zero_value),
            "hash_domain": self.hash_domain.to_dict(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolConfig":
        """Create config from dictionary."""
        return cls(
            tree_height=int(data.get("tree_height", 23)),
            input_counts=tuple(int(n) for n in data.get("input_counts", (2, 16))),
            output_count=int(data.get("output_count", 2)),
            min_withdraw=int(data.get("min_withdraw", DEFAULT_MIN_WITHDRAW)),
            max_deposit=int(data.get("max_deposit", DEFAULT_MAX_DEPOSIT)),
            zero_value=int(data.get("zero_value", ZERO_VALUE)),
            hash_domain=HashDomainParams.from_dict(data.get("hash_domain", {})),
            metadata=data.get("metadata", {}),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "PoolConfig":
        """
        Build a config from environment variables.

        ``MERKLE_TREE_HEIGHT`` is an integer; ``MINIMUM_WITHDRAWAL_AMOUNT`` and
        ``MAXIMUM_DEPOSIT_AMOUNT`` are in ether.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if env.get("MERKLE_TREE_HEIGHT"):
            values["tree_height"] = int(env["MERKLE_TREE_HEIGHT"])
        if env.get("MINIMUM_WITHDRAWAL_AMOUNT"):
            values["min_withdraw"] = parse_ether(env["MINIMUM_WITHDRAWAL_AMOUNT"])
        if env.get("MAXIMUM_DEPOSIT_AMOUNT"):
            values["max_deposit"] = parse_ether(env["MAXIMUM_DEPOSIT_AMOUNT"])

        values.update(overrides)
        return cls(**values)
