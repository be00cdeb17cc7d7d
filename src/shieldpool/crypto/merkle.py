"""
Incremental Merkle accumulator over note commitments.

The tree has a fixed height chosen at pool deployment. Leaves are appended in
on-chain insertion order and empty positions are filled with a ladder of zero
hashes, so two accumulators fed the same ordered leaves always agree on the
root with the contract.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import BuildStage, TreeDesyncError, TreeFullError
from .hashing import FIELD_SIZE, PoseidonHasher, get_default_hasher

logger = logging.getLogger(__name__)

# keccak256("tornado") % FIELD_SIZE
ZERO_VALUE = 21663839004416932945382355908790599225266501822907911457504978515578255421292

MAX_HEIGHT = 32


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for one leaf of the accumulator."""

    leaf: int
    index: int
    path_elements: Tuple[int, ...]
    path_indices: Tuple[int, ...]  # 1 when the current node is the right child
    root: int

    def compute_root(self, hasher: Optional[PoseidonHasher] = None) -> int:
        """Fold the path from the leaf up to the root."""
        hasher = hasher or get_default_hasher()
        current = self.leaf

        for sibling, is_right in zip(self.path_elements, self.path_indices):
            if is_right:
                # Sibling is left, current is right
                current = hasher.hash2(sibling, current)
            else:
                current = hasher.hash2(current, sibling)

        return current

    def verify(self, hasher: Optional[PoseidonHasher] = None) -> bool:
        """Verify that this proof is valid."""
        if len(self.path_elements) != len(self.path_indices):
            return False
        return self.compute_root(hasher) == self.root

    @property
    def path_index(self) -> int:
        """Path indicator bits packed into the leaf position."""
        value = 0
        for level, bit in enumerate(self.path_indices):
            value |= bit << level
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf": str(self.leaf),
            "index": self.index,
            "path_elements": [str(e) for e in self.path_elements],
            "path_indices": list(self.path_indices),
            "root": str(self.root),
        }


class MerkleAccumulator:
    """Fixed-height append-only Merkle tree."""

    def __init__(
        self,
        height: int,
        hasher: Optional[PoseidonHasher] = None,
        zero_value: int = ZERO_VALUE,
        leaves: Optional[Iterable[int]] = None,
    ):
        """
        Initialize an empty accumulator, optionally filled with ``leaves``.

        Args:
            height: Number of levels above the leaves
            hasher: Node combiner, defaults to the process-wide Poseidon hasher
            zero_value: Filler for empty leaf positions
            leaves: Commitments to append in order
        """
        if height < 1 or height > MAX_HEIGHT:
            raise ValueError(f"Tree height must be between 1 and {MAX_HEIGHT}")

        self.height = height
        self.hasher = hasher or get_default_hasher()
        self.zero_value = self._check_leaf(zero_value)
        self._zeros = self._compute_zero_hashes()
        self._layers: List[List[int]] = [[] for _ in range(height + 1)]
        self._positions: Dict[int, int] = {}

        if leaves is not None:
            self.bulk_insert(leaves)

    def _compute_zero_hashes(self) -> List[int]:
        """Compute the empty-subtree hash for each level."""
        zeros = [self.zero_value]
        for _ in range(self.height):
            zeros.append(self.hasher.hash2(zeros[-1], zeros[-1]))
        return zeros

    def _check_leaf(self, leaf: int) -> int:
        if isinstance(leaf, bool) or not isinstance(leaf, int):
            raise ValueError("Leaf must be an integer field element")
        if leaf < 0 or leaf >= self.hasher.modulus:
            raise ValueError("Leaf is not a canonical field element")
        return leaf

    def _node(self, level: int, position: int) -> int:
        layer = self._layers[level]
        if position < len(layer):
            return layer[position]
        return self._zeros[level]

    @property
    def capacity(self) -> int:
        return 1 << self.height

    @property
    def zeros(self) -> List[int]:
        return list(self._zeros)

    @property
    def leaves(self) -> List[int]:
        return list(self._layers[0])

    def __len__(self) -> int:
        return len(self._layers[0])

    def root(self) -> int:
        """Current accumulated root."""
        return self._node(self.height, 0)

    def insert(self, commitment: int) -> int:
        """
        Append a commitment at the next free position.

        Returns:
            The leaf index the commitment was stored at
        """
        commitment = self._check_leaf(commitment)
        index = len(self._layers[0])
        if index >= self.capacity:
            raise TreeFullError(f"Merkle tree of height {self.height} is full")

        self._layers[0].append(commitment)
        self._positions.setdefault(commitment, index)

        position = index
        for level in range(1, self.height + 1):
            position >>= 1
            parent = self.hasher.hash2(
                self._node(level - 1, 2 * position),
                self._node(level - 1, 2 * position + 1),
            )
            layer = self._layers[level]
            if position < len(layer):
                layer[position] = parent
            else:
                layer.append(parent)

        return index

    def bulk_insert(self, commitments: Iterable[int]) -> None:
        """Append many commitments, hashing each affected node once."""
        new_leaves = [self._check_leaf(c) for c in commitments]
        if not new_leaves:
            return

        start = len(self._layers[0])
        if start + len(new_leaves) > self.capacity:
            raise TreeFullError(
                f"Cannot insert {len(new_leaves)} leaves: tree of height "
                f"{self.height} has {self.capacity - start} free positions"
            )

        for offset, leaf in enumerate(new_leaves):
            self._positions.setdefault(leaf, start + offset)
        self._layers[0].extend(new_leaves)

        first = start
        for level in range(1, self.height + 1):
            first >>= 1
            below = len(self._layers[level - 1])
            count = (below + 1) // 2
            layer = self._layers[level]
            del layer[first:]
            for position in range(first, count):
                layer.append(
                    self.hasher.hash2(
                        self._node(level - 1, 2 * position),
                        self._node(level - 1, 2 * position + 1),
                    )
                )

    def proof(self, index: int) -> MerkleProof:
        """
        Build the inclusion proof for the leaf at ``index``.

        Path indices follow the parity of the subtree position at each level,
        independent of the node values.
        """
        if index < 0 or index >= len(self._layers[0]):
            raise IndexError(f"Leaf index {index} out of range (size {len(self)})")

        elements = []
        indices = []
        position = index
        for level in range(self.height):
            elements.append(self._node(level, position ^ 1))
            indices.append(position & 1)
            position >>= 1

        return MerkleProof(
            leaf=self._layers[0][index],
            index=index,
            path_elements=tuple(elements),
            path_indices=tuple(indices),
            root=self.root(),
        )

    def index_of(self, commitment: int) -> Optional[int]:
        """Position of the first occurrence of ``commitment``, if any."""
        return self._positions.get(commitment)

    def contains(self, commitment: int) -> bool:
        return commitment in self._positions

    def verify_root(self, expected_root: int, stage: Optional[BuildStage] = None) -> None:
        """Raise ``TreeDesyncError`` unless the local root equals ``expected_root``."""
        local_root = self.root()
        if local_root != expected_root:
            logger.error(
                f"Merkle root mismatch after {len(self)} leaves: "
                f"local {hex(local_root)} != ledger {hex(expected_root)}"
            )
            raise TreeDesyncError(
                "Local Merkle root does not match the ledger root",
                local_root=local_root,
                expected_root=expected_root,
                stage=stage,
                metadata={"leaf_count": len(self)},
            )

    @classmethod
    def rebuild(
        cls,
        ordered_commitments: Sequence[int],
        height: int,
        hasher: Optional[PoseidonHasher] = None,
        zero_value: int = ZERO_VALUE,
        expected_root: Optional[int] = None,
    ) -> "MerkleAccumulator":
        """Reconstruct the tree from the ordered commitment log."""
        tree = cls(height, hasher=hasher, zero_value=zero_value)
        tree.bulk_insert(ordered_commitments)
        if expected_root is not None:
            tree.verify_root(expected_root)
        logger.debug(f"Rebuilt Merkle tree with {len(tree)} leaves")
        return tree

    @classmethod
    def from_events(
        cls,
        events: Sequence[Any],
        height: int,
        hasher: Optional[PoseidonHasher] = None,
        zero_value: int = ZERO_VALUE,
        expected_root: Optional[int] = None,
    ) -> "MerkleAccumulator":
        """
        Reconstruct the tree from commitment events carrying their leaf index.

        The log must list indices ``0..n-1`` in order; a gap, duplicate or
        reordering is rejected rather than repaired.
        """
        for position, event in enumerate(events):
            if event.index != position:
                raise TreeDesyncError(
                    f"Commitment log out of order: expected index {position}, "
                    f"got {event.index}",
                    metadata={"position": position, "event_index": event.index},
                )
        return cls.rebuild(
            [event.commitment for event in events],
            height,
            hasher=hasher,
            zero_value=zero_value,
            expected_root=expected_root,
        )

    def __str__(self) -> str:
        return f"MerkleAccumulator(height={self.height}, leaves={len(self)}, root={hex(self.root())})"

    def __repr__(self) -> str:
        return f"MerkleAccumulator(height={self.height}, {len(self)} leaves)"
