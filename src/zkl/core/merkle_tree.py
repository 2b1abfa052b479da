"""Append-only Merkle accumulator over note commitments."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from zkl.utils.hash import merkle_hash
from zkl.utils.encoding import bytes_to_hex
from zkl.exceptions import (
    TreeHeightExceededError,
    InvalidLeafIndexError,
)

logger = logging.getLogger(__name__)

EMPTY_LEAF = b"\x00" * 32


def compute_zeros(height: int) -> List[bytes]:
    """ZEROS[0] is the empty leaf, ZEROS[i] = H(ZEROS[i-1], ZEROS[i-1])."""
    zeros = [EMPTY_LEAF]
    for _ in range(1, height):
        zeros.append(merkle_hash(zeros[-1], zeros[-1]))
    return zeros


@dataclass
class MerkleProof:
    """Inclusion proof: sibling hashes from leaf to root."""

    leaf_index: int
    siblings: List[bytes]
    leaf: Optional[bytes] = None
    root: Optional[bytes] = None

    def verify(self, leaf: Optional[bytes] = None, root: Optional[bytes] = None) -> bool:
        leaf = leaf or self.leaf
        root = root or self.root
        if leaf is None or root is None:
            return False
        return verify_merkle_path(leaf, self.leaf_index, self.siblings, root)


def verify_merkle_path(leaf: bytes, leaf_index: int, siblings: List[bytes], root: bytes) -> bool:
    """
    Recompute the root from a leaf and its sibling path.

    Returns:
        bool: True if the reconstructed root equals `root`
    """
    try:
        current = leaf
        position = leaf_index
        for sibling in siblings:
            if position % 2 == 0:
                current = merkle_hash(current, sibling)
            else:
                current = merkle_hash(sibling, current)
            position >>= 1
        return current == root
    except (ValueError, TypeError):
        return False


class MerkleAccumulator:
    """
    Fixed-depth append-only Merkle tree matching the ledger contract.

    - Leaves are note commitments, assigned indices in insertion order
    - Internal nodes are Keccak256(left || right)
    - Missing subtrees hash to the precomputed ZEROS of their level
    - Insert and proof generation both touch one node per level
    """

    DEFAULT_HEIGHT = 32

    def __init__(self, tree_height: int = DEFAULT_HEIGHT):
        """
        Initialize an empty tree.

        Args:
            tree_height: Number of levels (default 32)

        Raises:
            ValueError: If height is invalid
        """
        if tree_height < 1 or tree_height > 64:
            raise ValueError("Tree height must be between 1 and 64")

        self.height = tree_height
        self.max_leaves = 2**tree_height
        self.zeros = compute_zeros(tree_height)

        self.leaves: List[bytes] = []
        # (level, position) -> hash; level 0 holds the leaves
        self.nodes: Dict[Tuple[int, int], bytes] = {}
        self._index: Dict[bytes, int] = {}

        # Empty-tree root follows the contract: the top precomputed zero
        self._root = self.zeros[tree_height - 1]

    @classmethod
    def from_leaves(cls, leaves: Iterable[bytes], tree_height: int = DEFAULT_HEIGHT) -> "MerkleAccumulator":
        tree = cls(tree_height=tree_height)
        for leaf in leaves:
            tree.insert(leaf)
        return tree

    def _node(self, level: int, position: int) -> bytes:
        zero = self.zeros[level] if level < self.height else EMPTY_LEAF
        return self.nodes.get((level, position), zero)

    def insert(self, commitment: bytes) -> int:
        """
        Append a commitment at the next free index.

        Args:
            commitment: 32-byte note commitment

        Returns:
            int: Leaf index assigned to the commitment

        Raises:
            TreeHeightExceededError: If tree is full
            ValueError: If commitment format is invalid
        """
        if not isinstance(commitment, bytes) or len(commitment) != 32:
            raise ValueError("Commitment must be 32 bytes")

        if len(self.leaves) >= self.max_leaves:
            raise TreeHeightExceededError(f"Tree is full (max {self.max_leaves} commitments)")

        leaf_index = len(self.leaves)
        self.leaves.append(commitment)
        self.nodes[(0, leaf_index)] = commitment
        self._index.setdefault(commitment, leaf_index)

        self._compute_parent_hashes(leaf_index)
        return leaf_index

    def _compute_parent_hashes(self, leaf_index: int) -> None:
        position = leaf_index
        for level in range(self.height):
            if position % 2 == 0:
                parent = merkle_hash(self._node(level, position), self._node(level, position + 1))
            else:
                parent = merkle_hash(self._node(level, position - 1), self._node(level, position))
            position >>= 1
            self.nodes[(level + 1, position)] = parent

        self._root = self.nodes[(self.height, 0)]

    def generate_proof(self, leaf_index: int) -> MerkleProof:
        """
        Return the sibling path for a leaf against the current root.

        Raises:
            InvalidLeafIndexError: If leaf index is out of range
        """
        if leaf_index < 0 or leaf_index >= len(self.leaves):
            raise InvalidLeafIndexError(
                f"Index {leaf_index} out of bounds (tree has {len(self.leaves)} leaves)"
            )

        siblings = []
        position = leaf_index
        for level in range(self.height):
            siblings.append(self._node(level, position ^ 1))
            position >>= 1

        return MerkleProof(
            leaf_index=leaf_index,
            siblings=siblings,
            leaf=self.leaves[leaf_index],
            root=self.root,
        )

    def verify_proof(self, commitment: bytes, proof: MerkleProof) -> bool:
        """Check a proof against the current root."""
        return verify_merkle_path(commitment, proof.leaf_index, proof.siblings, self.root)

    def index_of(self, commitment: bytes) -> Optional[int]:
        return self._index.get(commitment)

    def copy(self) -> "MerkleAccumulator":
        clone = MerkleAccumulator(tree_height=self.height)
        clone.leaves = list(self.leaves)
        clone.nodes = dict(self.nodes)
        clone._index = dict(self._index)
        clone._root = self._root
        return clone

    @property
    def root(self) -> bytes:
        """Get the current Merkle root hash."""
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self.leaves)

    def get_state(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: Tree state including leaves, height, and root
        """
        return {
            "height": self.height,
            "num_leaves": len(self.leaves),
            "leaves": [bytes_to_hex(leaf) for leaf in self.leaves],
            "root": bytes_to_hex(self.root),
        }

    def __len__(self) -> int:
        return len(self.leaves)

    def __repr__(self) -> str:
        return (
            f"MerkleAccumulator(height={self.height}, "
            f"leaves={len(self.leaves)}, "
            f"root={self.root.hex()[:16]}...)"
        )
