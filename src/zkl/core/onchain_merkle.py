"""Merkle accumulator mirrored from the ledger's commitment log."""

import logging
from typing import Dict, Optional

from zkl.core.merkle_tree import EMPTY_LEAF, MerkleAccumulator, MerkleProof
from zkl.storage.ledger import CommitmentEvent, Ledger
from zkl.utils.encoding import bytes_to_hex
from zkl.exceptions import InvalidLeafIndexError, RootMismatchError

logger = logging.getLogger(__name__)


class OnChainAccumulator:
    """
    Shadow of the ledger's commitment tree.

    Must be synchronized with `sync()` before use. After sync the local root
    is compared with the root the ledger reports; any difference makes every
    witness built from this tree meaningless, so it is fatal.
    """

    def __init__(self, ledger: Ledger, tree_height: int = MerkleAccumulator.DEFAULT_HEIGHT):
        self.ledger = ledger
        self.tree_height = tree_height
        self.tree = MerkleAccumulator(tree_height=tree_height)
        self.commitment_to_index: Dict[bytes, int] = {}
        self.synced = False

    async def sync(self) -> dict:
        """
        Rebuild the tree from the commitment log and check the ledger root.

        Returns:
            dict: {"root": bytes, "leaf_count": int}

        Raises:
            RootMismatchError: If the rebuilt root differs from the ledger's
        """
        events = await self.ledger.fetch_commitment_log()
        logger.info(f"Syncing accumulator from {len(events)} commitment events")

        by_index: Dict[int, CommitmentEvent] = {}
        for event in events:
            existing = by_index.get(event.index)
            if existing is None:
                by_index[event.index] = event
            elif existing.commitment != event.commitment:
                logger.warning(
                    f"Leaf index collision at {event.index}: "
                    f"{bytes_to_hex(existing.commitment)} vs {bytes_to_hex(event.commitment)}"
                )

        tree = MerkleAccumulator(tree_height=self.tree_height)
        index_map: Dict[bytes, int] = {}
        if by_index:
            for i in range(max(by_index) + 1):
                event = by_index.get(i)
                if event is None:
                    logger.warning(f"Missing leaf at index {i}, inserting zero hash")
                    tree.insert(EMPTY_LEAF)
                    continue
                tree.insert(event.commitment)
                index_map.setdefault(event.commitment, i)

        ledger_root = await self.ledger.current_root()
        if tree.root != ledger_root:
            raise RootMismatchError(
                "Rebuilt root does not match ledger root",
                local=bytes_to_hex(tree.root),
                ledger=bytes_to_hex(ledger_root),
            )

        self.tree = tree
        self.commitment_to_index = index_map
        self.synced = True
        logger.info(f"Root verified: {bytes_to_hex(tree.root)[:18]}... ({tree.leaf_count} leaves)")
        return {"root": tree.root, "leaf_count": tree.leaf_count}

    async def verify_root(self) -> dict:
        ledger_root = await self.ledger.current_root()
        return {
            "matches": ledger_root == self.tree.root,
            "local": self.tree.root,
            "ledger": ledger_root,
        }

    def _require_synced(self) -> None:
        if not self.synced:
            raise RootMismatchError("Accumulator used before sync()")

    @property
    def root(self) -> bytes:
        self._require_synced()
        return self.tree.root

    def insert(self, commitment: bytes) -> int:
        """Track an output the ledger has accepted."""
        self._require_synced()
        index = self.tree.insert(commitment)
        self.commitment_to_index.setdefault(commitment, index)
        return index

    def generate_proof(self, index: int) -> MerkleProof:
        self._require_synced()
        if index >= self.tree.leaf_count:
            raise InvalidLeafIndexError(
                f"Index {index} out of bounds (tree has {self.tree.leaf_count} leaves)"
            )
        return self.tree.generate_proof(index)

    def index_of(self, commitment: bytes) -> Optional[int]:
        return self.commitment_to_index.get(commitment)

    @property
    def leaf_count(self) -> int:
        return self.tree.leaf_count
