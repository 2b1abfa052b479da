"""Ledger interface and an in-process ledger for local simulation.

The canonical ledger is an external collaborator (a contract behind a
relayer). This module fixes the interface the orchestrator relies on and
provides `InMemoryLedger`, which enforces the same acceptance rules for
the lifetime of the process.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

from zkl.core.merkle_tree import MerkleAccumulator
from zkl.models.schemas import LedgerSubmission
from zkl.utils.encoding import bytes_to_hex, decode_public_values
from zkl.utils.hash import keccak256, proof_binding
from zkl.exceptions import RelayerFailure

logger = logging.getLogger(__name__)

# Verification key hash of the simulated circuit
SIMULATED_VKEY_HASH = keccak256(b"zkl-simulated-transfer-circuit-v1")


@dataclass(frozen=True)
class CommitmentEvent:
    """One commitment-emission log entry."""

    index: int
    commitment: bytes
    tx_hash: str
    kind: str = "output"


class Ledger(ABC):
    """Operations the orchestrator needs from the canonical ledger."""

    #: True only for ledgers living inside this process
    is_local: bool = False

    @abstractmethod
    async def submit_transaction(self, submission: LedgerSubmission) -> str:
        """Submit a proven transfer; return the transaction hash or raise RelayerFailure."""

    @abstractmethod
    async def fetch_commitment_log(self) -> List[CommitmentEvent]:
        """All commitment-emission events from the deployment point to latest."""

    @abstractmethod
    async def current_root(self) -> bytes:
        """Root currently recorded by the ledger."""


class InMemoryLedger(Ledger):
    """
    Process-lifetime ledger with contract-equivalent acceptance rules.

    A submission is accepted only if:
      - the proof artifact is bound to the verification key and public values
      - its old root equals the current root
      - none of its nullifiers has been spent (double-spend)
      - every encrypted output carries the matching proven commitment
      - the new root it claims is the root after appending its outputs
    """

    is_local = True

    def __init__(self, tree_height: int = MerkleAccumulator.DEFAULT_HEIGHT,
                 vkey_hash: bytes = SIMULATED_VKEY_HASH):
        self.tree = MerkleAccumulator(tree_height=tree_height)
        self.vkey_hash = vkey_hash
        self.spent_nullifiers: Set[bytes] = set()
        self.events: List[CommitmentEvent] = []
        self.transactions: Dict[str, dict] = {}
        # root -> number of leaves when that root was current
        self.root_history: Dict[bytes, int] = {self.tree.root: 0}

    def deposit(self, commitment: bytes) -> int:
        """Insert a seed commitment directly (funding path)."""
        tx_hash = bytes_to_hex(keccak256(b"deposit" + commitment + len(self.events).to_bytes(8, "big")))
        index = self._append(commitment, tx_hash, kind="deposit")
        self.transactions[tx_hash] = {
            "type": "deposit",
            "commitment": bytes_to_hex(commitment),
            "timestamp": datetime.now(),
        }
        return index

    def _append(self, commitment: bytes, tx_hash: str, kind: str) -> int:
        index = self.tree.insert(commitment)
        self.events.append(CommitmentEvent(index=index, commitment=commitment, tx_hash=tx_hash, kind=kind))
        self.root_history[self.tree.root] = self.tree.leaf_count
        return index

    def leaves_at_root(self, root: bytes) -> Optional[List[bytes]]:
        """Leaf sequence that produced a historical root, or None if never seen."""
        count = self.root_history.get(root)
        if count is None:
            return None
        return self.tree.leaves[:count]

    async def submit_transaction(self, submission: LedgerSubmission) -> str:
        if proof_binding(self.vkey_hash, submission.public_values) != submission.proof:
            raise RelayerFailure("Proof verification failed")

        try:
            old_root, new_root, nullifiers, commitments = decode_public_values(submission.public_values)
        except ValueError as e:
            raise RelayerFailure(f"Malformed public values: {e}")

        if old_root != self.tree.root:
            raise RelayerFailure(
                "Stale root",
                old_root=bytes_to_hex(old_root),
                current_root=bytes_to_hex(self.tree.root),
            )

        if len(set(nullifiers)) != len(nullifiers):
            raise RelayerFailure("Duplicate nullifier in transaction")
        for nullifier in nullifiers:
            if nullifier in self.spent_nullifiers:
                raise RelayerFailure("Nullifier already spent", nullifier=bytes_to_hex(nullifier))

        if len(submission.encrypted_outputs) != len(commitments):
            raise RelayerFailure(
                f"Expected {len(commitments)} encrypted outputs, got {len(submission.encrypted_outputs)}"
            )
        for i, (output, commitment) in enumerate(zip(submission.encrypted_outputs, commitments)):
            if output.commitment is not None and output.commitment != commitment:
                raise RelayerFailure(f"Encrypted output {i} does not match proven commitment")

        preview = self.tree.copy()
        for commitment in commitments:
            preview.insert(commitment)
        if preview.root != new_root:
            raise RelayerFailure(
                "New root does not match appended outputs",
                claimed=bytes_to_hex(new_root),
                computed=bytes_to_hex(preview.root),
            )

        tx_hash = bytes_to_hex(keccak256(submission.proof + submission.public_values))
        self.spent_nullifiers.update(nullifiers)
        for commitment in commitments:
            self._append(commitment, tx_hash, kind="output")

        self.transactions[tx_hash] = {
            "type": "transfer",
            "nullifiers": [bytes_to_hex(n) for n in nullifiers],
            "commitments": [bytes_to_hex(c) for c in commitments],
            "timestamp": datetime.now(),
        }
        logger.info(f"Ledger accepted {tx_hash[:18]}... ({len(commitments)} outputs)")
        return tx_hash

    async def fetch_commitment_log(self) -> List[CommitmentEvent]:
        return list(self.events)

    async def current_root(self) -> bytes:
        return self.tree.root
