"""Main package initialization."""

__version__ = "0.1.0"
__description__ = "Shielded Lattice: proof job queue and DAG scheduler for a shielded UTXO ledger"

from .core.commitment import CommitmentScheme, Note
from .core.merkle_tree import MerkleAccumulator, MerkleProof

__all__ = [
    "CommitmentScheme",
    "Note",
    "MerkleAccumulator",
    "MerkleProof",
]
