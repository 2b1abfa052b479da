"""Ledger interface and in-process ledger."""

from zkl.storage.ledger import (
    SIMULATED_VKEY_HASH,
    CommitmentEvent,
    InMemoryLedger,
    Ledger,
)

__all__ = [
    "SIMULATED_VKEY_HASH",
    "CommitmentEvent",
    "InMemoryLedger",
    "Ledger",
]
