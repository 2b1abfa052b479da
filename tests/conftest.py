"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from zkl.config import Settings
from zkl.core.wallet import Wallet
from zkl.prover.backends import SimulatedProverBackend
from zkl.prover.queue import ProofJobQueue
from zkl.prover.service import ProofService
from zkl.security.verifier import SecurityVerifier
from zkl.storage.ledger import InMemoryLedger


@pytest.fixture
def settings():
    """Fast settings for scheduler runs."""
    return Settings(
        _env_file=None,
        poll_interval=0.01,
        proof_timeout=30.0,
        scheduler_max_concurrent=10,
        max_concurrent_jobs=1,
    )


@pytest.fixture
def ledger():
    """Fresh in-process ledger."""
    return InMemoryLedger()


@pytest.fixture
def service(ledger):
    """Proof service with the simulated prover bound to `ledger`."""
    queue = ProofJobQueue(SimulatedProverBackend(ledger))
    return ProofService(queue, SecurityVerifier(ledger))


@pytest.fixture
def fund(ledger):
    """Deposit a note on the ledger and hand it to a wallet as a UTXO."""

    def _fund(wallet: Wallet, amount: int):
        note = wallet.make_note(amount)
        index = ledger.deposit(note.commitment)
        return wallet.add_utxo(note, index)

    return _fund


@pytest.fixture
def alice():
    return Wallet("alice", "test-seed-alice")


@pytest.fixture
def bob():
    return Wallet("bob", "test-seed-bob")


@pytest.fixture
def carol():
    return Wallet("carol", "test-seed-carol")
