"""Proof generation: prover backends, job queue and service boundary."""

from zkl.prover.backends import (
    ProgressEvent,
    ProverBackend,
    SimulatedProverBackend,
    SubprocessProverBackend,
)
from zkl.prover.queue import ProofJob, ProofJobQueue
from zkl.prover.service import ProofService, create_service

__all__ = [
    "ProgressEvent",
    "ProverBackend",
    "SimulatedProverBackend",
    "SubprocessProverBackend",
    "ProofJob",
    "ProofJobQueue",
    "ProofService",
    "create_service",
]
