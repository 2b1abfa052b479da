"""Prover capability and its implementations.

A backend turns one `ProofRequest` into a `ProofOutput`, reporting advisory
progress through an `emit` callback. Failures are raised as `ProverFailure`
with one of the reasons `nonzero-exit:<code>`, `parse-error:<detail>` or
`process-error:<detail>`.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from zkl.core.commitment import CommitmentScheme
from zkl.core.merkle_tree import MerkleAccumulator, verify_merkle_path
from zkl.models.schemas import JobStage, ProofOutput, ProofRequest, PublicOutputs
from zkl.security.signing import verify_signature
from zkl.storage.ledger import InMemoryLedger
from zkl.utils.encoding import bytes_to_hex, encode_public_values
from zkl.utils.hash import proof_binding
from zkl.exceptions import ProverFailure

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """Structured progress signal from a running proof computation."""

    stage: JobStage
    progress: int
    description: str = ""

    @classmethod
    def from_line(cls, line: str) -> Optional["ProgressEvent"]:
        """Parse one JSON progress line; None if the line is not an event."""
        try:
            data = json.loads(line)
            return cls(
                stage=JobStage(data["stage"]),
                progress=int(data.get("progress", 0)),
                description=str(data.get("description", "")),
            )
        except (ValueError, KeyError, TypeError):
            return None


Emit = Callable[[ProgressEvent], None]


class ProverBackend(ABC):
    """External proof computation."""

    name = "abstract"

    @abstractmethod
    async def run(self, request: ProofRequest, emit: Emit) -> ProofOutput:
        """Compute a proof for `request`; raise ProverFailure on failure."""


class SubprocessProverBackend(ProverBackend):
    """
    Runs the prover host binary once per request.

    The request is written as JSON to stdin and the `ProofOutput` is read as
    JSON from stdout. stderr carries one JSON progress event per line; any
    other stderr line is kept only as diagnostic output.
    """

    name = "subprocess"

    def __init__(self, command: Sequence[str], env: Optional[dict] = None):
        if not command:
            raise ValueError("Prover command must not be empty")
        self.command = list(command)
        self.env = env

    async def run(self, request: ProofRequest, emit: Emit) -> ProofOutput:
        emit(ProgressEvent(JobStage.PREPARING, 10, "Initializing prover..."))
        payload = json.dumps(request.to_wire()).encode()
        logger.info(f"Starting prover {self.command[0]} ({len(payload)} byte request)")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env} if self.env else None,
            )
        except OSError as e:
            raise ProverFailure(f"process-error:{e}")

        diagnostics: List[str] = []

        async def read_stderr() -> None:
            async for raw in process.stderr:
                line = raw.decode(errors="replace").rstrip()
                event = ProgressEvent.from_line(line)
                if event is not None:
                    emit(event)
                elif line:
                    diagnostics.append(line)

        async def feed_stdin() -> None:
            process.stdin.write(payload)
            await process.stdin.drain()
            process.stdin.close()

        try:
            _, stdout, _ = await asyncio.gather(feed_stdin(), process.stdout.read(), read_stderr())
            code = await process.wait()
        except OSError as e:
            raise ProverFailure(f"process-error:{e}", "\n".join(diagnostics))

        tail = "\n".join(diagnostics)
        if code != 0:
            logger.error(f"Prover exited with code {code}")
            raise ProverFailure(f"nonzero-exit:{code}", tail)

        try:
            return ProofOutput.model_validate_json(stdout.strip())
        except PydanticValidationError as e:
            raise ProverFailure(f"parse-error:{e.error_count()} invalid fields in prover output", tail)


class SimulatedProverBackend(ProverBackend):
    """
    Mock prover bound to an in-process ledger.

    Enforces what the transfer circuit asserts: inclusion of every input under
    `old_root`, authorization signatures by the note owner, value conservation.
    The proof artifact is a hash binding the verification key and public values,
    which is exactly what `InMemoryLedger` checks.
    """

    name = "simulated"

    def __init__(self, ledger: InMemoryLedger, step_delay: float = 0.0):
        self.ledger = ledger
        self.step_delay = step_delay

    async def _step(self, emit: Emit, stage: JobStage, progress: int, description: str) -> None:
        emit(ProgressEvent(stage, progress, description))
        await asyncio.sleep(self.step_delay)

    @staticmethod
    def _signed_by(owner_x: bytes, message: bytes, signature: bytes) -> bool:
        # Only the x-coordinate is known; accept either parity
        return any(
            verify_signature(prefix + owner_x, message, signature)
            for prefix in (b"\x02", b"\x03")
        )

    async def run(self, request: ProofRequest, emit: Emit) -> ProofOutput:
        await self._step(emit, JobStage.PREPARING, 20, "Precomputing nullifiers and commitments...")

        leaves = self.ledger.leaves_at_root(request.old_root)
        if leaves is None:
            raise ProverFailure("nonzero-exit:1", f"unknown old root {bytes_to_hex(request.old_root)}")

        output_commitments = [n.to_note().commitment for n in request.output_notes]
        nullifiers = []
        total_in = 0
        for i, note_model in enumerate(request.input_notes):
            note = note_model.to_note()
            commitment = note.commitment
            if not verify_merkle_path(commitment, request.input_indices[i], request.input_proofs[i], request.old_root):
                raise ProverFailure("nonzero-exit:1", f"input {i}: merkle proof does not match old root")
            if not self._signed_by(note.owner_pubkey, commitment, request.nullifier_signatures[i]):
                raise ProverFailure("nonzero-exit:1", f"input {i}: invalid nullifier signature")
            nullifier = CommitmentScheme.nullifier(request.nullifier_signatures[i])
            binding = nullifier + b"".join(output_commitments)
            if not self._signed_by(note.owner_pubkey, binding, request.tx_signatures[i]):
                raise ProverFailure("nonzero-exit:1", f"input {i}: invalid transaction signature")
            nullifiers.append(nullifier)
            total_in += note.amount

        total_out = sum(n.amount for n in request.output_notes)
        if total_in != total_out:
            raise ProverFailure("nonzero-exit:1", f"value not conserved: {total_in} in, {total_out} out")

        await self._step(emit, JobStage.COMPUTING, 30, "Setting up proving key...")

        tree = MerkleAccumulator.from_leaves(leaves, tree_height=self.ledger.tree.height)
        for commitment in output_commitments:
            tree.insert(commitment)

        await self._step(emit, JobStage.PROVING, 50, "Generating ZK proof...")

        public_values = encode_public_values(request.old_root, tree.root, nullifiers, output_commitments)
        proof = proof_binding(self.ledger.vkey_hash, public_values)

        await self._step(emit, JobStage.SUBMITTING, 90, "Extracting public outputs...")

        return ProofOutput(
            proof=proof,
            public_values_raw=public_values,
            public_outputs=PublicOutputs(
                old_root=request.old_root,
                new_root=tree.root,
                nullifiers=nullifiers,
                output_commitments=output_commitments,
            ),
            vkey_hash=self.ledger.vkey_hash,
        )
