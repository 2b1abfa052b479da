"""Dependency-aware execution of transfer topologies.

Each edge goes READY -> PROVING -> SUBMITTED -> CONFIRMED, or to FAILED from
any non-terminal state. The loop repeatedly:

    1. starts ready edges up to the concurrency budget
    2. polls PROVING edges and submits finished proofs to the ledger
    3. sleeps for the poll interval

The accumulator, the current root and wallet UTXO sets are mutated only
while holding the scheduler's state lock.
"""

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from zkl.config import Settings, get_settings
from zkl.core.balance import BalanceVerifier
from zkl.core.builder import BuiltTransaction, TransactionBuilder
from zkl.core.merkle_tree import MerkleAccumulator
from zkl.core.metrics import MetricsCollector
from zkl.core.onchain_merkle import OnChainAccumulator
from zkl.core.topology import Edge, EdgeStatus, Topology
from zkl.models.schemas import JobStage, JobStatusResponse, LedgerSubmission
from zkl.prover.service import ProofService
from zkl.storage.ledger import Ledger
from zkl.utils.encoding import bytes_to_hex
from zkl.exceptions import QueueLookupError, RelayerFailure, RootMismatchError, ZKLedgerException

logger = logging.getLogger(__name__)


@dataclass
class ExecutionReport:
    """Outcome of one topology run."""

    duration: float
    edges: List[Edge]
    summary: dict
    metrics: dict
    balance_verification: dict

    @property
    def confirmed(self) -> List[Edge]:
        return [e for e in self.edges if e.status == EdgeStatus.CONFIRMED]

    @property
    def failed(self) -> List[Edge]:
        return [e for e in self.edges if e.status == EdgeStatus.FAILED]

    def to_dict(self) -> dict:
        return {
            "duration": self.duration,
            "edges": [e.to_dict() for e in self.edges],
            "summary": self.summary,
            "metrics": self.metrics,
            "balance_verification": self.balance_verification,
        }


class TopologyScheduler:
    """
    Drives every edge of a topology to a terminal state.

    In local mode the witness tree is rebuilt from the wallets' UTXOs sorted
    by index. In on-chain mode it is an `OnChainAccumulator`, synchronized
    and root-checked against the ledger before the first edge starts.
    """

    def __init__(
        self,
        topology: Topology,
        service: ProofService,
        ledger: Ledger,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
        on_chain: Optional[OnChainAccumulator] = None,
        clock=time.time,
    ):
        settings = settings or get_settings()
        self.topology = topology
        self.service = service
        self.ledger = ledger
        self.metrics = metrics or MetricsCollector()
        self.on_chain = on_chain
        self.clock = clock

        self.poll_interval = settings.poll_interval
        self.max_concurrent = settings.scheduler_max_concurrent
        self.proof_timeout = settings.proof_timeout
        self.verify_balances = settings.verify_balances
        self.tree_depth = settings.tree_depth

        self.balance_verifier = BalanceVerifier(self.metrics)
        self.tree = None
        self.current_root: Optional[bytes] = None

        self._state_lock: Optional[asyncio.Lock] = None
        self.builder: Optional[TransactionBuilder] = None
        self._reserved: Set[bytes] = set()
        self._built: Dict[int, BuiltTransaction] = {}
        self._initialized = False

    @property
    def on_chain_mode(self) -> bool:
        return self.on_chain is not None

    async def initialize(self) -> None:
        """Prepare the witness tree and the starting root."""
        self._state_lock = asyncio.Lock()
        if self.on_chain is not None:
            if not self.on_chain.synced:
                await self.on_chain.sync()
            check = await self.on_chain.verify_root()
            if not check["matches"]:
                raise RootMismatchError(
                    "Merkle root mismatch",
                    local=bytes_to_hex(check["local"]),
                    ledger=bytes_to_hex(check["ledger"]),
                )
            self.tree = self.on_chain
            self.current_root = self.on_chain.root
            logger.info(
                f"[Scheduler] On-chain tree initialized: {self.on_chain.leaf_count} leaves, "
                f"root {bytes_to_hex(self.current_root)[:18]}..."
            )
        else:
            utxos = sorted(
                (u for wallet in self.topology.wallets for u in wallet.utxos),
                key=lambda u: u.index,
            )
            if [u.index for u in utxos] != list(range(len(utxos))):
                logger.warning("[Scheduler] Wallet UTXO indices are not contiguous; local witnesses may not match the ledger")
            self.tree = MerkleAccumulator.from_leaves((u.commitment for u in utxos), tree_height=self.tree_depth)
            self.current_root = self.tree.root
            logger.info(
                f"[Scheduler] Local tree initialized with {len(utxos)} leaves, "
                f"root {bytes_to_hex(self.current_root)[:18]}..."
            )
        self.builder = TransactionBuilder(self.tree)
        self._initialized = True

    async def execute(self) -> ExecutionReport:
        """Run until every edge is CONFIRMED or FAILED."""
        if not self._initialized:
            await self.initialize()

        start = self.clock()
        logger.info(
            f"[Scheduler] Starting execution of {len(self.topology.edges)} edges "
            f"(max concurrent {self.max_concurrent})"
        )

        monitor = asyncio.create_task(self._monitor_queue())
        try:
            while not self.topology.is_complete():
                self._fail_blocked_edges()

                ready = self.topology.ready_edges()
                in_progress = len(self.topology.in_progress_edges())
                to_start = ready[:max(0, self.max_concurrent - in_progress)]
                if to_start:
                    logger.info(f"[Scheduler] Starting {len(to_start)} edges ({in_progress} in progress)")
                    await asyncio.gather(*(self._start_edge(edge) for edge in to_start))

                proving = [e for e in self.topology.edges if e.status == EdgeStatus.PROVING]
                if proving:
                    await self._poll_edges(proving)

                if self.topology.is_complete():
                    break
                await asyncio.sleep(self.poll_interval)

                by_status = self.topology.get_summary()["by_status"]
                logger.info(
                    f"[Scheduler] Progress: {by_status.get('confirmed', 0)}/{len(self.topology.edges)} confirmed, "
                    f"{len(self.topology.in_progress_edges())} in progress"
                )
        finally:
            monitor.cancel()
            with suppress(asyncio.CancelledError):
                await monitor

        duration = self.clock() - start
        logger.info(f"[Scheduler] Execution complete in {duration:.1f}s")

        final = self.balance_verifier.verify_final(self.topology.wallets) if self.verify_balances else None
        return ExecutionReport(
            duration=duration,
            edges=self.topology.edges,
            summary=self.topology.get_summary(),
            metrics=self.metrics.get_summary(),
            balance_verification={
                "per_transaction": self.balance_verifier.verifications,
                "final": final,
                "summary": self.balance_verifier.summary(),
            },
        )

    def get_report(self) -> str:
        return self.metrics.generate_report()

    async def _monitor_queue(self) -> None:
        while True:
            try:
                self.metrics.record_queue_snapshot(self.service.queue_status())
            except ZKLedgerException as e:
                logger.warning(f"[Scheduler] Queue snapshot failed: {e.message}")
            await asyncio.sleep(self.poll_interval)

    def _fail_blocked_edges(self) -> None:
        blocked = self.topology.blocked_edges()
        while blocked:
            failed = {e.id for e in self.topology.edges if e.status == EdgeStatus.FAILED}
            for edge in blocked:
                dep = next(d for d in edge.depends_on if d in failed)
                self._fail(edge, f"dependency-failed:{dep}", "dependency_failed")
            blocked = self.topology.blocked_edges()

    def _fail(self, edge: Edge, error: str, error_type: str) -> None:
        edge.transition(EdgeStatus.FAILED, error=error, now=self.clock())
        self._release(edge)
        self.metrics.record_error(error_type, error, edge.id)
        logger.error(f"[Scheduler] Edge {edge.id} ({edge.from_wallet}->{edge.to_wallet}) failed: {error}")

    def _release(self, edge: Edge) -> None:
        built = self._built.get(edge.id)
        if built is not None:
            self._reserved.difference_update(u.commitment for u in built.selected_utxos)

    async def _start_edge(self, edge: Edge) -> None:
        sender = self.topology.get_wallet(edge.from_wallet)
        recipient = self.topology.get_wallet(edge.to_wallet)
        edge.transition(EdgeStatus.PROVING, now=self.clock())

        try:
            async with self._state_lock:
                built = self.builder.build(
                    sender,
                    recipient,
                    edge.amount,
                    exclude=self._reserved,
                    old_root=self.current_root,
                )
                self._built[edge.id] = built
                self._reserved.update(u.commitment for u in built.selected_utxos)

            response = await self.service.submit(built.proof_request)
        except ZKLedgerException as e:
            self._fail(edge, e.message, "proof_submission")
            return

        edge.job_id = response.job_id
        edge.queue_position = response.queue_position
        self.metrics.record_proof_submission(edge.id, response.job_id, response.queue_position)
        logger.info(
            f"[Scheduler] Edge {edge.id} ({edge.from_wallet}->{edge.to_wallet}): "
            f"job {edge.job_id} queued at position {edge.queue_position}"
        )

    async def _poll_edges(self, edges: List[Edge]) -> None:
        for edge in edges:
            if edge.status != EdgeStatus.PROVING or edge.job_id is None:
                continue

            try:
                status = self.service.status(edge.job_id)
            except QueueLookupError as e:
                self.metrics.record_error("proof_poll", e.message, edge.id)
                status = None

            if status is not None and status.stage == JobStage.SUCCESS:
                edge.transition(EdgeStatus.SUBMITTED, now=self.clock())
                proof_duration = edge.proof_complete_time - edge.start_time
                self.metrics.record_proof_complete(edge.id, proof_duration)
                logger.info(f"[Scheduler] Edge {edge.id}: proof complete in {proof_duration:.1f}s")
                await self._submit_to_ledger(edge, status)
            elif status is not None and status.stage == JobStage.ERROR:
                self._fail(edge, status.error or "proof-error", "proof_generation")
            elif self.clock() - edge.start_time > self.proof_timeout:
                # The queued job keeps running; only this edge gives up on it
                self._fail(edge, "proof-timeout", "proof_timeout")

    async def _submit_to_ledger(self, edge: Edge, status: JobStatusResponse) -> None:
        built = self._built[edge.id]
        outputs = status.public_outputs

        encrypted_outputs = [
            eo.model_copy(update={"commitment": commitment})
            for eo, commitment in zip(built.encrypted_outputs, outputs.output_commitments)
        ]
        submission = LedgerSubmission(
            encrypted_outputs=encrypted_outputs,
            proof=status.proof,
            public_values=status.public_values_raw,
        )

        try:
            tx_hash = await self.ledger.submit_transaction(submission)
        except RelayerFailure as e:
            self._fail(edge, e.message, "relayer_submission")
            return

        async with self._state_lock:
            edge.tx_hash = tx_hash
            edge.transition(EdgeStatus.CONFIRMED, now=self.clock())
            self._apply_confirmed(edge, built, outputs.output_commitments, outputs.new_root)
            self._release(edge)

        total = edge.end_time - edge.start_time
        self.metrics.record_tx_confirmed(edge.id, total, tx_hash)
        logger.info(f"[Scheduler] Edge {edge.id}: confirmed in {total:.1f}s, tx {tx_hash[:18]}...")

        if self.verify_balances:
            self.balance_verifier.verify_edge(
                edge,
                self.topology.get_wallet(edge.from_wallet),
                self.topology.get_wallet(edge.to_wallet),
            )

    def _apply_confirmed(self, edge: Edge, built: BuiltTransaction, commitments: List[bytes], new_root: bytes) -> None:
        sender = self.topology.get_wallet(edge.from_wallet)
        recipient = self.topology.get_wallet(edge.to_wallet)

        sender.spend_utxos(built.selected_utxos)
        indices = [self.tree.insert(commitment) for commitment in commitments]

        recipient.add_utxo(built.output_notes[0], indices[0], commitments[0])
        if len(commitments) > 1 and built.change_amount > 0:
            sender.add_utxo(built.output_notes[1], indices[1], commitments[1])

        self.current_root = new_root

        if self.on_chain_mode and self.tree.root != new_root:
            logger.warning(
                f"[Scheduler] Local root {bytes_to_hex(self.tree.root)[:18]}... differs from "
                f"proof new root {bytes_to_hex(new_root)[:18]}..."
            )
