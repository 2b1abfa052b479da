"""Bounded-concurrency proof job queue.

Every request embeds an `old_root` snapshot. Running two jobs at once against
a root one of them is about to advance yields stale proofs, so by default
jobs execute strictly one at a time in submission order. The bound can be
raised for requests known to be independent.

The queue does not guarantee that a job's `old_root` is still current when
it executes; callers issuing root-dependent requests serialize them.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, Optional, Set

from zkl.models.schemas import JobStage, JobStatusResponse, ProofOutput, ProofRequest, QueueStatus, SubmitResponse
from zkl.prover.backends import ProgressEvent, ProverBackend
from zkl.exceptions import ProverFailure, QueueLookupError

logger = logging.getLogger(__name__)

# Non-terminal stages in the order a job passes through them
STAGE_ORDER = [
    JobStage.QUEUED,
    JobStage.PREPARING,
    JobStage.COMPUTING,
    JobStage.PROVING,
    JobStage.SUBMITTING,
]
ACTIVE_STAGES = frozenset(STAGE_ORDER[1:])


@dataclass
class ProofJob:
    """One request's execution record."""

    job_id: str
    request: ProofRequest
    stage: JobStage = JobStage.QUEUED
    description: str = ""
    progress: int = 0
    queue_position: int = 0
    submitted_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    # Queue clock reading at completion, used for retention
    finished_at: Optional[float] = None
    result: Optional[ProofOutput] = None
    error: Optional[str] = None
    output: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (JobStage.SUCCESS, JobStage.ERROR)

    def snapshot(self) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.job_id,
            stage=self.stage,
            description=self.description,
            progress=self.progress,
            queue_position=self.queue_position,
            proof=self.result.proof if self.result else None,
            public_values_raw=self.result.public_values_raw if self.result else None,
            public_outputs=self.result.public_outputs if self.result else None,
            vkey_hash=self.result.vkey_hash if self.result else None,
            error=self.error,
            output=self.output,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
        )


class ProofJobQueue:
    """
    FIFO admission queue draining into at most `max_concurrent` running jobs.

    `submit()` never blocks: it records the job, starts it if a slot is free
    and returns the job id with its queue position (0 when it starts at once).
    Completed jobs are kept for `retention_seconds` and then evicted.
    """

    def __init__(
        self,
        backend: ProverBackend,
        max_concurrent: int = 1,
        retention_seconds: float = 600.0,
        tail_chars: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.backend = backend
        self.max_concurrent = max_concurrent
        self.retention_seconds = retention_seconds
        self.tail_chars = tail_chars
        self.clock = clock

        self.jobs: Dict[str, ProofJob] = {}
        self._pending: Deque[str] = deque()
        self._active: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, backend: ProverBackend, settings) -> "ProofJobQueue":
        return cls(
            backend,
            max_concurrent=settings.max_concurrent_jobs,
            retention_seconds=settings.job_retention_seconds,
            tail_chars=settings.diagnostic_tail_chars,
        )

    @property
    def active_jobs(self) -> int:
        return len(self._active)

    @property
    def queued_jobs(self) -> int:
        return len(self._pending)

    def submit(self, request: ProofRequest) -> SubmitResponse:
        """
        Enqueue a validated request. Must be called from within a running event loop.

        Returns:
            SubmitResponse: job id, queue position, active and queued counts
        """
        self._evict_expired()

        job_id = f"proof_{uuid.uuid4().hex[:16]}"
        starts_now = len(self._active) < self.max_concurrent and not self._pending
        position = 0 if starts_now else len(self._pending) + 1

        self.jobs[job_id] = ProofJob(
            job_id=job_id,
            request=request,
            queue_position=position,
            description="Starting proof generation...",
        )
        self._pending.append(job_id)
        if not starts_now:
            self._renumber()
        logger.info(f"[Queue] Job {job_id} added. Active: {len(self._active)}, Queued: {len(self._pending)}")

        self._pump()
        return SubmitResponse(
            job_id=job_id,
            queue_position=position,
            active_jobs=len(self._active),
            queued_jobs=len(self._pending),
        )

    def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        while len(self._active) < self.max_concurrent and self._pending:
            job = self.jobs[self._pending.popleft()]
            self._active.add(job.job_id)
            job.queue_position = 0
            logger.info(f"[Queue] Starting job {job.job_id}. Active: {len(self._active)}, Queued: {len(self._pending)}")
            self._renumber()

            task = loop.create_task(self._execute(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _renumber(self) -> None:
        total = len(self._pending)
        for position, job_id in enumerate(self._pending, start=1):
            job = self.jobs[job_id]
            job.queue_position = position
            job.description = f"Queued (position {position} of {total})"

    def _advance(self, job: ProofJob, event: ProgressEvent) -> None:
        """Apply an advisory progress event; stages and progress never move backwards."""
        if job.is_terminal or event.stage not in ACTIVE_STAGES:
            return
        if STAGE_ORDER.index(event.stage) < STAGE_ORDER.index(job.stage):
            return
        job.stage = event.stage
        job.progress = max(job.progress, min(event.progress, 99))
        if event.description:
            job.description = event.description

    def _tail(self, text: str) -> str:
        if not self.tail_chars:
            return ""
        return text[-self.tail_chars:]

    async def _execute(self, job: ProofJob) -> None:
        self._advance(job, ProgressEvent(JobStage.PREPARING, 10, "Initializing prover..."))
        try:
            job.result = await self.backend.run(job.request, lambda event: self._advance(job, event))
            job.stage = JobStage.SUCCESS
            job.progress = 100
            job.description = "Proof generated successfully"
            logger.info(f"[Queue] Job {job.job_id} succeeded")
        except ProverFailure as e:
            self._fail(job, e.reason, e.tail)
        except Exception as e:
            logger.exception(f"[Queue] Job {job.job_id} crashed")
            self._fail(job, f"process-error:{e}", "")
        finally:
            job.completed_at = datetime.now()
            job.finished_at = self.clock()
            self._active.discard(job.job_id)
            logger.info(f"[Queue] Job {job.job_id} finished. Active: {len(self._active)}, Queued: {len(self._pending)}")
            self._pump()

    def _fail(self, job: ProofJob, reason: str, tail: str) -> None:
        job.stage = JobStage.ERROR
        job.progress = 0
        job.description = "Proof generation failed"
        job.error = reason
        job.output = self._tail(tail)
        logger.error(f"[Queue] Job {job.job_id} failed: {reason}")

    def _evict_expired(self) -> None:
        now = self.clock()
        expired = [
            job_id for job_id, job in self.jobs.items()
            if job.finished_at is not None and now - job.finished_at >= self.retention_seconds
        ]
        for job_id in expired:
            del self.jobs[job_id]
        if expired:
            logger.debug(f"[Queue] Evicted {len(expired)} completed jobs")

    def status(self, job_id: str) -> JobStatusResponse:
        """
        Current snapshot of a job.

        Raises:
            QueueLookupError: If the job is unknown or its record has expired
        """
        self._evict_expired()
        job = self.jobs.get(job_id)
        if job is None:
            raise QueueLookupError(f"Job {job_id} not found", job_id=job_id)
        return job.snapshot()

    def queue_status(self) -> QueueStatus:
        self._evict_expired()
        return QueueStatus(
            active_jobs=len(self._active),
            queued_jobs=len(self._pending),
            max_concurrent=self.max_concurrent,
            queued_job_ids=list(self._pending),
            active_job_ids=sorted(self._active),
            total_tracked=len(self.jobs),
        )

    async def join(self) -> None:
        """Wait until every submitted job has reached a terminal stage."""
        while self._tasks or self._pending:
            if self._tasks:
                await asyncio.gather(*list(self._tasks))
            else:
                await asyncio.sleep(0)
