"""Proof service boundary: validation and security checks in front of the queue."""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from zkl.config import Settings, get_settings
from zkl.models.schemas import JobStatusResponse, ProofRequest, QueueStatus, SubmitResponse
from zkl.prover.backends import SimulatedProverBackend, SubprocessProverBackend
from zkl.prover.queue import ProofJobQueue
from zkl.security.verifier import SecurityVerifier
from zkl.storage.ledger import InMemoryLedger, Ledger
from zkl.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)


class ProofService:
    """
    Accepts proof requests and exposes job polling.

    Malformed requests raise ValidationError and requests spending unbacked
    or misindexed inputs raise SecurityViolation. Neither ever reaches the queue.
    """

    def __init__(self, queue: ProofJobQueue, verifier: SecurityVerifier):
        self.queue = queue
        self.verifier = verifier

    @staticmethod
    def parse_request(payload: Union[ProofRequest, dict, Any]) -> ProofRequest:
        if isinstance(payload, ProofRequest):
            return payload
        try:
            return ProofRequest.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {"loc": [str(loc) for loc in error["loc"]], "msg": error["msg"]}
                for error in e.errors()
            ]
            raise ValidationError("Invalid proof request", errors=errors)

    async def submit(self, payload: Union[ProofRequest, dict]) -> SubmitResponse:
        """
        Validate, verify inputs against the ledger, then enqueue.

        Raises:
            ValidationError: Missing or malformed fields
            SecurityViolation: Input commitment absent or index mismatch
        """
        request = self.parse_request(payload)
        await self.verifier.verify(
            [note.to_note() for note in request.input_notes],
            request.input_indices,
        )
        response = self.queue.submit(request)
        logger.info(f"Accepted proof request {response.job_id} (queue position {response.queue_position})")
        return response

    def status(self, job_id: str) -> JobStatusResponse:
        return self.queue.status(job_id)

    def queue_status(self) -> QueueStatus:
        return self.queue.queue_status()

    def health(self) -> dict:
        queue = self.queue.queue_status()
        return {
            "status": "ok",
            "prover": self.queue.backend.name,
            "local_simulation": self.verifier.local_simulation,
            "timestamp": datetime.now().isoformat(),
            "queue": {
                "active_jobs": queue.active_jobs,
                "queued_jobs": queue.queued_jobs,
                "max_concurrent": queue.max_concurrent,
                "total_tracked": queue.total_tracked,
            },
        }


def create_service(ledger: Ledger, settings: Optional[Settings] = None) -> ProofService:
    """
    Wire backend, queue and verifier from settings.

    Raises:
        ConfigurationError: If the simulated prover is selected without an in-process ledger
    """
    settings = settings or get_settings()
    if settings.prover_mode == "subprocess":
        backend = SubprocessProverBackend(settings.prover_command)
    elif isinstance(ledger, InMemoryLedger):
        backend = SimulatedProverBackend(ledger)
    else:
        raise ConfigurationError("Simulated prover requires an in-memory ledger")

    queue = ProofJobQueue.from_settings(backend, settings)
    verifier = SecurityVerifier(ledger, local_simulation=settings.local_simulation)
    logger.info(
        f"Proof service ready: prover={backend.name}, max_concurrent={queue.max_concurrent}, "
        f"local_simulation={settings.local_simulation}"
    )
    return ProofService(queue, verifier)
