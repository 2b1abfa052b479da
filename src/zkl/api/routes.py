"""REST API for the proof service."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from zkl.config import Settings, get_settings
from zkl.models.schemas import JobStatusResponse, QueueStatus, SubmitResponse
from zkl.prover.service import ProofService, create_service
from zkl.storage.ledger import InMemoryLedger
from zkl.exceptions import (
    QueueLookupError,
    SecurityViolation,
    ValidationError,
    ZKLedgerException,
)

logger = logging.getLogger(__name__)

# Exception class -> HTTP status; first match wins
STATUS_CODES = [
    (ValidationError, 400),
    (SecurityViolation, 403),
    (QueueLookupError, 404),
]


def status_for(exc: ZKLedgerException) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def create_app(service: Optional[ProofService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the HTTP surface around a proof service.

    Without an explicit service, a simulated prover bound to a fresh
    in-memory ledger is created from settings.
    """
    if service is None:
        service = create_service(InMemoryLedger(tree_height=(settings or get_settings()).tree_depth), settings)

    app = FastAPI(
        title="Shielded Lattice Prover API",
        description="Queued proof generation for shielded UTXO transfers",
        version="0.1.0",
    )
    app.state.service = service

    # Convert 422 to 400 with a flat message
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            messages.append(f"{field}: {error['msg']}")
        return JSONResponse(
            status_code=400,
            content={"error": "; ".join(messages), "code": ValidationError.code, "detail": {}},
        )

    @app.exception_handler(ZKLedgerException)
    async def ledger_exception_handler(request: Request, exc: ZKLedgerException):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"Unhandled service error: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.post("/api/generate-proof", tags=["Proof"])
    async def generate_proof(payload: dict):
        """Validate, security-check and enqueue a proof request."""
        response: SubmitResponse = await service.submit(payload)
        return response.to_wire()

    @app.get("/api/proof-status/{job_id}", tags=["Proof"])
    async def proof_status(job_id: str):
        status: JobStatusResponse = service.status(job_id)
        return status.to_wire()

    @app.get("/api/queue-status", tags=["Proof"])
    async def queue_status():
        status: QueueStatus = service.queue_status()
        return status.to_wire()

    @app.get("/api/health", tags=["System"])
    async def health():
        return service.health()

    return app
