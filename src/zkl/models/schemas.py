"""Pydantic data models for the prover, queue and ledger boundaries.

Byte-valued fields are `bytes` in memory and 0x-prefixed hex on the wire.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from zkl.core.commitment import MAX_AMOUNT, Note
from zkl.utils.encoding import bytes_to_hex, hex_to_bytes


def _hex_field(length: Optional[int] = None, pad: bool = False):
    def parse(value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            raw = bytes(value)
        elif isinstance(value, str):
            raw = hex_to_bytes(value, length if pad else None)
        else:
            raise ValueError("Expected hex string")
        if length is not None and len(raw) != length:
            raise ValueError(f"Expected {length} bytes, got {len(raw)}")
        return raw

    return parse


_to_hex = PlainSerializer(bytes_to_hex, return_type=str)

Hex32 = Annotated[bytes, BeforeValidator(_hex_field(32, pad=True)), _to_hex]
Signature = Annotated[bytes, BeforeValidator(_hex_field(65)), _to_hex]
Nonce = Annotated[bytes, BeforeValidator(_hex_field(12)), _to_hex]
HexBytes = Annotated[bytes, BeforeValidator(_hex_field()), _to_hex]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStage(str, Enum):
    """Proof job stage enumeration."""
    QUEUED = "queued"
    PREPARING = "preparing"
    COMPUTING = "computing"
    PROVING = "proving"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


class NoteModel(WireModel):
    """Note as carried in a proof request."""
    amount: int = Field(..., ge=0, le=MAX_AMOUNT)
    owner_pubkey: Hex32
    blinding: Hex32

    def to_note(self) -> Note:
        return Note(amount=self.amount, owner_pubkey=self.owner_pubkey, blinding=self.blinding)

    @classmethod
    def from_note(cls, note: Note) -> "NoteModel":
        return cls(amount=note.amount, owner_pubkey=note.owner_pubkey, blinding=note.blinding)


class ProofRequest(WireModel):
    """Everything the external prover needs for one transfer."""
    input_notes: List[NoteModel] = Field(..., min_length=1)
    output_notes: List[NoteModel]
    nullifier_signatures: List[Signature]
    tx_signatures: List[Signature]
    input_indices: List[Annotated[int, Field(ge=0)]]
    input_proofs: List[List[Hex32]]
    old_root: Hex32

    @model_validator(mode="after")
    def _check_lengths(self) -> "ProofRequest":
        n = len(self.input_notes)
        for name in ("nullifier_signatures", "tx_signatures", "input_indices", "input_proofs"):
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"Received {n} inputs but {len(getattr(self, name))} {name}"
                )
        return self


class PublicOutputs(WireModel):
    """Values the proof commits to publicly."""
    old_root: Hex32
    new_root: Hex32
    nullifiers: List[Hex32]
    output_commitments: List[Hex32]


class ProofOutput(WireModel):
    """Successful result of an external proof computation."""
    proof: HexBytes
    public_values_raw: HexBytes
    public_outputs: PublicOutputs
    vkey_hash: Hex32


class SubmitResponse(WireModel):
    """Returned immediately when a job is enqueued."""
    job_id: str
    queue_position: int
    active_jobs: int
    queued_jobs: int


class JobStatusResponse(WireModel):
    """Snapshot of a proof job for pollers."""
    job_id: str
    stage: JobStage
    description: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    queue_position: int = 0
    proof: Optional[HexBytes] = None
    public_values_raw: Optional[HexBytes] = None
    public_outputs: Optional[PublicOutputs] = None
    vkey_hash: Optional[Hex32] = None
    error: Optional[str] = None
    output: Optional[str] = None
    submitted_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (JobStage.SUCCESS, JobStage.ERROR)


class QueueStatus(WireModel):
    """Aggregate queue state."""
    active_jobs: int
    queued_jobs: int
    max_concurrent: int
    queued_job_ids: List[str] = Field(default_factory=list)
    active_job_ids: List[str] = Field(default_factory=list)
    total_tracked: int = 0


class EncryptedOutput(WireModel):
    """Off-proof note payload addressed to the output owner."""
    commitment: Optional[Hex32] = None
    key_type: int = 0
    ephemeral_pubkey: HexBytes
    nonce: Nonce
    ciphertext: HexBytes


class LedgerSubmission(WireModel):
    """Payload handed to the ledger relayer."""
    encrypted_outputs: List[EncryptedOutput]
    proof: HexBytes
    public_values: HexBytes
