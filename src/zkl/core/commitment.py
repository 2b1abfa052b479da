"""Note commitments and nullifiers.

The byte layout here is shared bit-for-bit with the proving circuit and the
on-chain verifier. Changing the domain tags, the amount width or its byte
order breaks proof binding.
"""

import os
from dataclasses import dataclass

from zkl.utils.hash import compute_commitment, compute_nullifier
from zkl.exceptions import InvalidCommitmentError, InvalidNullifierError

MAX_AMOUNT = 2**64 - 1


@dataclass(frozen=True)
class Note:
    """Confidential value record. Never stored in clear on the ledger."""

    amount: int
    owner_pubkey: bytes
    blinding: bytes

    @property
    def commitment(self) -> bytes:
        return CommitmentScheme.commit(self.amount, self.owner_pubkey, self.blinding)


class CommitmentScheme:
    """
    Deterministic hiding digest for notes and nullifier derivation.

    commit(amount, owner, blinding) = BLAKE3("NOTE_COMMITMENT_v1" || amount_le(8) || owner || blinding)
    nullifier(signature)            = BLAKE3("NULLIFIER_v1" || signature)
    """

    # Constants
    KEY_SIZE = 32  # bytes
    BLINDING_SIZE = 32  # bytes
    SIGNATURE_SIZE = 65  # r || s || v
    HASH_SIZE = 32

    @staticmethod
    def generate_blinding() -> bytes:
        """
        Generate a fresh 32-byte blinding factor.

        Returns:
            bytes: Cryptographically secure random value
        """
        return os.urandom(CommitmentScheme.BLINDING_SIZE)

    @staticmethod
    def commit(amount: int, owner: bytes, blinding: bytes) -> bytes:
        """
        Compute the 32-byte commitment of a note.

        Args:
            amount: Note value, must fit in u64
            owner: Owner public key x-coordinate (32 bytes)
            blinding: Blinding factor (32 bytes)

        Returns:
            bytes: Commitment digest

        Raises:
            InvalidCommitmentError: If any field is out of range or mis-sized
        """
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise InvalidCommitmentError("Amount must be an integer")
        if amount < 0 or amount > MAX_AMOUNT:
            raise InvalidCommitmentError(f"Amount {amount} does not fit in u64")
        if not isinstance(owner, bytes) or len(owner) != CommitmentScheme.KEY_SIZE:
            raise InvalidCommitmentError("Owner public key must be 32 bytes")
        if not isinstance(blinding, bytes) or len(blinding) != CommitmentScheme.BLINDING_SIZE:
            raise InvalidCommitmentError("Blinding must be 32 bytes")

        return compute_commitment(amount, owner, blinding)

    @staticmethod
    def nullifier(signature: bytes) -> bytes:
        """
        Derive the nullifier from an authorization signature over a commitment.

        Because wallet signatures are deterministic (RFC 6979) the same note
        always yields the same nullifier, yet observers cannot link it back
        to the commitment without the signature.

        Raises:
            InvalidNullifierError: If the signature is not 65 bytes
        """
        if not isinstance(signature, bytes) or len(signature) != CommitmentScheme.SIGNATURE_SIZE:
            raise InvalidNullifierError(
                f"Signature must be {CommitmentScheme.SIGNATURE_SIZE} bytes"
            )
        return compute_nullifier(signature)

    @staticmethod
    def note_commitment(note: Note) -> bytes:
        """Commitment of a Note record."""
        return CommitmentScheme.commit(note.amount, note.owner_pubkey, note.blinding)

    @staticmethod
    def verify_commitment(note: Note, expected_commitment: bytes) -> bool:
        """
        Check a note against a claimed commitment.

        Returns:
            bool: True if the commitment matches, False otherwise
        """
        try:
            return CommitmentScheme.note_commitment(note) == expected_commitment
        except InvalidCommitmentError:
            return False
