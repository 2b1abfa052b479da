"""Assemble proof requests from wallet UTXO state."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from zkl.core.commitment import CommitmentScheme, Note
from zkl.core.wallet import UTXO, Wallet
from zkl.models.schemas import EncryptedOutput, NoteModel, ProofRequest
from zkl.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class BuiltTransaction:
    """A proof request plus everything needed to submit and settle it."""

    proof_request: ProofRequest
    output_notes: List[Note]
    output_commitments: List[bytes]
    encrypted_outputs: List[EncryptedOutput]
    selected_utxos: List[UTXO]
    change_amount: int
    nullifiers: List[bytes] = field(default_factory=list)

    @property
    def recipient_note(self) -> Note:
        return self.output_notes[0]

    @property
    def change_note(self) -> Optional[Note]:
        return self.output_notes[1] if len(self.output_notes) > 1 else None


class TransactionBuilder:
    """
    Builds a transfer from one wallet to another.

    Output 0 always pays the recipient; output 1, present only when the
    selected inputs exceed the amount, returns change to the sender.

    Args:
        tree: Accumulator holding every input; must expose `root` and
            `generate_proof(index)`
    """

    def __init__(self, tree):
        self.tree = tree

    def build(
        self,
        sender: Wallet,
        recipient: Wallet,
        amount: int,
        exclude: Optional[Set[bytes]] = None,
        old_root: Optional[bytes] = None,
    ) -> BuiltTransaction:
        """
        Select inputs, create outputs, sign and collect inclusion proofs.

        Args:
            sender: Wallet spending its UTXOs
            recipient: Wallet receiving `amount`
            amount: Transfer value
            exclude: Commitments reserved by other in-flight transfers
            old_root: Root the proof is built against (default: the tree root)

        Raises:
            ValidationError: If amount is not positive
            InsufficientFundsError: If the sender cannot cover the amount
        """
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", amount=amount)

        selected, total = sender.select_utxos(amount, exclude)
        change = total - amount

        output_notes = [sender.make_note(amount, owner=recipient.owner_x)]
        if change > 0:
            output_notes.append(sender.make_note(change))
        output_commitments = [note.commitment for note in output_notes]
        outputs_blob = b"".join(output_commitments)

        nullifier_signatures = []
        tx_signatures = []
        nullifiers = []
        input_proofs = []
        for utxo in selected:
            commitment = CommitmentScheme.note_commitment(utxo.note)
            nullifier_signature = sender.sign(commitment)
            nullifier = CommitmentScheme.nullifier(nullifier_signature)
            # Binds the authorization to these exact outputs
            tx_signatures.append(sender.sign(nullifier + outputs_blob))
            nullifier_signatures.append(nullifier_signature)
            nullifiers.append(nullifier)
            input_proofs.append(self.tree.generate_proof(utxo.index).siblings)

        request = ProofRequest(
            input_notes=[NoteModel.from_note(u.note) for u in selected],
            output_notes=[NoteModel.from_note(n) for n in output_notes],
            nullifier_signatures=nullifier_signatures,
            tx_signatures=tx_signatures,
            input_indices=[u.index for u in selected],
            input_proofs=input_proofs,
            old_root=old_root if old_root is not None else self.tree.root,
        )

        owners = [recipient.public_key, sender.public_key]
        encrypted_outputs = []
        for note, commitment, owner_key in zip(output_notes, output_commitments, owners):
            encrypted = sender.encrypt_note(note, owner_key)
            encrypted.commitment = commitment
            encrypted_outputs.append(encrypted)

        logger.info(
            f"Built transfer {sender.wallet_id} -> {recipient.wallet_id}: "
            f"{len(selected)} inputs, amount={amount}, change={change}"
        )
        return BuiltTransaction(
            proof_request=request,
            output_notes=output_notes,
            output_commitments=output_commitments,
            encrypted_outputs=encrypted_outputs,
            selected_utxos=selected,
            change_amount=change,
            nullifiers=nullifiers,
        )
