"""Input backing checks performed before any proof is computed."""

import logging
from typing import Dict, List, Sequence

from zkl.core.commitment import CommitmentScheme, Note
from zkl.storage.ledger import Ledger
from zkl.utils.encoding import bytes_to_hex
from zkl.exceptions import ConfigurationError, SecurityViolation

logger = logging.getLogger(__name__)


class SecurityVerifier:
    """
    Confirms that every claimed input exists on the ledger at the claimed index.

    Guards against two attacks:
      - infinite mint: spending a note that was never committed on the ledger
      - index manipulation: claiming a false tree position for a real note

    A proof over fabricated inputs is indistinguishable from a legitimate one,
    so both checks run before a job is enqueued.
    """

    def __init__(self, ledger: Ledger, local_simulation: bool = False):
        if local_simulation and not ledger.is_local:
            raise ConfigurationError(
                "Local simulation bypass cannot be enabled against a non-local ledger"
            )
        self.ledger = ledger
        self.local_simulation = local_simulation

    async def commitment_index_map(self) -> Dict[bytes, int]:
        """Replay the ledger's commitment log into commitment -> index."""
        events = await self.ledger.fetch_commitment_log()
        index_map: Dict[bytes, int] = {}
        for event in events:
            index_map.setdefault(event.commitment, event.index)
        return index_map

    async def verify(self, input_notes: Sequence[Note], claimed_indices: Sequence[int]) -> List[bytes]:
        """
        Check each input note against the authoritative commitment log.

        Args:
            input_notes: Notes being spent
            claimed_indices: Tree positions claimed for those notes

        Returns:
            List[bytes]: Recomputed input commitments

        Raises:
            SecurityViolation: If a commitment is absent or its index differs
        """
        if len(input_notes) != len(claimed_indices):
            raise SecurityViolation(
                f"Received {len(input_notes)} inputs but {len(claimed_indices)} indices"
            )

        commitments = [CommitmentScheme.note_commitment(note) for note in input_notes]

        if self.local_simulation:
            logger.warning("[Security] Local simulation mode, skipping ledger backing checks")
            return commitments

        index_map = await self.commitment_index_map()
        logger.info(f"[Security] Verifying {len(commitments)} inputs against {len(index_map)} ledger commitments")

        for i, (commitment, claimed) in enumerate(zip(commitments, claimed_indices)):
            actual = index_map.get(commitment)
            if actual is None:
                logger.error(f"[Security] Input {i} commitment {bytes_to_hex(commitment)} not found on ledger")
                raise SecurityViolation(
                    f"Input {i} commitment does not exist on the ledger",
                    input=i,
                    commitment=bytes_to_hex(commitment),
                )
            if actual != claimed:
                logger.error(f"[Security] Input {i} claims index {claimed} but ledger has {actual}")
                raise SecurityViolation(
                    f"Input {i} index mismatch: claimed {claimed}, ledger has {actual}",
                    input=i,
                    claimed_index=claimed,
                    ledger_index=actual,
                )

        logger.info("[Security] All inputs verified")
        return commitments
