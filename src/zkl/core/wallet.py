"""Wallets holding shielded UTXOs."""

import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from zkl.core.commitment import CommitmentScheme, Note
from zkl.crypto.note_encryption import encrypt_note
from zkl.models.schemas import EncryptedOutput
from zkl.security.signing import WalletKeys
from zkl.utils.encoding import bytes_to_hex
from zkl.exceptions import InsufficientFundsError


@dataclass
class UTXO:
    """A note held by a wallet together with its tree position."""

    note: Note
    commitment: bytes
    index: int
    added_at: float = field(default_factory=time.time)

    @property
    def amount(self) -> int:
        return self.note.amount


class Wallet:
    """
    Simulated wallet: seed-derived keys plus an ordered set of unspent UTXOs.

    `balance` is a running total maintained on every add/spend so that it can
    be cross-checked against the UTXOs actually tracked.
    """

    def __init__(self, wallet_id: str, seed: str):
        self.wallet_id = wallet_id
        self.keys = WalletKeys(seed)
        self.utxos: List[UTXO] = []
        self._balance = 0

    @property
    def public_key(self) -> bytes:
        return self.keys.public_key

    @property
    def address(self) -> str:
        return bytes_to_hex(self.public_key)

    @property
    def owner_x(self) -> bytes:
        return self.keys.owner_x

    @property
    def balance(self) -> int:
        return self._balance

    def utxo_sum(self) -> int:
        return sum(u.amount for u in self.utxos)

    def sign(self, message: bytes) -> bytes:
        return self.keys.sign(message)

    def encrypt_note(self, note: Note, recipient_public_key: bytes) -> EncryptedOutput:
        return encrypt_note(note, recipient_public_key)

    def make_note(self, amount: int, owner: Optional[bytes] = None) -> Note:
        """New note with fresh blinding, owned by `owner` (default: this wallet)."""
        return Note(
            amount=amount,
            owner_pubkey=owner if owner is not None else self.owner_x,
            blinding=CommitmentScheme.generate_blinding(),
        )

    def add_utxo(self, note: Note, index: int, commitment: Optional[bytes] = None) -> UTXO:
        utxo = UTXO(
            note=note,
            commitment=commitment if commitment is not None else note.commitment,
            index=index,
        )
        self.utxos.append(utxo)
        self._balance += note.amount
        return utxo

    def spend_utxos(self, spent: Iterable[UTXO]) -> None:
        """Remove UTXOs consumed by a confirmed transfer."""
        commitments = {u.commitment for u in spent}
        remaining = []
        for utxo in self.utxos:
            if utxo.commitment in commitments:
                self._balance -= utxo.amount
            else:
                remaining.append(utxo)
        self.utxos = remaining

    def select_utxos(self, amount: int, exclude: Optional[Set[bytes]] = None) -> Tuple[List[UTXO], int]:
        """
        Pick UTXOs covering `amount`, largest first.

        Args:
            amount: Value to cover
            exclude: Commitments already reserved by in-flight transfers

        Returns:
            (selected UTXOs, their total)

        Raises:
            InsufficientFundsError: If available UTXOs cannot cover the amount
        """
        exclude = exclude or set()
        candidates = sorted(
            (u for u in self.utxos if u.commitment not in exclude),
            key=lambda u: u.amount,
            reverse=True,
        )

        selected: List[UTXO] = []
        total = 0
        for utxo in candidates:
            if total >= amount:
                break
            selected.append(utxo)
            total += utxo.amount

        if total < amount or not selected:
            raise InsufficientFundsError(
                f"Insufficient balance: have {total}, need {amount}",
                wallet=self.wallet_id,
            )
        return selected, total

    def __repr__(self) -> str:
        return f"Wallet({self.wallet_id}, balance={self.balance}, utxos={len(self.utxos)})"


def create_test_wallets(count: int, run_id: Optional[str] = None) -> List[Wallet]:
    """Create `count` wallets with deterministic seeds derived from `run_id`."""
    run_id = run_id or str(int(time.time() * 1000))
    return [Wallet(f"wallet-{i}", f"test-wallet-{run_id}-{i}") for i in range(count)]
