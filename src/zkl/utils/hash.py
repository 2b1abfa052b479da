"""Cryptographic hash utilities."""

import hashlib
from typing import Union

import blake3
from Crypto.Hash import keccak

# Domain separators shared with the proving circuit and the ledger verifier
NOTE_COMMITMENT_DOMAIN = b"NOTE_COMMITMENT_v1"
NULLIFIER_DOMAIN = b"NULLIFIER_v1"


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 (the EVM variant, not SHA3-256).

    Args:
        data: Bytes to hash

    Returns:
        bytes: 32-byte digest
    """
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def blake3_hash(*parts: bytes) -> bytes:
    """Return the 32-byte BLAKE3 digest of the concatenated parts."""
    hasher = blake3.blake3()
    for part in parts:
        hasher.update(part)
    return hasher.digest()


def merkle_hash(left: bytes, right: bytes) -> bytes:
    """
    Compute Merkle tree hash of two siblings.

    Uses Keccak256(left || right), matching Solidity's
    keccak256(abi.encodePacked(left, right)).

    Args:
        left: Left child hash (32 bytes)
        right: Right child hash (32 bytes)

    Returns:
        bytes: Parent hash (32 bytes)
    """
    if not isinstance(left, bytes) or len(left) != 32:
        raise ValueError("Left hash must be 32 bytes")
    if not isinstance(right, bytes) or len(right) != 32:
        raise ValueError("Right hash must be 32 bytes")

    return keccak256(left + right)


def compute_commitment(amount: int, owner: bytes, blinding: bytes) -> bytes:
    """
    Compute note commitment BLAKE3(domain || amount_le(8) || owner(32) || blinding(32)).

    Args:
        amount: Note value (u64)
        owner: Owner public key x-coordinate (32 bytes)
        blinding: Random blinding factor (32 bytes)

    Returns:
        bytes: Commitment (32 bytes)
    """
    return blake3_hash(
        NOTE_COMMITMENT_DOMAIN,
        amount.to_bytes(8, "little"),
        owner,
        blinding,
    )


def compute_nullifier(signature: bytes) -> bytes:
    """
    Compute nullifier BLAKE3(domain || signature).

    Args:
        signature: 65-byte authorization signature over the input commitment

    Returns:
        bytes: Nullifier (32 bytes)
    """
    return blake3_hash(NULLIFIER_DOMAIN, signature)


def eth_message_digest(message: bytes) -> bytes:
    """
    Digest signed by wallets: keccak("\\x19Ethereum Signed Message:\\n32" || keccak(message)).
    """
    prefix = b"\x19Ethereum Signed Message:\n32"
    return keccak256(prefix + keccak256(message))


def proof_binding(vkey_hash: bytes, public_values: bytes) -> bytes:
    """Digest binding a mock proof artifact to its verification key and public values."""
    return keccak256(vkey_hash + public_values)
