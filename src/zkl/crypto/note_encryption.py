"""Off-proof note encryption (ECIES over secp256k1 with AES-256-GCM).

Encrypted outputs let recipients discover their notes; they are not part of
the proven statement.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from zkl.core.commitment import Note
from zkl.models.schemas import EncryptedOutput
from zkl.exceptions import DecryptionError, EncryptionError

KDF_INFO = b"utxo-prototype-v1-encryption"
NONCE_SIZE = 12
PLAINTEXT_SIZE = 96


def _derive_key(shared_secret: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=KDF_INFO,
    ).derive(shared_secret)


def _encode_plaintext(note: Note) -> bytes:
    # amount(32, big-endian) || owner(32) || blinding(32)
    return note.amount.to_bytes(32, "big") + note.owner_pubkey + note.blinding


def encrypt_note(note: Note, recipient_public_key: bytes) -> EncryptedOutput:
    """
    Encrypt a note to a recipient's compressed secp256k1 public key.

    Args:
        note: Output note
        recipient_public_key: 33-byte compressed public key

    Returns:
        EncryptedOutput: ephemeral key, nonce and ciphertext

    Raises:
        EncryptionError: If the recipient key is invalid
    """
    try:
        recipient = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), recipient_public_key)
    except ValueError as e:
        raise EncryptionError(f"Invalid recipient public key: {e}")

    ephemeral = ec.generate_private_key(ec.SECP256K1())
    shared = ephemeral.exchange(ec.ECDH(), recipient)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(_derive_key(shared)).encrypt(nonce, _encode_plaintext(note), None)

    return EncryptedOutput(
        ephemeral_pubkey=ephemeral.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        ),
        nonce=nonce,
        ciphertext=ciphertext,
    )


def decrypt_note(output: EncryptedOutput, private_key: ec.EllipticCurvePrivateKey) -> Note:
    """
    Recover a note addressed to `private_key`.

    Raises:
        DecryptionError: If the payload was not addressed to this key or was tampered with
    """
    try:
        ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), output.ephemeral_pubkey)
        shared = private_key.exchange(ec.ECDH(), ephemeral)
        plaintext = AESGCM(_derive_key(shared)).decrypt(output.nonce, output.ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionError(f"Cannot decrypt note: {e}")

    if len(plaintext) != PLAINTEXT_SIZE:
        raise DecryptionError("Unexpected plaintext size")

    return Note(
        amount=int.from_bytes(plaintext[:32], "big"),
        owner_pubkey=plaintext[32:64],
        blinding=plaintext[64:96],
    )
