"""Wallet keys and authorization signatures (secp256k1)."""

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from zkl.utils.hash import eth_message_digest, sha256

KEY_DERIVATION_DOMAIN = "utxo-prototype-v1-key-derivation:"

# Order of the secp256k1 group
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class WalletKeys:
    """
    Deterministic secp256k1 key pair derived from a seed.

    sk = SHA256("utxo-prototype-v1-key-derivation:" + seed)
    """

    def __init__(self, seed: str):
        secret = int.from_bytes(sha256(KEY_DERIVATION_DOMAIN + seed), "big") % SECP256K1_N
        self._private_key = ec.derive_private_key(secret, ec.SECP256K1())

    @property
    def public_key(self) -> bytes:
        """Compressed SEC1 public key (33 bytes)."""
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        )

    @property
    def owner_x(self) -> bytes:
        """X-coordinate of the public key; the owner field of notes."""
        return self.public_key[1:]

    @property
    def private_key(self) -> ec.EllipticCurvePrivateKey:
        return self._private_key

    def sign(self, message: bytes) -> bytes:
        """
        Sign a message Ethereum-style and return 65 bytes r || s || v.

        The digest is keccak("\\x19Ethereum Signed Message:\\n32" || keccak(message)).
        Signing is deterministic (RFC 6979) so a given commitment always yields
        the same signature and therefore the same nullifier. S is normalized
        to the lower half of the group order.
        """
        digest = eth_message_digest(message)
        der = self._private_key.sign(
            digest,
            ec.ECDSA(Prehashed(hashes.SHA256()), deterministic_signing=True),
        )
        r, s = decode_dss_signature(der)
        if s > SECP256K1_N // 2:
            s = SECP256K1_N - s
        # TODO: derive the real recovery id once a library exposing public key recovery is adopted
        v = 27
        return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v])


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check a 65-byte signature produced by WalletKeys.sign."""
    if len(signature) != 65:
        return False
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:64], "big")
        key.verify(
            encode_dss_signature(r, s),
            eth_message_digest(message),
            ec.ECDSA(Prehashed(hashes.SHA256())),
        )
        return True
    except (InvalidSignature, ValueError):
        return False
