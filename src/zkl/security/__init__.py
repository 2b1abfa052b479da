"""Wallet signing and input backing checks."""

from zkl.security.signing import WalletKeys, verify_signature
from zkl.security.verifier import SecurityVerifier

__all__ = [
    "WalletKeys",
    "verify_signature",
    "SecurityVerifier",
]
