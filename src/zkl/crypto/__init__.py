"""Off-proof note encryption"""

from zkl.crypto.note_encryption import decrypt_note, encrypt_note

__all__ = [
    'encrypt_note',
    'decrypt_note',
]
