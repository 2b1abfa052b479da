"""Encoding and decoding utilities."""

from typing import List, Optional, Tuple

WORD = 32


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Hexadecimal string with '0x' prefix
    """
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str, length: Optional[int] = None) -> bytes:
    """
    Convert hexadecimal string to bytes.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)
        length: Expected byte length; shorter values are left-padded with zeros

    Returns:
        bytes: Decoded bytes

    Raises:
        ValueError: If hex string is invalid or too long
    """
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]

    if length is not None:
        if len(hex_str) > length * 2:
            raise ValueError(f"Hex value longer than {length} bytes")
        hex_str = hex_str.rjust(length * 2, "0")

    if len(hex_str) % 2 != 0:
        raise ValueError("Hex string must have even number of characters")

    return bytes.fromhex(hex_str)


def _word(value: int) -> bytes:
    return value.to_bytes(WORD, "big")


def _encode_bytes32_array(items: List[bytes]) -> bytes:
    return _word(len(items)) + b"".join(items)


def encode_public_values(
    old_root: bytes,
    new_root: bytes,
    nullifiers: List[bytes],
    output_commitments: List[bytes],
) -> bytes:
    """
    ABI-encode (bytes32 oldRoot, bytes32 newRoot, bytes32[] nullifiers, bytes32[] outputCommitments).

    The layout is a single dynamic tuple: an offset word pointing at the tuple
    body, four head words, then the two array tails.
    """
    for item in [old_root, new_root, *nullifiers, *output_commitments]:
        if len(item) != WORD:
            raise ValueError("Public values must be 32-byte words")

    nullifiers_tail = _encode_bytes32_array(nullifiers)
    head_size = 4 * WORD
    head = (
        old_root
        + new_root
        + _word(head_size)
        + _word(head_size + len(nullifiers_tail))
    )
    return _word(WORD) + head + nullifiers_tail + _encode_bytes32_array(output_commitments)


def decode_public_values(raw: bytes) -> Tuple[bytes, bytes, List[bytes], List[bytes]]:
    """
    Inverse of encode_public_values.

    Raises:
        ValueError: If the buffer is truncated or offsets are out of range
    """
    if len(raw) < 5 * WORD:
        raise ValueError("Public values buffer too short")

    base = int.from_bytes(raw[:WORD], "big")
    body = raw[base:]
    if len(body) < 4 * WORD:
        raise ValueError("Public values tuple truncated")

    old_root = body[0:WORD]
    new_root = body[WORD:2 * WORD]

    def read_array(offset: int) -> List[bytes]:
        if offset + WORD > len(body):
            raise ValueError("Array offset out of range")
        count = int.from_bytes(body[offset:offset + WORD], "big")
        start = offset + WORD
        end = start + count * WORD
        if end > len(body):
            raise ValueError("Array body truncated")
        return [body[i:i + WORD] for i in range(start, end, WORD)]

    nullifiers = read_array(int.from_bytes(body[2 * WORD:3 * WORD], "big"))
    commitments = read_array(int.from_bytes(body[3 * WORD:4 * WORD], "big"))
    return old_root, new_root, nullifiers, commitments
