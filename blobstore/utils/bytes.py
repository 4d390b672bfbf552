"""
Hex/bytes helpers and 32-byte ABI word utilities.

Ledger payloads (call data, log data, topics) travel as 0x-hex strings over
JSON-RPC. Everything inside the client works on raw bytes; these helpers sit at
that boundary.
"""

from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

WORD = 32


def ensure_bytes(data: Union[BytesLike, str]) -> bytes:
    """
    Ensure input is bytes.

    Accepts:
      - bytes / bytearray / memoryview  -> bytes(data)
      - str: treated as hex; optional '0x' prefix; even-length enforced

    Raises:
      ValueError on invalid hex strings.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return from_hex(data)
    raise TypeError(f"Unsupported type for ensure_bytes: {type(data)!r}")


def to_hex(b: BytesLike, prefix: bool = True) -> str:
    """
    Bytes -> hex string (lowercase). Prefix with '0x' by default.
    """
    s = bytes(b).hex()
    return f"0x{s}" if prefix else s


def from_hex(s: str) -> bytes:
    """
    Hex string (optionally '0x' prefixed) -> bytes.

    Enforces even-length (nibbles must pair to bytes) and is case agnostic.
    """
    if not isinstance(s, str):
        raise TypeError("from_hex expects a string")
    if s.startswith(("0x", "0X")):
        s = s[2:]
    if len(s) % 2 != 0:
        raise ValueError("hex string must have even length")
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise ValueError(f"invalid hex string: {e}") from e


def hex_to_int(value: Union[str, int]) -> int:
    """Parse a JSON-RPC quantity ('0x1a') or a plain int."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise TypeError(f"expected hex quantity, got {type(value)!r}")
    v = value.strip().lower()
    if v.startswith("0x"):
        return int(v[2:] or "0", 16)
    return int(v, 10)


def int_to_quantity(n: int) -> str:
    """Int -> JSON-RPC quantity string (no leading zeros)."""
    if n < 0:
        raise ValueError("quantities are non-negative")
    return hex(n)


# --- 32-byte words ------------------------------------------------------------


def uint256_word(n: int) -> bytes:
    """Big-endian 32-byte encoding of a non-negative integer."""
    if n < 0 or n >= 1 << 256:
        raise ValueError("value out of uint256 range")
    return n.to_bytes(WORD, "big")


def right_pad_word(b: BytesLike) -> bytes:
    """Left-aligned bytesN value padded with zeros to a full word."""
    raw = bytes(b)
    if len(raw) > WORD:
        raise ValueError("value longer than one word")
    return raw + b"\x00" * (WORD - len(raw))


def read_word(data: BytesLike, offset: int) -> int:
    """Read the big-endian uint256 word starting at `offset`."""
    raw = bytes(data)
    if offset < 0 or offset + WORD > len(raw):
        raise ValueError(f"word at offset {offset} overruns {len(raw)} bytes")
    return int.from_bytes(raw[offset : offset + WORD], "big")


def read_length_prefixed(data: BytesLike, length_offset: int) -> bytes:
    """
    Slice a length-delimited byte string out of ABI-encoded data.

    The length is a big-endian 32-byte word at `length_offset`; the payload
    starts immediately after it.
    """
    raw = bytes(data)
    length = read_word(raw, length_offset)
    start = length_offset + WORD
    end = start + length
    if end > len(raw):
        raise ValueError(f"declared length {length} overruns {len(raw) - start} available bytes")
    return raw[start:end]


__all__ = [
    "BytesLike",
    "WORD",
    "ensure_bytes",
    "to_hex",
    "from_hex",
    "hex_to_int",
    "int_to_quantity",
    "uint256_word",
    "right_pad_word",
    "read_word",
    "read_length_prefixed",
]
