"""
ABI helpers for the store contract.

Call payloads are `selector ‖ abi.encode(args)` built with eth-abi. Blob bytes
come back out of two places with a fixed layout:

- event log data: offset word, then the length word at byte 32, blob at 64
- transaction input: selector plus head words, then the length word at a
  version-specific offset (36 for `storeBlob(bytes)`, 68 for
  `createWithNonce(bytes32,bytes)`)

Both are read by slicing the length-prefixed region directly rather than a full
ABI decode, so that a log or input carrying trailing fields still yields the blob.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError

from .errors import AbiError, PayloadDecodeError
from .utils.bytes import (BytesLike, ensure_bytes, read_length_prefixed,
                          right_pad_word, to_hex, uint256_word)
from .utils.hash import function_selector


def arg_types(signature: str) -> List[str]:
    """'createWithNonce(bytes32,bytes)' -> ['bytes32', 'bytes']"""
    try:
        open_ = signature.index("(")
    except ValueError:
        raise AbiError("signature has no argument list", function=signature) from None
    if not signature.endswith(")"):
        raise AbiError("signature must end with ')'", function=signature)
    inner = signature[open_ + 1 : -1].strip()
    return [t.strip() for t in inner.split(",")] if inner else []


def encode_call(signature: str, *args: Any) -> bytes:
    types = arg_types(signature)
    if len(types) != len(args):
        raise AbiError(f"expected {len(types)} arguments, got {len(args)}", function=signature)
    try:
        body = abi_encode(types, list(args))
    except (EncodingError, TypeError, ValueError, OverflowError) as e:
        raise AbiError(str(e), function=signature) from e
    return function_selector(signature) + body


def decode_return(types: Sequence[str], data: BytesLike, *, function: Optional[str] = None) -> Tuple[Any, ...]:
    try:
        return tuple(abi_decode(list(types), bytes(data)))
    except (DecodingError, TypeError, ValueError, OverflowError) as e:
        raise AbiError(str(e), function=function) from e


def _slice(payload: Union[BytesLike, str], length_offset: int, where: str) -> bytes:
    try:
        return read_length_prefixed(ensure_bytes(payload), length_offset)
    except ValueError as e:
        raise PayloadDecodeError(f"malformed {where} payload: {e}") from e


def decode_log_payload(data: Union[BytesLike, str], length_offset: int = 32) -> bytes:
    """Blob bytes carried in event log data."""
    return _slice(data, length_offset, "log")


def decode_input_payload(data: Union[BytesLike, str], length_offset: int) -> bytes:
    """Blob bytes carried in transaction input."""
    return _slice(data, length_offset, "input")


# --- topics -------------------------------------------------------------------


def id_topic(identifier: BytesLike) -> str:
    """Indexed identifier topic; short ids (bytes20) are right-padded."""
    return to_hex(right_pad_word(identifier))


def revision_topic(revision: int) -> str:
    return to_hex(uint256_word(revision))


__all__ = [
    "arg_types",
    "encode_call",
    "decode_return",
    "decode_log_payload",
    "decode_input_payload",
    "id_topic",
    "revision_topic",
]
