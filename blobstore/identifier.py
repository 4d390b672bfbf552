"""
Blob identifiers.

Content-addressed versions derive the id locally:

    log / state   id = keccak256(blob)
    stamped       id = keccak256(blob) with the trailing 8 bytes zeroed; the
                  contract fills them with the block number it was mined in

The revisioned contract picks ids itself. The client can only propose a
`flagsNonce` word and dry-run `createWithNonce` against the pending state until
the contract answers with a non-empty id. That probe is split in two:

- `candidate_nonces` yields the deterministic nonce chain for a blob
- `find_available_nonce` walks a bounded prefix of it with a caller-supplied
  `simulate` callable, so it can be exercised without a node
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import islice
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from .abi import encode_call
from .errors import NonceSearchExhausted
from .protocol import ProtocolVersion
from .utils.bytes import BytesLike, to_hex
from .utils.hash import keccak256

if TYPE_CHECKING:  # pragma: no cover
    from .ledger import Ledger
    from .metrics import BlobStoreMetrics

log = logging.getLogger(__name__)

FLAGS_SIZE = 4
NONCE_SIZE = 28
REVISIONED_ID_SIZE = 20


# ----------------------------------- flags ------------------------------------


@dataclass(frozen=True)
class Flags:
    updatable: bool = False
    enforce_revisions: bool = False
    retractable: bool = False
    transferable: bool = False
    anonymous: bool = False

    UPDATABLE = 0x01
    ENFORCE_REVISIONS = 0x02
    RETRACTABLE = 0x04
    TRANSFERABLE = 0x08
    ANONYMOUS = 0x10

    def to_int(self) -> int:
        bits = 0
        if self.updatable:
            bits |= self.UPDATABLE
        if self.enforce_revisions:
            bits |= self.ENFORCE_REVISIONS
        if self.retractable:
            bits |= self.RETRACTABLE
        if self.transferable:
            bits |= self.TRANSFERABLE
        if self.anonymous:
            bits |= self.ANONYMOUS
        return bits

    def pack(self) -> bytes:
        """Four big-endian bytes; only the low byte is used."""
        return self.to_int().to_bytes(FLAGS_SIZE, "big")

    @classmethod
    def from_int(cls, bits: int) -> "Flags":
        return cls(
            updatable=bool(bits & cls.UPDATABLE),
            enforce_revisions=bool(bits & cls.ENFORCE_REVISIONS),
            retractable=bool(bits & cls.RETRACTABLE),
            transferable=bool(bits & cls.TRANSFERABLE),
            anonymous=bool(bits & cls.ANONYMOUS),
        )

    @classmethod
    def unpack(cls, raw: BytesLike) -> "Flags":
        raw = bytes(raw)
        if len(raw) < FLAGS_SIZE:
            raise ValueError(f"flags field needs {FLAGS_SIZE} bytes, got {len(raw)}")
        return cls.from_int(int.from_bytes(raw[:FLAGS_SIZE], "big"))


# -------------------------------- derivation ----------------------------------


def mask_identifier(identifier: BytesLike, version: ProtocolVersion) -> bytes:
    """Zero the contract-stamped suffix, if the version has one."""
    ident = bytes(identifier)
    if version.stamp_suffix:
        return ident[: -version.stamp_suffix] + b"\x00" * version.stamp_suffix
    return ident


def derive_identifier(blob: BytesLike, version: ProtocolVersion) -> bytes:
    if not version.content_addressed:
        raise ValueError(f"{version.name} ids are chosen by the contract; use probe_identifier")
    return mask_identifier(keccak256(blob), version)


def matches_identifier(blob: BytesLike, identifier: BytesLike, version: ProtocolVersion) -> bool:
    return derive_identifier(blob, version) == mask_identifier(identifier, version)


# -------------------------------- nonce probe ---------------------------------


def flags_nonce(flags: Flags, nonce: bytes) -> bytes:
    """flags(4) ‖ nonce[0:28] as one bytes32 word."""
    return flags.pack() + bytes(nonce)[:NONCE_SIZE]


def candidate_nonces(blob: BytesLike, flags: Flags) -> Iterator[bytes]:
    """Infinite chain nonce0 = keccak(blob), nonce(n+1) = keccak(nonce(n)), as flagsNonce words."""
    nonce = keccak256(blob)
    while True:
        yield flags_nonce(flags, nonce)
        nonce = keccak256(nonce)


@dataclass(frozen=True)
class NonceCandidate:
    flags_nonce: bytes
    identifier: bytes
    attempts: int


def find_available_nonce(
    blob: BytesLike,
    flags: Flags,
    simulate: Callable[[bytes], bytes],
    *,
    max_attempts: int = 16,
    on_probe: Optional[Callable[[int, bytes], None]] = None,
) -> NonceCandidate:
    """
    Dry-run each candidate through `simulate(flags_nonce) -> raw result` and
    return the first one the contract accepts (non-empty result).

    The returned id is only a candidate: the contract decides at mining time.
    Raises NonceSearchExhausted after `max_attempts` empty answers.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    for attempt, word in enumerate(islice(candidate_nonces(blob, flags), max_attempts), start=1):
        if on_probe is not None:
            on_probe(attempt, word)
        result = simulate(word)
        log.debug("nonce probe %d flagsNonce=0x%s -> %d bytes", attempt, word.hex(), len(result))
        if result:
            return NonceCandidate(flags_nonce=word, identifier=bytes(result[:REVISIONED_ID_SIZE]), attempts=attempt)
    raise NonceSearchExhausted(attempts=max_attempts)


def probe_identifier(
    ledger: "Ledger",
    version: ProtocolVersion,
    contract: str,
    blob: BytesLike,
    flags: Flags,
    *,
    from_address: Optional[str] = None,
    max_attempts: int = 16,
    metrics: Optional["BlobStoreMetrics"] = None,
) -> NonceCandidate:
    """Nonce probe against the node: `eth_call` of the create entrypoint at 'pending'."""
    data = bytes(blob)

    def _simulate(word: bytes) -> bytes:
        tx = {"to": contract, "data": to_hex(encode_call(version.store_signature, word, data))}
        if from_address:
            tx["from"] = from_address
        return ledger.call(tx, "pending")

    def _count(_attempt: int, _word: bytes) -> None:
        if metrics is not None:
            metrics.nonce_probe()

    return find_available_nonce(data, flags, _simulate, max_attempts=max_attempts, on_probe=_count)


__all__ = [
    "Flags",
    "NonceCandidate",
    "mask_identifier",
    "derive_identifier",
    "matches_identifier",
    "flags_nonce",
    "candidate_nonces",
    "find_available_nonce",
    "probe_identifier",
]
