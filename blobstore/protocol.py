"""
Contract protocol versions.

The store contract went through several deployments with different call
shapes, event layouts and read views. A `ProtocolVersion` captures everything
the submit and retrieve pipelines need to know about one of them, so the
pipelines themselves stay version-agnostic.

Versions
--------
log         storeBlob(bytes); blob kept only in an event log, found through
            getBlobBlockNumber at 'latest' plus a 200 block rescan margin.
state       storeBlob(bytes); blob kept in contract storage, read back with
            getBlob at 'pending'.
stamped     as `log`, but the contract stamps the block number into the
            trailing 8 bytes of the identifier.
revisioned  createWithNonce(bytes32,bytes) with flags and a contract-chosen
            20 byte id; every revision is logged under (id, revision) topics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .utils.bytes import from_hex

REVISION_EVENT_TOPIC = from_hex("0xfd5eeef8919c5473de9558a49bf3a5b19bcf59ec0d36e420586d7c3bbaf17d01")


@dataclass(frozen=True)
class ProtocolVersion:
    name: str
    # Mutating entrypoint and its argument layout in transaction input.
    store_signature: str
    input_length_offset: int
    # Read views
    exists_signature: Optional[str]
    pointer_signature: Optional[str]
    pointer_view: str
    get_signature: Optional[str] = None
    # Log layout
    log_length_offset: int = 32
    event_topic: Optional[bytes] = None
    window_upper: str = "latest"
    reorg_margin: int = 200
    # Behaviour
    mempool_scan: bool = True
    content_addressed: bool = True
    stamp_suffix: int = 0
    id_length: int = 32

    @property
    def revisioned(self) -> bool:
        return self.event_topic is not None

    @property
    def direct_read(self) -> bool:
        return self.get_signature is not None

    def signature(self, role: str) -> str:
        """ABI signature of the `role` view ('exists', 'pointer' or 'get')."""
        sig = getattr(self, f"{role}_signature", None)
        if sig is None:
            raise ValueError(f"{self.name} contracts have no {role} view")
        return sig


LOG = ProtocolVersion(
    name="log",
    store_signature="storeBlob(bytes)",
    input_length_offset=36,
    exists_signature="blobExists(bytes32)",
    pointer_signature="getBlobBlockNumber(bytes32)",
    pointer_view="latest",
)

STATE = ProtocolVersion(
    name="state",
    store_signature="storeBlob(bytes)",
    input_length_offset=36,
    exists_signature="blobExists(bytes32)",
    pointer_signature=None,
    pointer_view="pending",
    get_signature="getBlob(bytes32)",
    mempool_scan=False,
)

STAMPED = ProtocolVersion(
    name="stamped",
    store_signature="storeBlob(bytes)",
    input_length_offset=36,
    exists_signature="blobExists(bytes32)",
    pointer_signature="getBlobBlockNumber(bytes32)",
    pointer_view="latest",
    stamp_suffix=8,
)

REVISIONED = ProtocolVersion(
    name="revisioned",
    store_signature="createWithNonce(bytes32,bytes)",
    input_length_offset=68,
    exists_signature=None,
    pointer_signature="getRevisionBlockNumber(bytes20,uint256)",
    pointer_view="pending",
    event_topic=REVISION_EVENT_TOPIC,
    window_upper="pending",
    reorg_margin=20,
    mempool_scan=False,
    content_addressed=False,
    id_length=20,
)

VERSIONS: Dict[str, ProtocolVersion] = {v.name: v for v in (LOG, STATE, STAMPED, REVISIONED)}


def from_name(name: str) -> ProtocolVersion:
    try:
        return VERSIONS[name.lower()]
    except KeyError:
        raise ValueError(f"unknown protocol version {name!r}; expected one of {sorted(VERSIONS)}") from None


__all__ = [
    "ProtocolVersion",
    "LOG",
    "STATE",
    "STAMPED",
    "REVISIONED",
    "VERSIONS",
    "REVISION_EVENT_TOPIC",
    "from_name",
]
