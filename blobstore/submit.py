"""
blobstore.submit
================

Submission pipeline for store-contract transactions.

Steps
-----
1. estimate gas for the call payload against the 'pending' view
2. attach the estimate as the gas limit and broadcast via the node account
3. poll an observability check until the blob shows up (pending or mined)

Failure modes stay distinct:

- estimation failure  -> EstimationError (the RpcError is kept as `.cause`)
- broadcast failure   -> the RpcError from `eth_sendTransaction`, unchanged
- never observable    -> BroadcastNotObserved (the node took the tx, nothing
  became visible within the confirmation window)

Owner operations (retract, transfer, ...) reuse steps 1 and 2 only.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import BroadcastNotObserved, EstimationError, TransportError
from .ledger import Ledger
from .utils.bytes import int_to_quantity, to_hex

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    identifier: bytes
    tx_hash: str
    gas: int

    @property
    def identifier_hex(self) -> str:
        return to_hex(self.identifier)


def build_tx(contract: str, data: bytes, from_address: Optional[str] = None) -> Dict[str, Any]:
    tx: Dict[str, Any] = {"to": contract, "data": to_hex(data)}
    if from_address:
        tx["from"] = from_address
    return tx


def estimate(ledger: Ledger, tx: Dict[str, Any]) -> int:
    """Gas estimate at 'pending'. Raises EstimationError."""
    try:
        gas = ledger.estimate_gas(tx, "pending")
    except TransportError as e:
        raise EstimationError(f"gas estimation failed for call to {tx.get('to')}", cause=e) from e
    log.debug("estimated gas=%d for call to %s", gas, tx.get("to"))
    return gas


def send(ledger: Ledger, tx: Dict[str, Any]) -> Tuple[str, int]:
    """Estimate then broadcast. Returns (tx_hash, gas)."""
    gas = estimate(ledger, tx)
    signed = dict(tx, gas=int_to_quantity(gas))
    tx_hash = ledger.send_transaction(signed)
    log.debug("broadcast tx=%s gas=%d", tx_hash, gas)
    return tx_hash, gas


def wait_observable(
    check: Callable[[], bool],
    *,
    timeout_s: float = 5.0,
    poll_interval_s: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Poll `check` until it returns True or the timeout passes.
    The check always runs at least once.
    """
    deadline = clock() + float(timeout_s)
    while True:
        if check():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(float(poll_interval_s), remaining))


def submit(
    ledger: Ledger,
    tx: Dict[str, Any],
    identifier: bytes,
    *,
    is_observable: Callable[[], bool],
    confirm_timeout: float = 5.0,
    confirm_poll: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SubmitResult:
    """
    Run the whole pipeline for a blob-carrying transaction.

    `identifier` is what the caller will use to retrieve the blob; it is reported
    back in BroadcastNotObserved if the confirmation window runs out.
    """
    tx_hash, gas = send(ledger, tx)
    return confirm(
        identifier,
        tx_hash,
        gas,
        is_observable=is_observable,
        confirm_timeout=confirm_timeout,
        confirm_poll=confirm_poll,
        sleep=sleep,
        clock=clock,
    )


def confirm(
    identifier: bytes,
    tx_hash: str,
    gas: int,
    *,
    is_observable: Callable[[], bool],
    confirm_timeout: float = 5.0,
    confirm_poll: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SubmitResult:
    """Step 3 alone, for a transaction that is already broadcast."""
    seen = wait_observable(
        is_observable,
        timeout_s=confirm_timeout,
        poll_interval_s=confirm_poll,
        sleep=sleep,
        clock=clock,
    )
    if not seen:
        log.warning("blob %s not observable after broadcast (tx=%s)", to_hex(identifier), tx_hash)
        raise BroadcastNotObserved(identifier=to_hex(identifier), tx_hash=tx_hash)
    return SubmitResult(identifier=identifier, tx_hash=tx_hash, gas=gas)


__all__ = [
    "SubmitResult",
    "build_tx",
    "estimate",
    "send",
    "wait_observable",
    "submit",
    "confirm",
]
