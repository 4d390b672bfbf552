"""
HTTP JSON-RPC client (sync).

- httpx transport, friendly to respx mocks in tests.
- Retries RPC calls on transient transport failures and 429/5xx HTTP.
- Application errors returned by the node (JSON-RPC `error` objects) are never
  retried and surface as `RpcError`.

Example:
    from blobstore.rpc.http import RpcClient
    with RpcClient("http://localhost:8545") as rpc:
        head = rpc.request("eth_blockNumber")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

import httpx

from ..config import BlobStoreConfig
from ..errors import JsonRpcCode, RpcError, from_jsonrpc_error
from ..utils.retry import RetryError, retry_call

JSON = Union[dict, list, str, int, float, bool, None]
Params = Union[Sequence[Any], Mapping[str, Any], None]

log = logging.getLogger("blobstore.rpc")


def _is_retriable_http(status: int) -> bool:
    # Typical transient HTTP statuses: 429/502/503/504
    return status in (429, 502, 503, 504)


class _TransientHttp(Exception):
    """Internal marker for a retryable transport condition."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class RpcClient:
    """Synchronous JSON-RPC 2.0 client over HTTP."""

    url: str
    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 0.25
    backoff_max: float = 3.0
    headers: Optional[Mapping[str, str]] = None
    client: Optional[httpx.Client] = None
    _id_counter: Iterator[int] = field(default_factory=lambda: count(start=1))
    _owns_client: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        merged: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.headers:
            merged.update(dict(self.headers))
        if self.client is None:
            self.client = httpx.Client(timeout=self.timeout, headers=merged)
            self._owns_client = True

    @classmethod
    def from_config(cls, cfg: BlobStoreConfig, *, client: Optional[httpx.Client] = None) -> "RpcClient":
        return cls(
            url=cfg.rpc_url,
            timeout=cfg.request_timeout,
            max_retries=cfg.max_retries,
            backoff_base=cfg.backoff_factor,
            headers=cfg.http_headers(),
            client=client,
        )

    # --- context manager -------------------------------------------------

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        if self._owns_client and self.client is not None:
            self.client.close()
            self.client = None

    # --- public API ------------------------------------------------------

    def request(self, method: str, params: Params = None, *, id: Optional[Union[int, str]] = None) -> JSON:
        """Perform a single JSON-RPC request and return `result` or raise RpcError."""
        payload = self._make_payload(method, params, id)
        log.debug("rpc -> %s id=%s", method, payload["id"])
        resp = self._send_with_retries(payload, method)
        return self._handle_response(resp, method, payload["id"])

    # --- internals -------------------------------------------------------

    def _make_payload(self, method: str, params: Params, id: Optional[Union[int, str]] = None) -> Dict[str, Any]:
        if id is None:
            id = next(self._id_counter)
        if params is None:
            params = []
        elif isinstance(params, Mapping):
            params = dict(params)
        elif isinstance(params, Sequence) and not isinstance(params, (str, bytes, bytearray)):
            params = list(params)
        else:
            params = [params]  # type: ignore[list-item]
        return {"jsonrpc": "2.0", "id": id, "method": method, "params": params}

    def _send_with_retries(self, payload: Dict[str, Any], method: str) -> JSON:
        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            log.warning("rpc %s transient failure (attempt %d): %s; retrying in %.2fs", method, attempt, exc, delay)

        try:
            return retry_call(
                self._send_once,
                payload,
                retries=self.max_retries,
                base=self.backoff_base,
                max_delay=self.backoff_max,
                jitter="equal",
                exceptions=(_TransientHttp, httpx.TimeoutException, httpx.NetworkError),
                on_retry=_on_retry,
            )
        except RetryError as e:
            last = e.last_exception
            raise RpcError(
                method=method,
                code=JsonRpcCode.TRANSPORT_FAILED,
                message="RPC transport failed",
                data=str(last),
                http_status=getattr(last, "status", None),
            ) from last

    def _send_once(self, payload: Dict[str, Any]) -> JSON:
        if self.client is None:
            raise RuntimeError("RpcClient is closed")
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        r = self.client.post(self.url, content=body)
        if _is_retriable_http(r.status_code):
            raise _TransientHttp(f"HTTP {r.status_code}", status=r.status_code)
        # Avoid raise_for_status() to keep the error body visible below
        try:
            resp = r.json()
        except ValueError as e:
            raise RpcError(
                method=payload.get("method"),
                code=JsonRpcCode.INTERNAL_ERROR,
                message="Non-JSON response from RPC",
                data=f"HTTP {r.status_code}: {r.text[:256]}",
                http_status=r.status_code,
            ) from e
        if r.status_code >= 400 and not (isinstance(resp, dict) and "error" in resp):
            raise RpcError(
                method=payload.get("method"),
                code=JsonRpcCode.SERVER_ERROR,
                message=f"HTTP {r.status_code}",
                data=resp,
                http_status=r.status_code,
            )
        return resp

    def _handle_response(self, resp: JSON, method: str, request_id: Any) -> JSON:
        if not isinstance(resp, dict):
            raise RpcError(method=method, code=JsonRpcCode.INTERNAL_ERROR,
                           message="Invalid JSON-RPC response", data=resp, request_id=request_id)
        if resp.get("error") is not None:
            err = resp["error"]
            if not isinstance(err, dict):
                err = {"message": str(err)}
            raise from_jsonrpc_error(err, method=method, request_id=resp.get("id", request_id))
        if "result" not in resp:
            raise RpcError(method=method, code=JsonRpcCode.INTERNAL_ERROR,
                           message="Missing result in JSON-RPC response", data=resp, request_id=request_id)
        log.debug("rpc <- %s id=%s", method, request_id)
        return resp["result"]


__all__ = ["RpcClient"]
