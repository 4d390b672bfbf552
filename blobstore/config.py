"""
Client configuration: RPC endpoint, store contract, protocol version and the
retry/confirmation knobs used by submit and retrieve.

- Loads sane defaults and supports overrides via environment variables (BLOBSTORE_*).
- Provides helpers for building HTTP headers and validating endpoints.
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .version import default_user_agent

_DEFAULT_RPC = "http://127.0.0.1:8545"

PROTOCOL_NAMES = ("log", "state", "stamped", "revisioned")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    return v if v is not None and v.strip() != "" else default


def _env_float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"Invalid float for {name}: {v!r}") from e


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    v = _env(name)
    if v is None:
        return default
    base = 16 if v.strip().lower().startswith("0x") else 10
    try:
        return int(v, base)
    except ValueError as e:
        raise ValueError(f"Invalid int for {name}: {v!r}") from e


def _ensure_scheme(url: Optional[str], allowed: tuple[str, ...]) -> Optional[str]:
    if not url:
        return url
    lower = url.lower()
    if not any(lower.startswith(f"{sch}://") for sch in allowed):
        raise ValueError(f"URL must start with {allowed}, got: {url!r}")
    return url


def is_address(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


@dataclass(slots=True)
class BlobStoreConfig:
    # Core
    rpc_url: str = field(default_factory=lambda: _DEFAULT_RPC)
    contract_address: Optional[str] = None
    protocol: str = "log"
    from_address: Optional[str] = None
    # HTTP behavior
    request_timeout: float = 10.0
    max_retries: int = 3
    backoff_factor: float = 0.25
    # Reconciliation
    reorg_margin: Optional[int] = None
    max_restarts: int = 8
    restart_backoff: float = 0.25
    # Submission
    confirm_timeout: float = 5.0
    confirm_poll: float = 0.5
    max_nonce_attempts: int = 16
    # Headers / identity
    user_agent: str = field(default_factory=default_user_agent)

    @classmethod
    def from_env(cls, prefix: str = "BLOBSTORE_") -> "BlobStoreConfig":
        """
        Create config from environment variables:

        BLOBSTORE_RPC_URL             (http/https)
        BLOBSTORE_CONTRACT            (0x-address of the store contract)
        BLOBSTORE_PROTOCOL            (log|state|stamped|revisioned)
        BLOBSTORE_FROM                (0x-address of the sending account)
        BLOBSTORE_TIMEOUT             (float seconds, HTTP)
        BLOBSTORE_MAX_RETRIES         (int)
        BLOBSTORE_BACKOFF             (float)
        BLOBSTORE_REORG_MARGIN        (int blocks)
        BLOBSTORE_MAX_RESTARTS        (int)
        BLOBSTORE_RESTART_BACKOFF     (float seconds)
        BLOBSTORE_CONFIRM_TIMEOUT     (float seconds)
        BLOBSTORE_CONFIRM_POLL        (float seconds)
        BLOBSTORE_MAX_NONCE_ATTEMPTS  (int)
        BLOBSTORE_USER_AGENT          (str)
        """
        cfg = cls(
            rpc_url=_env(f"{prefix}RPC_URL", _DEFAULT_RPC) or _DEFAULT_RPC,
            contract_address=_env(f"{prefix}CONTRACT"),
            protocol=(_env(f"{prefix}PROTOCOL", "log") or "log").lower(),
            from_address=_env(f"{prefix}FROM"),
            request_timeout=_env_float(f"{prefix}TIMEOUT", 10.0),
            max_retries=_env_int(f"{prefix}MAX_RETRIES", 3) or 0,
            backoff_factor=_env_float(f"{prefix}BACKOFF", 0.25),
            reorg_margin=_env_int(f"{prefix}REORG_MARGIN", None),
            max_restarts=_env_int(f"{prefix}MAX_RESTARTS", 8) or 0,
            restart_backoff=_env_float(f"{prefix}RESTART_BACKOFF", 0.25),
            confirm_timeout=_env_float(f"{prefix}CONFIRM_TIMEOUT", 5.0),
            confirm_poll=_env_float(f"{prefix}CONFIRM_POLL", 0.5),
            max_nonce_attempts=_env_int(f"{prefix}MAX_NONCE_ATTEMPTS", 16) or 0,
            user_agent=_env(f"{prefix}USER_AGENT") or default_user_agent(),
        )
        cfg.validate()
        return cfg

    @classmethod
    def with_overrides(
        cls, base: Optional["BlobStoreConfig"] = None, **overrides: Any
    ) -> "BlobStoreConfig":
        """
        Build from an existing config plus keyword overrides.
        Unknown keys are ignored.
        """
        base = base or cls.from_env()
        data = base.to_dict()
        data.update({k: v for k, v in overrides.items() if k in data})
        if isinstance(data.get("protocol"), str):
            data["protocol"] = data["protocol"].lower()
        cfg = cls(**data)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        _ensure_scheme(self.rpc_url, ("http", "https"))
        if self.protocol not in PROTOCOL_NAMES:
            raise ValueError(f"protocol must be one of {PROTOCOL_NAMES}, got {self.protocol!r}")
        if self.contract_address is not None and not is_address(self.contract_address):
            raise ValueError(f"contract_address is not a 0x-address: {self.contract_address!r}")
        if self.from_address is not None and not is_address(self.from_address):
            raise ValueError(f"from_address is not a 0x-address: {self.from_address!r}")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.reorg_margin is not None and self.reorg_margin < 0:
            raise ValueError("reorg_margin must be >= 0")
        if self.max_restarts < 0:
            raise ValueError("max_restarts must be >= 0")
        if self.restart_backoff < 0 or self.backoff_factor < 0:
            raise ValueError("backoff values must be >= 0")
        if self.confirm_timeout < 0 or self.confirm_poll < 0:
            raise ValueError("confirmation timings must be >= 0")
        if self.max_nonce_attempts < 1:
            raise ValueError("max_nonce_attempts must be >= 1")

    def http_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = ["BlobStoreConfig", "PROTOCOL_NAMES", "is_address"]
