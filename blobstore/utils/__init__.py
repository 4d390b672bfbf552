"""
Utility helpers for the blobstore client.

Re-exports:
- bytes: hex helpers, 32-byte word and length-prefixed slice readers
- hash: Keccak-256 convenience wrappers, selectors and event topics
- retry: backoff and retry utilities
"""

from .bytes import (ensure_bytes, from_hex, hex_to_int, read_length_prefixed,
                    read_word, to_hex, uint256_word)
from .hash import event_topic, function_selector, keccak256, keccak256_hex
from .retry import RetryError, backoff_delay, retry_call

__all__ = [
    # bytes
    "to_hex",
    "from_hex",
    "ensure_bytes",
    "hex_to_int",
    "uint256_word",
    "read_word",
    "read_length_prefixed",
    # hash
    "keccak256",
    "keccak256_hex",
    "function_selector",
    "event_topic",
    # retry
    "RetryError",
    "backoff_delay",
    "retry_call",
]
