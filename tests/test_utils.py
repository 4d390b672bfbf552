from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from blobstore.utils.bytes import (ensure_bytes, from_hex, hex_to_int,
                                   int_to_quantity, read_length_prefixed,
                                   read_word, right_pad_word, to_hex,
                                   uint256_word)
from blobstore.utils.hash import keccak256, keccak256_hex
from blobstore.utils.retry import RetryError, backoff_delay, retry_call


# --- bytes --------------------------------------------------------------------


def test_hex_helpers():
    assert to_hex(b"\x01\xab") == "0x01ab"
    assert to_hex(b"\x01", prefix=False) == "01"
    assert from_hex("0X01AB") == b"\x01\xab"
    assert ensure_bytes("0x") == b""
    assert ensure_bytes(bytearray(b"x")) == b"x"
    with pytest.raises(ValueError):
        from_hex("0x123")
    with pytest.raises(ValueError):
        from_hex("0xzz")
    with pytest.raises(TypeError):
        ensure_bytes(12)  # type: ignore[arg-type]


def test_quantities():
    assert hex_to_int("0x10") == 16
    assert hex_to_int("0x") == 0
    assert hex_to_int(5) == 5
    assert int_to_quantity(0) == "0x0"
    with pytest.raises(ValueError):
        int_to_quantity(-1)


@given(st.integers(min_value=0, max_value=2**256 - 1))
def test_uint256_word(n):
    word = uint256_word(n)
    assert len(word) == 32
    assert read_word(word, 0) == n


def test_uint256_word_range():
    with pytest.raises(ValueError):
        uint256_word(2**256)


def test_right_pad_word():
    assert right_pad_word(b"\x01") == b"\x01" + bytes(31)
    with pytest.raises(ValueError):
        right_pad_word(bytes(33))


@given(st.binary(max_size=128), st.integers(min_value=0, max_value=64), st.binary(max_size=64))
def test_length_prefixed_slice(payload, offset, trailer):
    data = bytes(offset) + uint256_word(len(payload)) + payload + trailer
    assert read_length_prefixed(data, offset) == payload


def test_length_prefixed_overrun():
    with pytest.raises(ValueError):
        read_length_prefixed(uint256_word(10) + b"short", 0)
    with pytest.raises(ValueError):
        read_word(b"\x00" * 31, 0)


# --- hash ---------------------------------------------------------------------


def test_keccak_vectors():
    assert keccak256_hex(b"") == "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
    assert keccak256(b"hello").hex() == "1c8aff950685c2ed4bc3174f3472287b56d9517b9c948127319a09a7a36deac8"


# --- retry --------------------------------------------------------------------


def test_backoff_delay_bounds():
    for attempt in range(1, 8):
        d = backoff_delay(attempt, base=0.1, max_delay=1.0, jitter="equal")
        cap = min(0.1 * 2 ** (attempt - 1), 1.0)
        assert cap / 2 <= d <= cap
    with pytest.raises(ValueError):
        backoff_delay(1, base=0.1, max_delay=1.0, jitter="sideways")  # type: ignore[arg-type]


def test_retry_call_recovers():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("blip")
        return "ok"

    retried = []
    assert retry_call(flaky, retries=5, base=0.0, exceptions=ConnectionError,
                      on_retry=lambda i, e, s: retried.append(i), sleep=lambda _s: None) == "ok"
    assert retried == [1, 2]


def test_retry_call_exhausts():
    with pytest.raises(RetryError) as exc:
        retry_call(lambda: 1 / 0, retries=2, base=0.0, exceptions=ZeroDivisionError, sleep=lambda _s: None)
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_exception, ZeroDivisionError)


def test_retry_call_does_not_retry_other_errors():
    calls = []

    def boom():
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        retry_call(boom, retries=5, exceptions=ConnectionError, sleep=lambda _s: None)
    assert calls == [1]
