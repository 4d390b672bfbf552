from __future__ import annotations

import json

import httpx
import pytest
import respx

from blobstore.errors import RpcError
from blobstore.ledger import JsonRpcLedger, block_param
from blobstore.rpc.http import RpcClient

URL = "http://localhost:8545"


def _ok(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


@pytest.fixture
def ledger():
    with RpcClient(URL, max_retries=0) as rpc:
        yield JsonRpcLedger(rpc)


def _sent(route):
    return json.loads(route.calls.last.request.content)


def test_block_param():
    assert block_param(16) == "0x10"
    assert block_param("pending") == "pending"
    with pytest.raises(ValueError):
        block_param("tomorrow")


@respx.mock
def test_estimate_gas_uses_requested_view(ledger):
    route = respx.post(URL).mock(return_value=_ok("0x5208"))
    assert ledger.estimate_gas({"to": "0x01", "data": "0x"}, "pending") == 21000
    body = _sent(route)
    assert body["method"] == "eth_estimateGas"
    assert body["params"][1] == "pending"


@respx.mock
def test_send_transaction_returns_hash(ledger):
    respx.post(URL).mock(return_value=_ok("0x" + "ee" * 32))
    assert ledger.send_transaction({"to": "0x01"}) == "0x" + "ee" * 32


@respx.mock
def test_send_transaction_rejects_non_string(ledger):
    respx.post(URL).mock(return_value=_ok(None))
    with pytest.raises(RpcError):
        ledger.send_transaction({"to": "0x01"})


@respx.mock
def test_pending_transactions_are_full_objects(ledger):
    route = respx.post(URL).mock(
        return_value=_ok({"transactions": [{"to": "0x01", "input": "0xab"}, "0x" + "aa" * 32]})
    )
    assert ledger.get_pending_transactions() == [{"to": "0x01", "input": "0xab"}]
    assert _sent(route)["params"] == ["pending", True]


@respx.mock
def test_pending_block_missing(ledger):
    respx.post(URL).mock(return_value=_ok(None))
    assert ledger.get_pending_transactions() == []


@respx.mock
def test_get_logs_filter_shape(ledger):
    route = respx.post(URL).mock(return_value=_ok([{"data": "0x", "topics": []}]))
    logs = ledger.get_logs(800, "latest", "0x" + "ab" * 20, ["0x" + "00" * 32])
    assert logs == [{"data": "0x", "topics": []}]
    flt = _sent(route)["params"][0]
    assert flt == {
        "fromBlock": "0x320",
        "toBlock": "latest",
        "address": "0x" + "ab" * 20,
        "topics": ["0x" + "00" * 32],
    }


@respx.mock
def test_call_decodes_hex(ledger):
    respx.post(URL).mock(return_value=_ok("0x0102"))
    assert ledger.call({"to": "0x01", "data": "0x"}, "pending") == b"\x01\x02"


@respx.mock
def test_empty_call_result(ledger):
    respx.post(URL).mock(return_value=_ok("0x"))
    assert ledger.call({"to": "0x01", "data": "0x"}) == b""


@respx.mock
def test_block_number_and_accounts(ledger):
    respx.post(URL).mock(side_effect=[_ok("0x3e8"), _ok(["0x" + "11" * 20])])
    assert ledger.block_number() == 1000
    assert ledger.accounts() == ["0x" + "11" * 20]
