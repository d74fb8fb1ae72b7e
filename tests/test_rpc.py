"""
Brief: Tests for the resolver ABI helpers, Web3ContractCaller error mapping
and HttpGatewayClient.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

from types import SimpleNamespace

import pytest
import requests
from web3.exceptions import ContractLogicError, OffchainLookup as Web3OffchainLookup

from ensresolve.errors import (
    CallError,
    CallReverted,
    CallTimeout,
    GatewayError,
    OffchainLookupRequired,
    TransientError,
)
from ensresolve.rpc import (
    HttpGatewayClient,
    OffchainLookup,
    Web3ContractCaller,
    decode_bool,
    decode_offchain_lookup,
    encode_offchain_lookup,
)
from fakes import CALLBACK_SELECTOR, VITALIK, account

LOOKUP = OffchainLookup(
    sender=VITALIK,
    urls=("https://a.example/{sender}/{data}.json", "https://b.example/"),
    call_data=b"\x12\x34",
    callback_function=CALLBACK_SELECTOR,
    extra_data=b"\xff",
)


def test_offchain_lookup_revert_data_parses() -> None:
    assert decode_offchain_lookup(encode_offchain_lookup(LOOKUP)) == LOOKUP
    assert decode_offchain_lookup(b"\x08\xc3\x79\xa0" + b"\x00" * 32) is None
    assert decode_offchain_lookup(encode_offchain_lookup(LOOKUP)[:40]) is None


def test_decode_bool_empty_is_false() -> None:
    assert decode_bool(b"") is False
    assert decode_bool(b"\x00" * 31 + b"\x01") is True


class _Response:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _Session:
    """requests.Session stand-in returning queued responses or raising errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def close(self):
        pass


def test_gateway_get_substitutes_sender_and_data() -> None:
    session = _Session(_Response(200, {"data": "0xabcd"}))
    out = HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)

    assert out == b"\xab\xcd"
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == f"https://a.example/{VITALIK.lower()}/0x1234.json"
    assert kwargs["timeout"] == 0.5


def test_gateway_5xx_moves_to_next_url_with_post() -> None:
    session = _Session(_Response(502), _Response(200, {"data": "0x01"}))
    out = HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)

    assert out == b"\x01"
    method, url, kwargs = session.requests[1]
    assert method == "POST"
    assert url == "https://b.example/"
    assert kwargs["json"] == {"data": "0x1234", "sender": VITALIK.lower()}


def test_gateway_4xx_stops() -> None:
    session = _Session(_Response(404), _Response(200, {"data": "0x01"}))
    with pytest.raises(GatewayError) as info:
        HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)
    assert info.value.status == 404
    assert len(session.requests) == 1


def test_gateway_malformed_body() -> None:
    session = _Session(_Response(200, {"nope": 1}))
    with pytest.raises(GatewayError):
        HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)


def test_gateway_all_timeouts() -> None:
    session = _Session(requests.exceptions.Timeout(), requests.exceptions.Timeout())
    with pytest.raises(CallTimeout):
        HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)


def test_gateway_all_unreachable() -> None:
    session = _Session(requests.exceptions.ConnectionError("down"), _Response(503))
    with pytest.raises(GatewayError) as info:
        HttpGatewayClient(session).fetch(LOOKUP, timeout_ms=500)
    assert info.value.status == 503


def _caller_raising(monkeypatch, exc):
    caller = Web3ContractCaller({1: "http://127.0.0.1:8545"})

    def call(tx, block, ccip_read_enabled=True):
        assert ccip_read_enabled is False
        raise exc

    fake = SimpleNamespace(eth=SimpleNamespace(call=call))
    monkeypatch.setattr(caller, "_client", lambda chain_id: fake)
    return caller


def test_web3_caller_returns_bytes(monkeypatch) -> None:
    caller = Web3ContractCaller({1: "http://127.0.0.1:8545"})
    seen = {}

    def call(tx, block, ccip_read_enabled=True):
        seen.update(tx)
        return b"\x01\x02"

    monkeypatch.setattr(caller, "_client", lambda chain_id: SimpleNamespace(eth=SimpleNamespace(call=call)))

    assert caller.call(account("11"), b"\xaa", timeout_ms=100) == b"\x01\x02"
    assert seen == {"to": account("11").address, "data": "0xaa"}


def test_web3_caller_maps_offchain_lookup(monkeypatch) -> None:
    payload = {
        "sender": VITALIK.lower(),
        "urls": list(LOOKUP.urls),
        "callData": LOOKUP.call_data,
        "callbackFunction": LOOKUP.callback_function,
        "extraData": LOOKUP.extra_data,
    }
    caller = _caller_raising(monkeypatch, Web3OffchainLookup(payload))
    with pytest.raises(OffchainLookupRequired) as info:
        caller.call(account("11"), b"\xaa", timeout_ms=100)
    assert info.value.lookup == LOOKUP


def test_web3_caller_maps_offchain_lookup_revert_data(monkeypatch) -> None:
    data = "0x" + encode_offchain_lookup(LOOKUP).hex()
    caller = _caller_raising(monkeypatch, ContractLogicError("execution reverted", data=data))
    with pytest.raises(OffchainLookupRequired) as info:
        caller.call(account("11"), b"\xaa", timeout_ms=100)
    assert info.value.lookup == LOOKUP


def test_web3_caller_maps_revert(monkeypatch) -> None:
    caller = _caller_raising(monkeypatch, ContractLogicError("execution reverted", data="0x"))
    with pytest.raises(CallReverted):
        caller.call(account("11"), b"\xaa", timeout_ms=100)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (requests.exceptions.ReadTimeout(), CallTimeout),
        (requests.exceptions.ConnectionError("refused"), TransientError),
        (ValueError("bad"), CallError),
    ],
)
def test_web3_caller_maps_transport_errors(monkeypatch, exc, expected) -> None:
    caller = _caller_raising(monkeypatch, exc)
    with pytest.raises(expected):
        caller.call(account("11"), b"\xaa", timeout_ms=100)


def test_web3_caller_unknown_chain() -> None:
    caller = Web3ContractCaller({})
    with pytest.raises(CallError):
        caller.call(account("11", 10), b"\xaa", timeout_ms=100)
