"""Chain access: resolver ABI, contract calls and ERC-3668 gateways.

Brief:
  - ABI helpers encode the resolver functions the engine uses (name, addr,
    text, ENSIP-10 resolve, ERC-165 supportsInterface) with eth_abi.
  - ContractCaller / GatewayClient are the protocols the executor consumes.
  - Web3ContractCaller performs eth_call through web3 with CCIP-Read
    disabled, so an OffchainLookup revert reaches the executor as
    OffchainLookupRequired and the executor owns the gateway hop.
  - HttpGatewayClient performs the ERC-3668 gateway request with requests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import requests
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, OffchainLookup as Web3OffchainLookup, Web3Exception

from .errors import (
    CallError,
    CallReverted,
    CallTimeout,
    GatewayError,
    OffchainLookupRequired,
    TransientError,
)
from .models import AccountId

logger = logging.getLogger("ensresolve.rpc")

NAME_SELECTOR = function_signature_to_4byte_selector("name(bytes32)")
ADDR_SELECTOR = function_signature_to_4byte_selector("addr(bytes32,uint256)")
TEXT_SELECTOR = function_signature_to_4byte_selector("text(bytes32,string)")
RESOLVE_SELECTOR = function_signature_to_4byte_selector("resolve(bytes,bytes)")
SUPPORTS_INTERFACE_SELECTOR = function_signature_to_4byte_selector("supportsInterface(bytes4)")
OFFCHAIN_LOOKUP_SELECTOR = keccak(text="OffchainLookup(address,string[],bytes,bytes4,bytes)")[:4]

EXTENDED_RESOLVER_INTERFACE_ID = bytes.fromhex("9061b923")

_OFFCHAIN_LOOKUP_TYPES = ["address", "string[]", "bytes", "bytes4", "bytes"]


@dataclass(frozen=True)
class OffchainLookup:
    """Parsed ERC-3668 OffchainLookup revert."""

    sender: str
    urls: Tuple[str, ...]
    call_data: bytes
    callback_function: bytes
    extra_data: bytes


def encode_name_call(node: bytes) -> bytes:
    return NAME_SELECTOR + encode(["bytes32"], [node])


def encode_addr_call(node: bytes, coin_type: int) -> bytes:
    return ADDR_SELECTOR + encode(["bytes32", "uint256"], [node, int(coin_type)])


def encode_text_call(node: bytes, key: str) -> bytes:
    return TEXT_SELECTOR + encode(["bytes32", "string"], [node, key])


def encode_resolve_call(dns_name: bytes, inner: bytes) -> bytes:
    """ENSIP-10 ``resolve(bytes name, bytes data)`` wrapping inner calldata."""

    return RESOLVE_SELECTOR + encode(["bytes", "bytes"], [dns_name, inner])


def encode_supports_interface_call(interface_id: bytes) -> bytes:
    return SUPPORTS_INTERFACE_SELECTOR + encode(["bytes4"], [interface_id])


def encode_callback_call(callback_function: bytes, response: bytes, extra_data: bytes) -> bytes:
    """ERC-3668 callback ``callbackFunction(bytes response, bytes extraData)``."""

    return bytes(callback_function) + encode(["bytes", "bytes"], [response, extra_data])


def decode_string(data: bytes) -> str:
    return decode(["string"], data)[0]


def decode_bytes(data: bytes) -> bytes:
    return decode(["bytes"], data)[0]


def decode_bool(data: bytes) -> bool:
    if not data:
        return False
    return bool(decode(["bool"], data)[0])


def decode_offchain_lookup(revert_data: bytes) -> Optional[OffchainLookup]:
    """Brief: Parse revert data as an ERC-3668 OffchainLookup.

    Inputs:
      - revert_data: Raw revert bytes including the 4-byte error selector.

    Outputs:
      - OffchainLookup, or None when the data is not an OffchainLookup or is
        malformed.
    """

    if len(revert_data) < 4 or revert_data[:4] != OFFCHAIN_LOOKUP_SELECTOR:
        return None
    try:
        sender, urls, call_data, callback, extra = decode(_OFFCHAIN_LOOKUP_TYPES, revert_data[4:])
    except (DecodingError, ValueError) as exc:
        logger.debug("Malformed OffchainLookup revert: %s", exc)
        return None
    return OffchainLookup(
        sender=to_checksum_address(sender),
        urls=tuple(urls),
        call_data=bytes(call_data),
        callback_function=bytes(callback),
        extra_data=bytes(extra),
    )


def encode_offchain_lookup(lookup: OffchainLookup) -> bytes:
    """Inverse of decode_offchain_lookup (used by gateways and test fakes)."""

    return OFFCHAIN_LOOKUP_SELECTOR + encode(
        _OFFCHAIN_LOOKUP_TYPES,
        [lookup.sender, list(lookup.urls), lookup.call_data, lookup.callback_function, lookup.extra_data],
    )


class ContractCaller(Protocol):
    def call(self, account: AccountId, data: bytes, *, timeout_ms: int) -> bytes:
        """Return the call's return data or raise CallError / TransientError."""
        ...


class GatewayClient(Protocol):
    def fetch(self, lookup: OffchainLookup, *, timeout_ms: int) -> bytes:
        """Return the gateway's response bytes or raise GatewayError / CallTimeout."""
        ...


def _hex_to_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        return b""


class Web3ContractCaller:
    """Brief: ContractCaller over JSON-RPC endpoints via web3.

    Inputs (constructor):
      - rpc_urls: chain_id -> HTTP JSON-RPC url.
      - request_timeout: Default HTTP timeout in seconds for providers.

    Notes:
      - One Web3 instance per chain, created lazily.
      - Calls for chains without an url raise CallError (captured per slot).
    """

    def __init__(self, rpc_urls: Mapping[int, str], *, request_timeout: float = 10.0) -> None:
        self._rpc_urls: Dict[int, str] = {int(k): str(v) for k, v in rpc_urls.items()}
        self._request_timeout = float(request_timeout)
        self._clients: Dict[int, Web3] = {}
        self._lock = threading.Lock()

    def _client(self, chain_id: int) -> Web3:
        with self._lock:
            client = self._clients.get(chain_id)
            if client is None:
                url = self._rpc_urls.get(chain_id)
                if url is None:
                    raise CallError(f"no RPC endpoint configured for chain {chain_id}")
                client = Web3(
                    Web3.HTTPProvider(url, request_kwargs={"timeout": self._request_timeout})
                )
                self._clients[chain_id] = client
            return client

    def call(self, account: AccountId, data: bytes, *, timeout_ms: int) -> bytes:
        client = self._client(account.chain_id)
        tx = {"to": account.address, "data": "0x" + bytes(data).hex()}
        try:
            result = client.eth.call(tx, "latest", ccip_read_enabled=False)
        except Web3OffchainLookup as exc:
            payload = exc.payload
            raise OffchainLookupRequired(
                OffchainLookup(
                    sender=to_checksum_address(payload["sender"]),
                    urls=tuple(payload["urls"]),
                    call_data=_hex_to_bytes(payload["callData"]),
                    callback_function=_hex_to_bytes(payload["callbackFunction"]),
                    extra_data=_hex_to_bytes(payload["extraData"]),
                )
            ) from exc
        except ContractLogicError as exc:
            revert_data = _hex_to_bytes(getattr(exc, "data", None))
            lookup = decode_offchain_lookup(revert_data)
            if lookup is not None:
                raise OffchainLookupRequired(lookup) from exc
            raise CallReverted(str(exc), data=revert_data) from exc
        except requests.exceptions.Timeout as exc:
            raise CallTimeout(f"eth_call to {account} timed out") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientError(f"RPC for chain {account.chain_id} unreachable: {exc}", source="rpc") from exc
        except (Web3Exception, ValueError) as exc:
            raise CallError(f"eth_call to {account} failed: {exc}") from exc
        return bytes(result)


class HttpGatewayClient:
    """Brief: ERC-3668 gateway client.

    Inputs (constructor):
      - session: Optional requests.Session (a new one is created otherwise).

    Notes:
      - Urls containing ``{data}`` are requested with GET after substituting
        ``{sender}`` and ``{data}``; others receive a JSON POST with
        ``{"data": ..., "sender": ...}``.
      - A 4xx response ends the round-trip; 5xx responses and transport errors
        move on to the next url.
    """

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session or requests.Session()

    def fetch(self, lookup: OffchainLookup, *, timeout_ms: int) -> bytes:
        sender = lookup.sender.lower()
        data = "0x" + lookup.call_data.hex()
        timeout = max(0.001, timeout_ms / 1000.0)
        last_error: Optional[str] = None
        last_status: Optional[int] = None
        timed_out = False

        for url in lookup.urls:
            try:
                if "{data}" in url:
                    target = url.replace("{sender}", sender).replace("{data}", data)
                    resp = self._session.get(target, timeout=timeout)
                else:
                    target = url.replace("{sender}", sender)
                    resp = self._session.post(
                        target, json={"data": data, "sender": sender}, timeout=timeout
                    )
            except requests.exceptions.Timeout:
                logger.debug("Gateway %s timed out", url)
                timed_out = True
                last_error = f"{url}: timeout"
                continue
            except requests.exceptions.RequestException as exc:
                logger.debug("Gateway %s failed: %s", url, exc)
                last_error = f"{url}: {exc}"
                continue

            last_status = resp.status_code
            if 400 <= resp.status_code < 500:
                raise GatewayError(
                    f"gateway {url} rejected request with {resp.status_code}",
                    status=resp.status_code,
                )
            if resp.status_code >= 500:
                last_error = f"{url}: HTTP {resp.status_code}"
                continue
            try:
                body = resp.json()
                return bytes.fromhex(str(body["data"]).removeprefix("0x"))
            except (ValueError, KeyError, TypeError) as exc:
                raise GatewayError(f"gateway {url} returned a malformed body: {exc}") from exc

        if timed_out and last_status is None:
            raise CallTimeout(f"all gateways timed out for {lookup.sender}")
        raise GatewayError(
            f"no gateway answered for {lookup.sender}: {last_error or 'no urls'}",
            status=last_status,
        )

    def close(self) -> None:
        self._session.close()
