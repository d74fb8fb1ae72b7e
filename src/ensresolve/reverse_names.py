"""Coin types (ENSIP-11) and reverse names (ENSIP-19).

Brief:
  Ethereum mainnet addresses use coin type 60. Every other EVM chain uses
  ``0x80000000 | chain_id``; the bare ``0x80000000`` is the "default EVM" coin
  type whose reverse records apply to all EVM chains lacking a chain-specific
  record.

  Reverse names:
    - coin type 60:          ``<addr>.addr.reverse``
    - default EVM coin type: ``<addr>.default.reverse``
    - any other coin type:   ``<addr>.<coin type hex>.reverse``

  where ``<addr>`` is the lowercase hex address without ``0x``.
"""

from __future__ import annotations

from typing import Optional, Tuple

from eth_utils import is_hex_address, to_checksum_address

from .errors import InvalidAddress
from .names import namehash

ETH_COIN_TYPE = 60
DEFAULT_EVM_COIN_TYPE = 0x80000000
ETH_MAINNET_CHAIN_ID = 1

ZERO_ADDRESS = "0x" + "00" * 20

_EVM_COIN_TYPE_MASK = 0x80000000
_MAX_CHAIN_ID = 0x7FFFFFFF


def coin_type_for_chain_id(chain_id: int) -> int:
    """Brief: Map an EVM chain id to its ENSIP-11 coin type.

    Inputs:
      - chain_id: Positive EVM chain id (< 2**31).

    Outputs:
      - int: 60 for mainnet, ``0x80000000 | chain_id`` otherwise.
    """

    if chain_id == ETH_MAINNET_CHAIN_ID:
        return ETH_COIN_TYPE
    if chain_id < 0 or chain_id > _MAX_CHAIN_ID:
        raise ValueError(f"chain id {chain_id} out of ENSIP-11 range")
    return (_EVM_COIN_TYPE_MASK | chain_id) & 0xFFFFFFFF


def chain_id_for_coin_type(coin_type: int) -> Optional[int]:
    """Brief: Inverse of coin_type_for_chain_id.

    Inputs:
      - coin_type: ENSIP-11 coin type.

    Outputs:
      - int | None: Chain id, 0 for the default EVM coin type, or None for
        non-EVM coin types.
    """

    if coin_type == ETH_COIN_TYPE:
        return ETH_MAINNET_CHAIN_ID
    if coin_type & _EVM_COIN_TYPE_MASK and coin_type <= 0xFFFFFFFF:
        return coin_type & _MAX_CHAIN_ID
    return None


def is_evm_coin_type(coin_type: int) -> bool:
    return chain_id_for_coin_type(coin_type) is not None


def normalize_address(address: str) -> str:
    """Brief: Validate a 20-byte hex address and return it checksummed.

    Raises:
      - InvalidAddress: When address is not a 0x-prefixed 20-byte hex string.
    """

    if not isinstance(address, str) or not address.startswith("0x") or not is_hex_address(address):
        raise InvalidAddress(f"invalid EVM address: {address!r}")
    return to_checksum_address(address)


def looks_like_address(value: str) -> bool:
    """True when value is shaped like an EVM address (used by the universal dispatcher)."""

    return isinstance(value, str) and value.startswith("0x") and is_hex_address(value)


def reverse_name(address: str, coin_type: int = ETH_COIN_TYPE) -> str:
    """Brief: Build the ENSIP-19 reverse name for address under coin_type.

    Inputs:
      - address: EVM address (any case).
      - coin_type: ENSIP-11 coin type.

    Outputs:
      - str: Reverse name.

    Example:
      >>> reverse_name("0x" + "ab" * 20, 0x80002105)
      'abababababababababababababababababababab.80002105.reverse'
    """

    label = normalize_address(address)[2:].lower()
    if coin_type == ETH_COIN_TYPE:
        return f"{label}.addr.reverse"
    if coin_type == DEFAULT_EVM_COIN_TYPE:
        return f"{label}.default.reverse"
    return f"{label}.{coin_type:x}.reverse"


def reverse_node(address: str, coin_type: int = ETH_COIN_TYPE) -> bytes:
    return namehash(reverse_name(address, coin_type))


def parse_reverse_name(name: str) -> Optional[Tuple[str, int]]:
    """Brief: Parse an ENSIP-19 reverse name.

    Inputs:
      - name: Candidate reverse name.

    Outputs:
      - (address, coin_type) with a checksummed address, or None when name is
        not a reverse name.
    """

    parts = name.split(".")
    if len(parts) != 3 or parts[2] != "reverse":
        return None
    addr_label, namespace = parts[0], parts[1]
    if len(addr_label) != 40 or addr_label != addr_label.lower():
        return None
    try:
        address = normalize_address("0x" + addr_label)
    except InvalidAddress:
        return None

    if namespace == "addr":
        return address, ETH_COIN_TYPE
    if namespace == "default":
        return address, DEFAULT_EVM_COIN_TYPE
    try:
        coin_type = int(namespace, 16)
    except ValueError:
        return None
    # Only canonical lowercase hex, and only chain-specific EVM coin types.
    if f"{coin_type:x}" != namespace or coin_type in (ETH_COIN_TYPE, DEFAULT_EVM_COIN_TYPE):
        return None
    if not is_evm_coin_type(coin_type):
        return None
    return address, coin_type
