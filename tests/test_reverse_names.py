"""
Brief: Tests for ENSIP-11 coin types and ENSIP-19 reverse names.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

import pytest

from ensresolve.errors import InvalidAddress
from ensresolve.names import namehash
from ensresolve.reverse_names import (
    DEFAULT_EVM_COIN_TYPE,
    ETH_COIN_TYPE,
    chain_id_for_coin_type,
    coin_type_for_chain_id,
    looks_like_address,
    normalize_address,
    parse_reverse_name,
    reverse_name,
    reverse_node,
)
from fakes import VITALIK

VITALIK_LABEL = "d8da6bf26964af9d7eed9e03e53415d37aa96045"


def test_coin_type_mapping() -> None:
    assert coin_type_for_chain_id(1) == ETH_COIN_TYPE
    assert coin_type_for_chain_id(8453) == 0x80002105
    assert chain_id_for_coin_type(0x80002105) == 8453
    assert chain_id_for_coin_type(ETH_COIN_TYPE) == 1
    assert chain_id_for_coin_type(DEFAULT_EVM_COIN_TYPE) == 0
    # Bitcoin is not an EVM coin type.
    assert chain_id_for_coin_type(0) is None


def test_coin_type_rejects_out_of_range_chain() -> None:
    with pytest.raises(ValueError):
        coin_type_for_chain_id(2**31)


@pytest.mark.parametrize(
    "coin_type, suffix",
    [
        (ETH_COIN_TYPE, "addr.reverse"),
        (DEFAULT_EVM_COIN_TYPE, "default.reverse"),
        (0x80002105, "80002105.reverse"),
    ],
)
def test_reverse_name_round_trip(coin_type: int, suffix: str) -> None:
    """Brief: reverse_name and parse_reverse_name agree for every namespace."""

    name = reverse_name(VITALIK, coin_type)
    assert name == f"{VITALIK_LABEL}.{suffix}"
    assert parse_reverse_name(name) == (VITALIK, coin_type)
    assert reverse_node(VITALIK, coin_type) == namehash(name)


@pytest.mark.parametrize(
    "name",
    [
        "vitalik.eth",
        f"{VITALIK_LABEL.upper()}.addr.reverse",
        f"{VITALIK_LABEL}.3c.reverse",
        f"{VITALIK_LABEL}.0x80002105.reverse",
        "abcd.addr.reverse",
        f"{VITALIK_LABEL}.addr.reverse.eth",
    ],
)
def test_parse_reverse_name_rejects_non_reverse(name: str) -> None:
    assert parse_reverse_name(name) is None


def test_normalize_address() -> None:
    assert normalize_address(VITALIK.lower()) == VITALIK
    assert looks_like_address(VITALIK)
    assert not looks_like_address("vitalik.eth")
    with pytest.raises(InvalidAddress):
        normalize_address("0x1234")
    with pytest.raises(InvalidAddress):
        normalize_address(VITALIK[2:])
