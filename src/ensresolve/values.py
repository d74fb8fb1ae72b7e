"""Interpretation of raw record values.

Brief:
  Resolver contracts and the index return raw values; callers get
  interpreted ones:

    - name records: empty or not ENSIP-15 normalized -> None
    - text records: empty -> None
    - address records: empty or the zero address -> None; EVM addresses are
      checksummed; other coin types are returned as 0x-prefixed hex.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from eth_utils import is_hex_address, to_checksum_address

from .names import is_normalized_name
from .reverse_names import is_evm_coin_type

logger = logging.getLogger("ensresolve.values")


def interpret_name_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if not is_normalized_name(value):
        logger.debug("Discarding unnormalized name record %r", value)
        return None
    return value


def interpret_text_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value


def interpret_address_value(coin_type: int, value: Union[bytes, str, None]) -> Optional[str]:
    """Brief: Interpret an address record for coin_type.

    Inputs:
      - coin_type: ENSIP-11 coin type.
      - value: Raw bytes (from a contract call) or 0x hex text (from the index).

    Outputs:
      - str | None.
    """

    if value is None:
        return None
    if isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            logger.debug("Discarding non-hex address record %r", value)
            return None
    else:
        raw = bytes(value)

    if not raw or not any(raw):
        return None
    if is_evm_coin_type(coin_type):
        hexed = "0x" + raw.hex()
        if len(raw) != 20 or not is_hex_address(hexed):
            logger.debug("Discarding malformed EVM address record for coin type %s", coin_type)
            return None
        return to_checksum_address(hexed)
    return "0x" + raw.hex()
