"""Reverse resolution with mandatory forward verification.

Brief:
  resolve_reverse(address, coin_type) returns the verified primary name of
  address, or None:

    1. Derive the ENSIP-19 reverse node for (address, coin_type).
    2. Read the claimed name from the index for (address, coin_type), falling
       back to (address, DEFAULT_EVM_COIN_TYPE).
    3. Forward-resolve the claim for the same coin type and require the
       resulting address to equal address.

  Verification failures of any kind are reported as None so that a spoofed
  claim is indistinguishable from no claim. Cancellation still propagates.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .cancellation import CancelToken
from .errors import ResolutionCancelled, ResolutionError
from .index import IndexReader
from .models import RecordSelection, RecordSet
from .names import is_normalized_name
from .reverse_names import (
    DEFAULT_EVM_COIN_TYPE,
    ETH_COIN_TYPE,
    is_evm_coin_type,
    normalize_address,
    reverse_name,
    reverse_node,
)
from .tracing import NULL_SPAN, TraceSpan

logger = logging.getLogger("ensresolve.reverse")

# (name, selection, span) -> RecordSet
ForwardResolve = Callable[[str, RecordSelection, TraceSpan], RecordSet]


def addresses_match(coin_type: int, expected: str, resolved: Optional[str]) -> bool:
    """EVM coin types compare the 20 address bytes; others compare exact strings."""

    if resolved is None:
        return False
    if is_evm_coin_type(coin_type):
        return bytes.fromhex(expected[2:]) == bytes.fromhex(resolved[2:])
    return expected == resolved


def resolve_reverse(
    index: IndexReader,
    forward: ForwardResolve,
    address: str,
    coin_type: Optional[int] = None,
    *,
    span: TraceSpan = NULL_SPAN,
    cancel: Optional[CancelToken] = None,
) -> Optional[str]:
    """Brief: Resolve and verify the primary name of address.

    Inputs:
      - index: IndexReader holding reverse name records.
      - forward: Forward resolution used for verification.
      - address: EVM address.
      - coin_type: ENSIP-11 coin type (default ETH_COIN_TYPE).
      - span: Parent trace span.
      - cancel: Request cancel token.

    Outputs:
      - str | None: Verified primary name.

    Raises:
      - InvalidAddress: address is malformed.
      - TransientError: The index failed while reading the claim.
      - ResolutionCancelled: cancel fired.
    """

    address = normalize_address(address)
    coin_type = ETH_COIN_TYPE if coin_type is None else int(coin_type)
    cancel = cancel or CancelToken()

    with span.step("reverse-resolve", address=address, coin_type=coin_type) as step:
        node = reverse_node(address, coin_type)
        step.set_attribute("reverse_name", reverse_name(address, coin_type))
        step.set_attribute("node", node)

        with step.step("specific-name-record-exists-check", coin_type=coin_type) as check:
            claimed = index.get_reverse_name(address, coin_type)
            check.set_attribute("name", claimed)

        if claimed is None and coin_type != DEFAULT_EVM_COIN_TYPE:
            cancel.raise_if_cancelled()
            with step.step(
                "default-name-record-exists-check", coin_type=DEFAULT_EVM_COIN_TYPE
            ) as check:
                claimed = index.get_reverse_name(address, DEFAULT_EVM_COIN_TYPE)
                check.set_attribute("name", claimed)

        if not claimed:
            step.set_attribute("result", None)
            return None

        if not is_normalized_name(claimed):
            logger.debug("Reverse claim %r for %s is not normalized", claimed, address)
            step.add_event("claim-not-normalized", name=claimed)
            step.set_attribute("result", None)
            return None

        verified = _verify(forward, claimed, address, coin_type, step, cancel)
        step.set_attribute("result", claimed if verified else None)
        return claimed if verified else None


def _verify(
    forward: ForwardResolve,
    claimed: str,
    address: str,
    coin_type: int,
    span: TraceSpan,
    cancel: CancelToken,
) -> bool:
    selection = RecordSelection(addresses=(coin_type,))
    with span.step("forward-resolve-address-record", name=claimed, coin_type=coin_type) as step:
        cancel.raise_if_cancelled()
        try:
            records = forward(claimed, selection, step)
        except ResolutionCancelled:
            raise
        except ResolutionError as exc:
            logger.warning("Verification of %r for %s failed: %s", claimed, address, exc)
            step.fail(f"{type(exc).__name__}: {exc}")
            return False

    slot = records.addresses[coin_type]
    with span.step("verify-resolved-address-existence") as step:
        step.set_attribute("resolved", slot.value)
        if slot.value is None:
            if slot.error is not None:
                step.fail(slot.error)
            return False

    with span.step("verify-resolved-address-matches-address", expected=address) as step:
        matches = addresses_match(coin_type, address, slot.value)
        step.set_attribute("matches", matches)
        if not matches:
            logger.debug("Reverse claim %r for %s resolves to %s", claimed, address, slot.value)
        return matches
