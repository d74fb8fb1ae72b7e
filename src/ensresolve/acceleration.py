"""Acceleration classifier: may the index stand in for a live resolver call?

Brief:
  Resolvers whose behaviour is known are listed in a ResolverPatternTable.
  classify() maps a resolver to an AccelerationDecision using a closed table
  of per-behaviour decision functions (first match wins):

    REVERSE_RECORD      -> FULL, freshness ignored
    OFFCHAIN_DEFERRING  -> FULL on the target chain iff its lag <= threshold
    ONCHAIN_STATIC      -> FULL iff this chain's lag <= threshold
    unknown resolver    -> NONE

  classify() is pure: it reads nothing but its arguments.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from .models import AccountId


class ResolverBehavior(str, enum.Enum):
    REVERSE_RECORD = "reverse_record"
    OFFCHAIN_DEFERRING = "offchain_deferring"
    ONCHAIN_STATIC = "onchain_static"


class Acceleration(str, enum.Enum):
    FULL = "full"
    NONE = "none"


@dataclass(frozen=True)
class KnownResolver:
    """Brief: Pattern-table entry.

    Inputs:
      - chain_id, address: The resolver contract.
      - behavior: ResolverBehavior.
      - target_chain_id: For OFFCHAIN_DEFERRING, the chain whose index holds
        the authoritative records.
    """

    chain_id: int
    address: str
    behavior: ResolverBehavior
    target_chain_id: Optional[int] = None

    @property
    def account(self) -> AccountId:
        return AccountId(self.chain_id, self.address)


@dataclass(frozen=True)
class AccelerationDecision:
    kind: Acceleration
    behavior: Optional[ResolverBehavior] = None
    target_chain_id: Optional[int] = None
    reason: str = ""

    @property
    def accelerated(self) -> bool:
        return self.kind is Acceleration.FULL


NO_ACCELERATION = AccelerationDecision(Acceleration.NONE, reason="acceleration not requested")


class ResolverPatternTable:
    """Brief: Immutable lookup of known resolvers by AccountId.

    Inputs:
      - entries: Iterable of KnownResolver.

    Example:
      >>> table = ResolverPatternTable([])
      >>> len(table)
      0
    """

    def __init__(self, entries: Iterable[KnownResolver] = ()) -> None:
        self._entries: Dict[AccountId, KnownResolver] = {}
        for entry in entries:
            if entry.behavior is ResolverBehavior.OFFCHAIN_DEFERRING and entry.target_chain_id is None:
                raise ValueError(f"deferring resolver {entry.address} needs a target_chain_id")
            self._entries[entry.account] = entry

    def lookup(self, resolver: AccountId) -> Optional[KnownResolver]:
        return self._entries.get(resolver)

    def __len__(self) -> int:
        return len(self._entries)


Freshness = Callable[[int], Optional[float]]


def _is_fresh(lag: Optional[float], threshold_seconds: float) -> bool:
    return lag is not None and lag <= threshold_seconds


def _decide_reverse(entry: KnownResolver, freshness: Freshness, threshold: float) -> AccelerationDecision:
    return AccelerationDecision(
        Acceleration.FULL,
        behavior=entry.behavior,
        reason="reverse records are fully indexed",
    )


def _decide_deferring(entry: KnownResolver, freshness: Freshness, threshold: float) -> AccelerationDecision:
    target = entry.target_chain_id
    lag = freshness(target)
    if not _is_fresh(lag, threshold):
        return AccelerationDecision(
            Acceleration.NONE,
            behavior=entry.behavior,
            target_chain_id=target,
            reason=f"target chain {target} lag {lag} exceeds {threshold}s or unknown",
        )
    return AccelerationDecision(
        Acceleration.FULL,
        behavior=entry.behavior,
        target_chain_id=target,
        reason=f"deferring to chain {target} (lag {lag}s)",
    )


def _decide_static(entry: KnownResolver, freshness: Freshness, threshold: float) -> AccelerationDecision:
    lag = freshness(entry.chain_id)
    if not _is_fresh(lag, threshold):
        return AccelerationDecision(
            Acceleration.NONE,
            behavior=entry.behavior,
            reason=f"chain {entry.chain_id} lag {lag} exceeds {threshold}s or unknown",
        )
    return AccelerationDecision(
        Acceleration.FULL,
        behavior=entry.behavior,
        reason=f"records indexed (lag {lag}s)",
    )


_DECIDERS: Dict[ResolverBehavior, Callable[[KnownResolver, Freshness, float], AccelerationDecision]] = {
    ResolverBehavior.REVERSE_RECORD: _decide_reverse,
    ResolverBehavior.OFFCHAIN_DEFERRING: _decide_deferring,
    ResolverBehavior.ONCHAIN_STATIC: _decide_static,
}


def classify(
    resolver: AccountId,
    table: ResolverPatternTable,
    freshness: Freshness,
    threshold_seconds: float,
) -> AccelerationDecision:
    """Brief: Decide whether resolver's records may come from the index.

    Inputs:
      - resolver: Active resolver.
      - table: Known resolver patterns.
      - freshness: chain_id -> lag seconds, or None if the chain is not indexed.
      - threshold_seconds: Maximum acceptable lag.

    Outputs:
      - AccelerationDecision.
    """

    entry = table.lookup(resolver)
    if entry is None:
        return AccelerationDecision(Acceleration.NONE, reason="unknown resolver")
    return _DECIDERS[entry.behavior](entry, freshness, float(threshold_seconds))
