"""
Brief: Tests for the acceleration classifier.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

import pytest

from ensresolve.acceleration import (
    Acceleration,
    KnownResolver,
    ResolverBehavior,
    ResolverPatternTable,
    classify,
)
from fakes import BASE_CHAIN, ROOT_CHAIN, account

REVERSE = account("aa")
STATIC = account("bb")
DEFERRING = account("cc")


def _table() -> ResolverPatternTable:
    return ResolverPatternTable(
        [
            KnownResolver(ROOT_CHAIN, REVERSE.address, ResolverBehavior.REVERSE_RECORD),
            KnownResolver(ROOT_CHAIN, STATIC.address, ResolverBehavior.ONCHAIN_STATIC),
            KnownResolver(
                ROOT_CHAIN,
                DEFERRING.address,
                ResolverBehavior.OFFCHAIN_DEFERRING,
                target_chain_id=BASE_CHAIN,
            ),
        ]
    )


def _freshness(lags):
    return lambda chain_id: lags.get(chain_id)


@pytest.mark.parametrize("lag", [None, 0, 10**9])
def test_reverse_record_is_full_regardless_of_freshness(lag) -> None:
    decision = classify(REVERSE, _table(), _freshness({ROOT_CHAIN: lag}), 60)
    assert decision.kind is Acceleration.FULL
    assert decision.behavior is ResolverBehavior.REVERSE_RECORD


@pytest.mark.parametrize(
    "lag, expected",
    [(0, Acceleration.FULL), (60, Acceleration.FULL), (61, Acceleration.NONE), (None, Acceleration.NONE)],
)
def test_static_resolver_uses_threshold(lag, expected) -> None:
    decision = classify(STATIC, _table(), _freshness({ROOT_CHAIN: lag}), 60)
    assert decision.kind is expected


def test_deferring_resolver_checks_target_chain() -> None:
    """Brief: Only the target chain's lag matters for a deferring resolver."""

    fresh_target = classify(
        DEFERRING, _table(), _freshness({ROOT_CHAIN: 10**6, BASE_CHAIN: 5}), 60
    )
    assert fresh_target.kind is Acceleration.FULL
    assert fresh_target.target_chain_id == BASE_CHAIN

    stale_target = classify(DEFERRING, _table(), _freshness({ROOT_CHAIN: 0, BASE_CHAIN: 120}), 60)
    assert stale_target.kind is Acceleration.NONE
    assert stale_target.target_chain_id == BASE_CHAIN


def test_unknown_resolver_is_never_accelerated() -> None:
    decision = classify(account("dd"), _table(), _freshness({ROOT_CHAIN: 0}), 60)
    assert decision.kind is Acceleration.NONE
    assert decision.behavior is None
    assert not decision.accelerated


def test_same_address_on_other_chain_is_unknown() -> None:
    decision = classify(account("bb", BASE_CHAIN), _table(), _freshness({BASE_CHAIN: 0}), 60)
    assert decision.kind is Acceleration.NONE


def test_classify_is_pure() -> None:
    """Brief: Same inputs give the same decision, and only freshness is read."""

    reads = []

    def freshness(chain_id):
        reads.append(chain_id)
        return 1.0

    first = classify(STATIC, _table(), freshness, 60)
    second = classify(STATIC, _table(), freshness, 60)
    assert first == second
    assert reads == [ROOT_CHAIN, ROOT_CHAIN]


def test_deferring_entry_requires_target_chain() -> None:
    with pytest.raises(ValueError):
        ResolverPatternTable(
            [KnownResolver(ROOT_CHAIN, DEFERRING.address, ResolverBehavior.OFFCHAIN_DEFERRING)]
        )


def test_table_lookup() -> None:
    table = _table()
    assert len(table) == 3
    assert table.lookup(STATIC).behavior is ResolverBehavior.ONCHAIN_STATIC
    assert table.lookup(account("dd")) is None
