"""
Brief: Tests for ensresolve.locator.find_resolver.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

import pytest

from ensresolve.errors import InvalidName, TransientError
from ensresolve.index import InMemoryIndex
from ensresolve.locator import find_resolver
from ensresolve.names import namehash
from ensresolve.reverse_names import ZERO_ADDRESS
from ensresolve.models import AccountId
from ensresolve.tracing import ProtocolTrace
from fakes import BASE_CHAIN, ROOT_CHAIN, FailingIndex, account


def test_exact_match_needs_no_wildcard() -> None:
    index = InMemoryIndex()
    resolver = account("11")
    index.set_resolver("example.eth", resolver)

    found = find_resolver(index, "example.eth", chain_id=ROOT_CHAIN)

    assert found is not None
    assert found.resolver == resolver
    assert found.name == "example.eth"
    assert found.node == namehash("example.eth")
    assert found.requires_wildcard is False


def test_ancestor_assignment_requires_wildcard() -> None:
    """Brief: sub.example.eth falls back to the example.eth resolver."""

    index = InMemoryIndex()
    resolver = account("11")
    index.set_resolver("example.eth", resolver)

    found = find_resolver(index, "sub.example.eth", chain_id=ROOT_CHAIN)

    assert found is not None
    assert found.resolver == resolver
    assert found.name == "example.eth"
    assert found.node == namehash("example.eth")
    assert found.requires_wildcard is True


def test_nearest_assignment_wins() -> None:
    index = InMemoryIndex()
    index.set_resolver("eth", account("01"))
    index.set_resolver("example.eth", account("02"))

    found = find_resolver(index, "a.b.example.eth", chain_id=ROOT_CHAIN)
    assert found.resolver == account("02")


def test_no_resolver_returns_none() -> None:
    assert find_resolver(InMemoryIndex(), "nobody.eth", chain_id=ROOT_CHAIN) is None


def test_root_resolver_is_found_for_any_name() -> None:
    index = InMemoryIndex()
    index.set_resolver("", account("ff"))
    found = find_resolver(index, "anything.eth", chain_id=ROOT_CHAIN)
    assert found.name == ""
    assert found.requires_wildcard is True


def test_index_failure_is_not_not_found() -> None:
    """Brief: TransientError from the index propagates."""

    with pytest.raises(TransientError):
        find_resolver(FailingIndex(fail_assignments=True), "example.eth", chain_id=ROOT_CHAIN)


def test_zero_address_assignment_is_skipped() -> None:
    index = InMemoryIndex()
    index.set_resolver("eth", account("22"))
    index.set_resolver("example.eth", AccountId(ROOT_CHAIN, ZERO_ADDRESS))

    found = find_resolver(index, "example.eth", chain_id=ROOT_CHAIN)
    assert found.resolver == account("22")
    assert found.requires_wildcard is True


def test_assignments_are_per_chain() -> None:
    index = InMemoryIndex()
    index.set_resolver("example.eth", account("33", BASE_CHAIN))

    assert find_resolver(index, "example.eth", chain_id=ROOT_CHAIN) is None
    found = find_resolver(index, "example.eth", chain_id=BASE_CHAIN)
    assert found.resolver == account("33", BASE_CHAIN)


def test_invalid_name_raises() -> None:
    with pytest.raises(InvalidName):
        find_resolver(InMemoryIndex(), "a..eth", chain_id=ROOT_CHAIN)


def test_trace_records_find_resolver_step() -> None:
    index = InMemoryIndex()
    index.set_resolver("example.eth", account("11"))
    trace = ProtocolTrace("forward")

    find_resolver(index, "sub.example.eth", chain_id=ROOT_CHAIN, span=trace.root)

    (step,) = trace.root.find("find-resolver")
    assert step.attributes["found_at"] == "example.eth"
    assert step.attributes["requires_wildcard"] is True
    assert step.duration_ms is not None
