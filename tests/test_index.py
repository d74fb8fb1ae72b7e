"""
Brief: Tests for the in-memory and SQLite index readers.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

import sqlite3

import pytest

from ensresolve.errors import TransientError
from ensresolve.index import SCHEMA_SQL, InMemoryIndex, SqliteIndexReader, StaticLabelHealer
from ensresolve.models import AccountId, RecordSelection
from ensresolve.names import labelhash, namehash
from ensresolve.reverse_names import DEFAULT_EVM_COIN_TYPE
from fakes import ALICE, BASE_CHAIN, VITALIK, account

RESOLVER = account("11")


def _hex(node: bytes) -> str:
    return "0x" + node.hex()


@pytest.fixture
def sqlite_index(tmp_path):
    path = tmp_path / "index.sqlite"
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    node = _hex(namehash("example.eth"))
    conn.execute(
        "INSERT INTO resolver_assignments VALUES (?, ?, ?, ?)",
        (1, node, 1, RESOLVER.address),
    )
    conn.execute(
        "INSERT INTO resolver_records (id, chain_id, resolver_address, node, name) VALUES (1, 1, ?, ?, ?)",
        (RESOLVER.address, node, "example.eth"),
    )
    conn.execute("INSERT INTO resolver_address_records VALUES (1, 60, ?)", (VITALIK,))
    conn.execute("INSERT INTO resolver_address_records VALUES (1, 0, '0x0014abcd')")
    conn.execute("INSERT INTO resolver_text_records VALUES (1, 'url', 'https://example.com')")
    conn.execute("INSERT INTO resolver_text_records VALUES (1, 'avatar', 'a.png')")
    conn.execute(
        "INSERT INTO reverse_name_records VALUES (?, ?, ?)",
        (ALICE.lower(), DEFAULT_EVM_COIN_TYPE, "alice.eth"),
    )
    conn.execute("INSERT INTO chain_freshness VALUES (1, 4.5)")
    conn.commit()
    conn.close()

    reader = SqliteIndexReader(str(path))
    yield reader
    reader.close()


def test_sqlite_assignment(sqlite_index) -> None:
    assert sqlite_index.get_resolver_assignment(namehash("example.eth"), chain_id=1) == RESOLVER
    assert sqlite_index.get_resolver_assignment(namehash("example.eth"), chain_id=BASE_CHAIN) is None


def test_sqlite_records_follow_selection(sqlite_index) -> None:
    records = sqlite_index.get_resolver_records(
        RESOLVER, namehash("example.eth"), RecordSelection(addresses=(60,), texts=("url", "missing"))
    )
    assert records.name is None
    assert records.addresses == {60: VITALIK}
    assert records.texts == {"url": "https://example.com"}

    with_name = sqlite_index.get_resolver_records(
        RESOLVER, namehash("example.eth"), RecordSelection(name=True)
    )
    assert with_name.name == "example.eth"
    assert sqlite_index.get_resolver_records(RESOLVER, namehash("other.eth"), RecordSelection(name=True)) is None


def test_sqlite_reverse_and_freshness(sqlite_index) -> None:
    assert sqlite_index.get_reverse_name(ALICE, DEFAULT_EVM_COIN_TYPE) == "alice.eth"
    assert sqlite_index.get_reverse_name(ALICE, 60) is None
    assert sqlite_index.get_freshness(1) == 4.5
    assert sqlite_index.get_freshness(BASE_CHAIN) is None


def test_sqlite_missing_database_is_transient(tmp_path) -> None:
    reader = SqliteIndexReader(str(tmp_path / "missing.sqlite"))
    with pytest.raises(TransientError):
        reader.get_freshness(1)


def test_sqlite_missing_tables_is_transient(tmp_path) -> None:
    path = tmp_path / "empty.sqlite"
    sqlite3.connect(str(path)).close()
    reader = SqliteIndexReader(str(path))
    try:
        with pytest.raises(TransientError):
            reader.get_resolver_assignment(namehash("eth"), chain_id=1)
    finally:
        reader.close()


def test_in_memory_index_from_mapping() -> None:
    index = InMemoryIndex.from_mapping(
        {
            "freshness": {"1": 3, 8453: 7},
            "resolvers": [
                {"name": "example.eth", "resolver": RESOLVER.address},
                {"name": "example.eth", "chain_id": BASE_CHAIN, "resolver": RESOLVER.address},
            ],
            "records": [
                {
                    "name": "example.eth",
                    "resolver": RESOLVER.address,
                    "texts": {"url": "u"},
                    "addresses": {"60": VITALIK},
                }
            ],
            "reverse_names": [{"address": VITALIK.lower(), "name": "vitalik.eth"}],
        }
    )

    assert index.get_freshness(1) == 3.0
    assert index.get_freshness(BASE_CHAIN) == 7.0
    assert index.get_resolver_assignment(namehash("example.eth"), chain_id=1) == RESOLVER
    assert index.get_resolver_assignment(namehash("example.eth"), chain_id=BASE_CHAIN) == AccountId(
        BASE_CHAIN, RESOLVER.address
    )
    records = index.get_resolver_records(
        RESOLVER, namehash("example.eth"), RecordSelection(addresses=(60,), texts=("url",))
    )
    assert records.addresses == {60: VITALIK}
    assert records.texts == {"url": "u"}
    assert index.get_reverse_name(VITALIK, 60) == "vitalik.eth"


def test_in_memory_freshness_can_be_cleared() -> None:
    index = InMemoryIndex()
    index.set_freshness(1, 2)
    index.set_freshness(1, None)
    assert index.get_freshness(1) is None


def test_static_label_healer() -> None:
    healer = StaticLabelHealer(["vitalik"])
    assert healer.heal(labelhash("vitalik")) == "vitalik"
    assert healer.heal(labelhash("other")) is None
