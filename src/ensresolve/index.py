"""Read-only index collaborators.

Brief:
  The engine reads pre-computed protocol state from an index produced by a
  chain-log indexer. This module defines the IndexReader and LabelHealer
  protocols and ships two readers:

    - InMemoryIndex: thread-safe dict-backed store with set_* helpers and a
      from_mapping() loader for YAML/JSON snapshots.
    - SqliteIndexReader: read-only adapter over a SQLite database laid out as
      in SCHEMA_SQL.

  Readers raise TransientError when the backing store cannot be reached; an
  empty answer is always None, never an exception.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from eth_utils import keccak

from .errors import TransientError
from .models import AccountId, IndexedRecords, RecordSelection
from .names import namehash
from .reverse_names import normalize_address

logger = logging.getLogger("ensresolve.index")


class IndexReader(Protocol):
    """Read-only view over indexed ENS protocol state."""

    def get_resolver_assignment(self, node: bytes, *, chain_id: int) -> Optional[AccountId]:
        ...

    def get_resolver_records(
        self, resolver: AccountId, node: bytes, selection: RecordSelection
    ) -> Optional[IndexedRecords]:
        ...

    def get_reverse_name(self, address: str, coin_type: int) -> Optional[str]:
        ...

    def get_freshness(self, chain_id: int) -> Optional[float]:
        ...


class LabelHealer(Protocol):
    def heal(self, labelhash: bytes) -> Optional[str]:
        ...


class StaticLabelHealer:
    """Brief: LabelHealer backed by a mapping of labelhash -> label.

    Inputs:
      - labels: Iterable of literal labels; their hashes become the keys.
    """

    def __init__(self, labels=()) -> None:
        self._labels: Dict[bytes, str] = {keccak(text=label): label for label in labels}

    def heal(self, labelhash: bytes) -> Optional[str]:
        return self._labels.get(bytes(labelhash))


def _filter_records(records: IndexedRecords, selection: RecordSelection) -> IndexedRecords:
    return IndexedRecords(
        name=records.name if selection.name else None,
        addresses={ct: v for ct, v in records.addresses.items() if ct in selection.addresses},
        texts={k: v for k, v in records.texts.items() if k in selection.texts},
    )


class InMemoryIndex:
    """Brief: Dict-backed IndexReader.

    Inputs:
      - None; populate with the set_* helpers or from_mapping().

    Notes:
      - All reads and writes are guarded by one lock.
      - Chains with no freshness entry are treated as not indexed.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._assignments: Dict[Tuple[int, bytes], AccountId] = {}
        self._records: Dict[Tuple[AccountId, bytes], IndexedRecords] = {}
        self._reverse: Dict[Tuple[str, int], str] = {}
        self._freshness: Dict[int, float] = {}

    # Writers -----------------------------------------------------------------

    def set_resolver(self, name: str, resolver: AccountId, *, chain_id: Optional[int] = None) -> None:
        """Assign resolver to name in the registry of chain_id (default: resolver's chain)."""

        chain = resolver.chain_id if chain_id is None else int(chain_id)
        with self._lock:
            self._assignments[(chain, namehash(name))] = resolver

    def set_records(
        self,
        resolver: AccountId,
        name: str,
        *,
        name_record: Optional[str] = None,
        addresses: Optional[Mapping[int, str]] = None,
        texts: Optional[Mapping[str, str]] = None,
    ) -> None:
        with self._lock:
            self._records[(resolver, namehash(name))] = IndexedRecords(
                name=name_record,
                addresses={int(k): v for k, v in (addresses or {}).items()},
                texts=dict(texts or {}),
            )

    def set_reverse_name(self, address: str, coin_type: int, name: str) -> None:
        with self._lock:
            self._reverse[(normalize_address(address), int(coin_type))] = name

    def set_freshness(self, chain_id: int, lag_seconds: Optional[float]) -> None:
        with self._lock:
            if lag_seconds is None:
                self._freshness.pop(int(chain_id), None)
            else:
                self._freshness[int(chain_id)] = float(lag_seconds)

    # IndexReader -------------------------------------------------------------

    def get_resolver_assignment(self, node: bytes, *, chain_id: int) -> Optional[AccountId]:
        with self._lock:
            return self._assignments.get((int(chain_id), bytes(node)))

    def get_resolver_records(
        self, resolver: AccountId, node: bytes, selection: RecordSelection
    ) -> Optional[IndexedRecords]:
        with self._lock:
            records = self._records.get((resolver, bytes(node)))
        if records is None:
            return None
        return _filter_records(records, selection)

    def get_reverse_name(self, address: str, coin_type: int) -> Optional[str]:
        with self._lock:
            return self._reverse.get((normalize_address(address), int(coin_type)))

    def get_freshness(self, chain_id: int) -> Optional[float]:
        with self._lock:
            return self._freshness.get(int(chain_id))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InMemoryIndex":
        """Brief: Build an index from a snapshot mapping.

        Inputs:
          - data: Mapping with optional keys:
              freshness: {chain_id: lag_seconds}
              resolvers: [{name, chain_id, resolver}]
                (resolver contract on chain_id unless resolver_chain_id given)
              records: [{name, chain_id, resolver, name_record, addresses, texts}]
              reverse_names: [{address, coin_type, name}]

        Outputs:
          - InMemoryIndex.

        Example:
          >>> idx = InMemoryIndex.from_mapping({"freshness": {1: 3}})
          >>> idx.get_freshness(1)
          3.0
        """

        index = cls()
        for chain_id, lag in (data.get("freshness") or {}).items():
            index.set_freshness(int(chain_id), lag)
        for row in data.get("resolvers") or []:
            chain_id = int(row.get("chain_id", 1))
            resolver = AccountId(int(row.get("resolver_chain_id", chain_id)), row["resolver"])
            index.set_resolver(row["name"], resolver, chain_id=chain_id)
        for row in data.get("records") or []:
            resolver = AccountId(int(row.get("chain_id", 1)), row["resolver"])
            index.set_records(
                resolver,
                row["name"],
                name_record=row.get("name_record"),
                addresses=row.get("addresses"),
                texts=row.get("texts"),
            )
        for row in data.get("reverse_names") or []:
            index.set_reverse_name(row["address"], int(row.get("coin_type", 60)), row["name"])
        return index


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS resolver_assignments (
    chain_id INTEGER NOT NULL,
    node TEXT NOT NULL,
    resolver_chain_id INTEGER NOT NULL,
    resolver_address TEXT NOT NULL,
    PRIMARY KEY (chain_id, node)
);
CREATE TABLE IF NOT EXISTS resolver_records (
    id INTEGER PRIMARY KEY,
    chain_id INTEGER NOT NULL,
    resolver_address TEXT NOT NULL,
    node TEXT NOT NULL,
    name TEXT,
    UNIQUE (chain_id, resolver_address, node)
);
CREATE TABLE IF NOT EXISTS resolver_address_records (
    resolver_record_id INTEGER NOT NULL REFERENCES resolver_records(id),
    coin_type INTEGER NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (resolver_record_id, coin_type)
);
CREATE TABLE IF NOT EXISTS resolver_text_records (
    resolver_record_id INTEGER NOT NULL REFERENCES resolver_records(id),
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (resolver_record_id, key)
);
CREATE TABLE IF NOT EXISTS reverse_name_records (
    address TEXT NOT NULL,
    coin_type INTEGER NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (address, coin_type)
);
CREATE TABLE IF NOT EXISTS chain_freshness (
    chain_id INTEGER PRIMARY KEY,
    lag_seconds REAL NOT NULL
);
"""


class SqliteIndexReader:
    """Brief: Read-only IndexReader over a SQLite database.

    Inputs (constructor):
      - db_path: Path to an existing database laid out as in SCHEMA_SQL.

    Notes:
      - Nodes are stored as 0x-prefixed lowercase hex; addresses in
        resolver_assignments and resolver_records are checksummed, addresses
        in reverse_name_records are lowercase.
      - The connection is opened read-only and shared across threads behind
        an RLock.
      - sqlite3.Error from any query is raised as TransientError.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = os.path.abspath(os.path.expanduser(str(db_path)))
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(
                    f"file:{self.db_path}?mode=ro", uri=True, check_same_thread=False
                )
            except sqlite3.Error as exc:
                raise TransientError(f"cannot open index {self.db_path}: {exc}") from exc
        return self._conn

    def _query(self, sql: str, params: Tuple[Any, ...]) -> list:
        with self._lock:
            try:
                return self._connection().execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                logger.warning("Index query failed: %s", exc)
                raise TransientError(f"index query failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def get_resolver_assignment(self, node: bytes, *, chain_id: int) -> Optional[AccountId]:
        rows = self._query(
            "SELECT resolver_chain_id, resolver_address FROM resolver_assignments"
            " WHERE chain_id = ? AND node = ?",
            (int(chain_id), "0x" + bytes(node).hex()),
        )
        if not rows:
            return None
        return AccountId(int(rows[0][0]), rows[0][1])

    def get_resolver_records(
        self, resolver: AccountId, node: bytes, selection: RecordSelection
    ) -> Optional[IndexedRecords]:
        rows = self._query(
            "SELECT id, name FROM resolver_records"
            " WHERE chain_id = ? AND resolver_address = ? AND node = ?",
            (resolver.chain_id, resolver.address, "0x" + bytes(node).hex()),
        )
        if not rows:
            return None
        record_id, name = rows[0]

        addresses: Dict[int, str] = {}
        if selection.addresses:
            marks = ",".join("?" * len(selection.addresses))
            for coin_type, value in self._query(
                "SELECT coin_type, value FROM resolver_address_records"
                f" WHERE resolver_record_id = ? AND coin_type IN ({marks})",
                (record_id, *selection.addresses),
            ):
                addresses[int(coin_type)] = value

        texts: Dict[str, str] = {}
        if selection.texts:
            marks = ",".join("?" * len(selection.texts))
            for key, value in self._query(
                "SELECT key, value FROM resolver_text_records"
                f" WHERE resolver_record_id = ? AND key IN ({marks})",
                (record_id, *selection.texts),
            ):
                texts[key] = value

        return IndexedRecords(
            name=name if selection.name else None, addresses=addresses, texts=texts
        )

    def get_reverse_name(self, address: str, coin_type: int) -> Optional[str]:
        rows = self._query(
            "SELECT name FROM reverse_name_records WHERE address = ? AND coin_type = ?",
            (normalize_address(address).lower(), int(coin_type)),
        )
        return rows[0][0] if rows else None

    def get_freshness(self, chain_id: int) -> Optional[float]:
        rows = self._query(
            "SELECT lag_seconds FROM chain_freshness WHERE chain_id = ?", (int(chain_id),)
        )
        return float(rows[0][0]) if rows else None
