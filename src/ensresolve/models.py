"""Value types shared by the resolution pipeline.

Brief:
  Frozen dataclasses for everything that crosses a module boundary: account
  ids, record selections, record results, resolver assignments and the
  records an index can supply. RecordSet is the only mutable container and is
  assembled by the record executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Mapping, Optional, Tuple, TypeVar

from .errors import InvalidSelection
from .reverse_names import normalize_address

T = TypeVar("T")


@dataclass(frozen=True)
class AccountId:
    """Contract account on a specific chain.

    Inputs:
      - chain_id: EVM chain id.
      - address: EVM address; stored checksummed.
    """

    chain_id: int
    address: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "chain_id", int(self.chain_id))
        object.__setattr__(self, "address", normalize_address(self.address))

    def __str__(self) -> str:
        return f"{self.address}@{self.chain_id}"


@dataclass(frozen=True)
class RecordSelection:
    """Brief: Which record kinds a caller wants.

    Inputs:
      - name: Request the name record.
      - addresses: Coin types to resolve addresses for.
      - texts: Text record keys.

    Notes:
      - Duplicates are dropped keeping first-seen order.

    Raises:
      - InvalidSelection: Negative coin types or empty/non-string text keys.
    """

    name: bool = False
    addresses: Tuple[int, ...] = ()
    texts: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        coin_types = []
        for coin_type in self.addresses:
            if isinstance(coin_type, bool) or not isinstance(coin_type, int) or coin_type < 0:
                raise InvalidSelection(f"invalid coin type: {coin_type!r}")
            if coin_type not in coin_types:
                coin_types.append(coin_type)
        keys = []
        for key in self.texts:
            if not isinstance(key, str) or not key:
                raise InvalidSelection(f"invalid text record key: {key!r}")
            if key not in keys:
                keys.append(key)
        object.__setattr__(self, "name", bool(self.name))
        object.__setattr__(self, "addresses", tuple(coin_types))
        object.__setattr__(self, "texts", tuple(keys))

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.addresses or self.texts)


@dataclass(frozen=True)
class RecordResult:
    """One record slot.

    value None and error None means "not set"; a non-None error means the
    record could not be resolved.
    """

    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"value": self.value}
        if self.error is not None:
            out["error"] = self.error
        return out


NOT_SET = RecordResult()


@dataclass
class RecordSet:
    """Brief: Results keyed exactly by a RecordSelection.

    Inputs:
      - name: Name record slot, or None when the name record was not selected.
      - addresses: Coin type -> slot, in selection order.
      - texts: Text key -> slot, in selection order.
    """

    name: Optional[RecordResult] = None
    addresses: Dict[int, RecordResult] = field(default_factory=dict)
    texts: Dict[str, RecordResult] = field(default_factory=dict)

    @classmethod
    def unset(cls, selection: RecordSelection) -> "RecordSet":
        """Return a RecordSet with every selected slot "not set"."""

        return cls(
            name=NOT_SET if selection.name else None,
            addresses={coin_type: NOT_SET for coin_type in selection.addresses},
            texts={key: NOT_SET for key in selection.texts},
        )

    @property
    def partial_failure(self) -> bool:
        slots = list(self.addresses.values()) + list(self.texts.values())
        if self.name is not None:
            slots.append(self.name)
        return any(slot.failed for slot in slots)

    def matches(self, selection: RecordSelection) -> bool:
        return (
            (self.name is not None) == selection.name
            and tuple(self.addresses) == selection.addresses
            and tuple(self.texts) == selection.texts
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.name is not None:
            out["name"] = self.name.to_dict()
        if self.addresses:
            out["addresses"] = {str(k): v.to_dict() for k, v in self.addresses.items()}
        if self.texts:
            out["texts"] = {k: v.to_dict() for k, v in self.texts.items()}
        return out


@dataclass(frozen=True)
class ResolverAssignment:
    """Brief: The active resolver found for a name.

    Inputs:
      - name: Sub-name at which the assignment was found.
      - node: Namehash of that sub-name.
      - resolver: Resolver contract.
      - requires_wildcard: True when the assignment belongs to an ancestor of
        the queried name (ENSIP-10 wildcard resolution needed).
    """

    name: str
    node: bytes
    resolver: AccountId
    requires_wildcard: bool


@dataclass(frozen=True)
class IndexedRecords:
    """Records an index holds for (resolver, node); absent keys mean "not set"."""

    name: Optional[str] = None
    addresses: Mapping[int, str] = field(default_factory=dict)
    texts: Mapping[str, str] = field(default_factory=dict)


@dataclass
class Resolution(Generic[T]):
    """Brief: Engine result wrapper.

    Inputs:
      - value: RecordSet, name or None depending on the operation.
      - trace: ProtocolTrace when tracing was requested, else None.
      - acceleration_requested: Whether the caller allowed acceleration.
    """

    value: T
    trace: Optional[Any] = None
    acceleration_requested: bool = True
