"""Error taxonomy for ENS resolution.

Brief:
  Caller input errors subclass ValueError so transport bindings can map them
  to "bad request". TransientError is the only retry-eligible failure.
  Per-call failures (CallReverted, OffchainLookupRequired, GatewayError,
  CallTimeout) are captured by the record executor into the affected record
  slot and never escape a RecordSet.

  "No resolver" and "no primary name" are ordinary values (None), not
  exceptions.
"""

from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """Base class for all ensresolve errors."""


class InvalidName(ResolutionError, ValueError):
    """Name is syntactically invalid (empty label, malformed encoded label)."""


class InvalidAddress(ResolutionError, ValueError):
    """Address is not a 20-byte hex EVM address."""


class InvalidSelection(ResolutionError, ValueError):
    """RecordSelection contains unusable coin types or text keys."""


class TransientError(ResolutionError):
    """Index or RPC collaborator unreachable or timed out.

    Inputs:
      - message: Human-readable description.
      - source: Short identifier of the failing collaborator ('index', 'rpc',
        'gateway').
    """

    def __init__(self, message: str, *, source: str = "index") -> None:
        super().__init__(message)
        self.source = source


class ResolutionCancelled(ResolutionError):
    """The request's cancel token fired or its deadline passed."""


class CallError(ResolutionError):
    """Base class for failures of a single resolver call."""


class CallReverted(CallError):
    """Brief: A contract call reverted.

    Inputs:
      - message: Revert reason or short description.
      - data: Raw revert data, when the node returned any.
    """

    def __init__(self, message: str, *, data: bytes = b"") -> None:
        super().__init__(message)
        self.data = bytes(data or b"")


class CallTimeout(CallError):
    """A contract or gateway call exceeded its per-call timeout."""


class GatewayError(CallError):
    """An ERC-3668 gateway round-trip failed.

    Inputs:
      - message: Description of the failure.
      - status: HTTP status code of the last attempted url, if any.
    """

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class OffchainLookupRequired(CallError):
    """A call reverted with an ERC-3668 OffchainLookup instruction.

    Inputs:
      - lookup: Parsed OffchainLookup payload (ensresolve.rpc.OffchainLookup).
    """

    def __init__(self, lookup) -> None:
        super().__init__(f"OffchainLookup from {lookup.sender}")
        self.lookup = lookup
