"""ensresolve package"""

from .acceleration import KnownResolver, ResolverBehavior, ResolverPatternTable
from .cancellation import CancelToken
from .engine import ResolutionEngine
from .errors import (
    InvalidAddress,
    InvalidName,
    InvalidSelection,
    ResolutionCancelled,
    ResolutionError,
    TransientError,
)
from .models import AccountId, RecordResult, RecordSelection, RecordSet, Resolution

__all__ = [
    "AccountId",
    "CancelToken",
    "InvalidAddress",
    "InvalidName",
    "InvalidSelection",
    "KnownResolver",
    "RecordResult",
    "RecordSelection",
    "RecordSet",
    "Resolution",
    "ResolutionCancelled",
    "ResolutionEngine",
    "ResolutionError",
    "ResolverBehavior",
    "ResolverPatternTable",
    "TransientError",
]
