"""ENS resolution engine.

Brief:
  ResolutionEngine wires the locator, acceleration classifier, record
  executor and reverse verifier together and exposes the public operations:

    - resolve_forward(name, selection)
    - resolve_reverse(address, coin_type)
    - resolve_universal(address_or_name, selection)
    - resolve_primary_names(address, chain_ids)

  Each operation returns a Resolution carrying the value and, when requested,
  the request's ProtocolTrace.

  Forward resolution always starts at the root chain's registry. A resolver
  classified as OFFCHAIN_DEFERRING with a fresh target chain redirects the
  resolution to that chain's registry, at most once per forward resolution.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

import yaml

from .acceleration import (
    NO_ACCELERATION,
    Acceleration,
    AccelerationDecision,
    ResolverBehavior,
    ResolverPatternTable,
    classify,
)
from .cancellation import CancelToken, wait_all
from .config.settings import EngineSettings
from .errors import InvalidSelection
from .executor import RecordExecutor
from .index import IndexReader, InMemoryIndex, LabelHealer, SqliteIndexReader, StaticLabelHealer
from .locator import find_resolver
from .models import AccountId, RecordSelection, RecordSet, Resolution
from .names import validate_name
from .reverse import resolve_reverse as _resolve_reverse
from .reverse_names import (
    ETH_COIN_TYPE,
    coin_type_for_chain_id,
    looks_like_address,
    normalize_address,
)
from .rpc import ContractCaller, GatewayClient, HttpGatewayClient, Web3ContractCaller
from .tracing import NULL_SPAN, ProtocolTrace, TraceSpan

logger = logging.getLogger("ensresolve.engine")

T = TypeVar("T")


class _Request:
    """Per-request state: cancel token, acceleration flag, memoized freshness."""

    def __init__(self, index: IndexReader, cancel: Optional[CancelToken], accelerate: bool) -> None:
        self.cancel = cancel or CancelToken()
        self.accelerate = accelerate
        self._index = index
        self._freshness: Dict[int, Optional[float]] = {}
        self._lock = threading.Lock()

    def freshness(self, chain_id: int) -> Optional[float]:
        with self._lock:
            if chain_id in self._freshness:
                return self._freshness[chain_id]
        lag = self._index.get_freshness(chain_id)
        with self._lock:
            self._freshness[chain_id] = lag
        return lag


class ResolutionEngine:
    """Brief: Resolve ENS names and addresses.

    Inputs (constructor):
      - index: IndexReader.
      - caller: ContractCaller for live resolver calls.
      - gateway: GatewayClient for ERC-3668 lookups.
      - settings: EngineSettings (defaults when omitted).
      - table: Resolver pattern table (defaults to settings.known_resolvers).
      - label_healer: Optional LabelHealer used for ENSIP-10 DNS encoding.

    Notes:
      - The engine owns two thread pools: one for resolver calls and one for
        per-chain primary-name lookups. Use close() or a with-block to shut
        them down.
      - The engine never writes to the index.
    """

    def __init__(
        self,
        index: IndexReader,
        caller: ContractCaller,
        gateway: GatewayClient,
        *,
        settings: Optional[EngineSettings] = None,
        table: Optional[ResolverPatternTable] = None,
        label_healer: Optional[LabelHealer] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.index = index
        self.table = table if table is not None else self.settings.pattern_table()
        self._call_pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.settings.workers.calls, thread_name_prefix="ensresolve-call"
        )
        self._chain_pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.settings.workers.chains, thread_name_prefix="ensresolve-chain"
        )
        self.executor = RecordExecutor(
            index,
            caller,
            gateway,
            self._call_pool,
            label_healer=label_healer,
            call_timeout_ms=self.settings.timeouts.call_ms,
            gateway_timeout_ms=self.settings.timeouts.gateway_ms,
            extended_cache_ttl=self.settings.extended_resolver_cache.ttl_seconds,
            extended_cache_size=self.settings.extended_resolver_cache.max_entries,
        )

    def close(self) -> None:
        self._call_pool.shutdown(wait=False, cancel_futures=True)
        self._chain_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "ResolutionEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------
    def _run(
        self,
        operation: str,
        body: Callable[[TraceSpan, _Request], T],
        *,
        accelerate: bool,
        cancel: Optional[CancelToken],
        trace: bool,
        **attributes,
    ) -> Resolution[T]:
        req = _Request(self.index, cancel, accelerate and self.settings.acceleration.enabled)
        protocol_trace = ProtocolTrace(operation, accelerate=accelerate, **attributes) if trace else None
        span = protocol_trace.root if protocol_trace else NULL_SPAN
        try:
            value = body(span, req)
        except BaseException as exc:
            span.fail(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            if protocol_trace is not None:
                protocol_trace.finish()
        return Resolution(value=value, trace=protocol_trace, acceleration_requested=accelerate)

    def _classify(self, resolver: AccountId, span: TraceSpan, req: _Request) -> AccelerationDecision:
        if not req.accelerate:
            return NO_ACCELERATION
        with span.step("acceleration-decision", resolver=str(resolver)) as step:
            decision = classify(
                resolver,
                self.table,
                req.freshness,
                self.settings.acceleration.max_lag_seconds,
            )
            step.set_attribute("kind", decision.kind.value)
            step.set_attribute("behavior", decision.behavior.value if decision.behavior else None)
            step.set_attribute("reason", decision.reason)
            return decision

    def _forward(
        self,
        name: str,
        selection: RecordSelection,
        span: TraceSpan,
        req: _Request,
        *,
        chain_id: Optional[int] = None,
        deferred: bool = False,
    ) -> RecordSet:
        validate_name(name)
        if selection.is_empty:
            return RecordSet()
        req.cancel.raise_if_cancelled()
        chain_id = self.settings.root_chain_id if chain_id is None else chain_id

        with span.step("forward-resolve", name=name, chain_id=chain_id) as step:
            assignment = find_resolver(self.index, name, chain_id=chain_id, span=step)
            if assignment is None:
                step.set_attribute("result", "no-resolver")
                return RecordSet.unset(selection)

            decision = self._classify(assignment.resolver, step, req)
            if decision.accelerated and decision.behavior is ResolverBehavior.OFFCHAIN_DEFERRING:
                if not deferred:
                    logger.debug(
                        "Resolver %s defers %r to chain %s", assignment.resolver, name, decision.target_chain_id
                    )
                    with step.step("deferred-resolution", target_chain_id=decision.target_chain_id) as d:
                        return self._forward(
                            name,
                            selection,
                            d,
                            req,
                            chain_id=decision.target_chain_id,
                            deferred=True,
                        )
                decision = AccelerationDecision(
                    Acceleration.NONE,
                    behavior=decision.behavior,
                    reason="deferral already followed once",
                )
                step.add_event("deferral-depth-exceeded")

            return self.executor.execute(
                name, assignment, selection, decision, span=step, cancel=req.cancel
            )

    def _reverse(
        self, address: str, coin_type: Optional[int], span: TraceSpan, req: _Request
    ) -> Optional[str]:
        if coin_type is not None and (isinstance(coin_type, bool) or int(coin_type) < 0):
            raise InvalidSelection(f"invalid coin type: {coin_type!r}")
        return _resolve_reverse(
            self.index,
            lambda name, selection, s: self._forward(name, selection, s, req),
            address,
            coin_type,
            span=span,
            cancel=req.cancel,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def resolve_forward(
        self,
        name: str,
        selection: RecordSelection,
        *,
        accelerate: bool = True,
        cancel: Optional[CancelToken] = None,
        trace: bool = True,
    ) -> Resolution[RecordSet]:
        """Brief: Resolve selection for name.

        Inputs:
          - name: Interpreted name (normalized labels or encoded labelhashes).
          - selection: Record kinds to resolve.
          - accelerate: Allow answers from the index.
          - cancel: Optional cancel token / deadline.
          - trace: Record a ProtocolTrace.

        Outputs:
          - Resolution[RecordSet]: slots "not set" when no resolver is active.

        Raises:
          - InvalidName, TransientError, ResolutionCancelled.
        """

        return self._run(
            "forward",
            lambda span, req: self._forward(name, selection, span, req),
            accelerate=accelerate,
            cancel=cancel,
            trace=trace,
            name=name,
        )

    def resolve_reverse(
        self,
        address: str,
        coin_type: Optional[int] = None,
        *,
        accelerate: bool = True,
        cancel: Optional[CancelToken] = None,
        trace: bool = True,
    ) -> Resolution[Optional[str]]:
        """Brief: Verified primary name of address for coin_type (default 60), or None."""

        return self._run(
            "reverse",
            lambda span, req: self._reverse(address, coin_type, span, req),
            accelerate=accelerate,
            cancel=cancel,
            trace=trace,
            address=address,
            coin_type=ETH_COIN_TYPE if coin_type is None else coin_type,
        )

    def resolve_universal(
        self,
        address_or_name: str,
        selection: RecordSelection,
        *,
        accelerate: bool = True,
        cancel: Optional[CancelToken] = None,
        trace: bool = True,
    ) -> Resolution[RecordSet]:
        """Brief: Resolve records for a name, or for an address's primary name.

        Inputs:
          - address_or_name: 0x-prefixed EVM address or a name.
          - selection: Record kinds to resolve.

        Outputs:
          - Resolution[RecordSet]: for an address without a verified primary
            name, every selected slot is "not set".
        """

        def body(span: TraceSpan, req: _Request) -> RecordSet:
            if selection.is_empty:
                return RecordSet()
            if looks_like_address(address_or_name):
                primary = self._reverse(address_or_name, None, span, req)
                if primary is None:
                    span.set_attribute("primary_name", None)
                    return RecordSet.unset(selection)
                span.set_attribute("primary_name", primary)
                return self._forward(primary, selection, span, req)
            return self._forward(address_or_name, selection, span, req)

        return self._run(
            "universal",
            body,
            accelerate=accelerate,
            cancel=cancel,
            trace=trace,
            input=address_or_name,
        )

    def resolve_primary_names(
        self,
        address: str,
        chain_ids: Optional[Sequence[int]] = None,
        *,
        accelerate: bool = True,
        cancel: Optional[CancelToken] = None,
        trace: bool = True,
    ) -> Resolution[Dict[int, Optional[str]]]:
        """Brief: Verified primary names of address on several chains.

        Inputs:
          - address: EVM address.
          - chain_ids: Chains to query (default: engine.primary_name_chain_ids).

        Outputs:
          - Resolution[dict]: chain_id -> name or None, in chain_ids order.

        Notes:
          - Each chain's reverse resolution runs concurrently with the coin
            type coin_type_for_chain_id(chain_id).
        """

        address = normalize_address(address)
        chains: List[int] = list(
            self.settings.primary_name_chain_ids if chain_ids is None else chain_ids
        )

        def body(span: TraceSpan, req: _Request) -> Dict[int, Optional[str]]:
            coin_types = {chain_id: coin_type_for_chain_id(chain_id) for chain_id in chains}
            futures = {
                chain_id: self._chain_pool.submit(
                    self._reverse, address, coin_types[chain_id], span, req
                )
                for chain_id in chains
            }
            wait_all({fut: None for fut in futures.values()}, req.cancel)
            return {chain_id: futures[chain_id].result() for chain_id in chains}

        return self._run(
            "primary-names",
            body,
            accelerate=accelerate,
            cancel=cancel,
            trace=trace,
            address=address,
            chain_ids=chains,
        )

    @classmethod
    def from_settings(cls, settings) -> "ResolutionEngine":
        """Brief: Build an engine with the adapters named in Settings.

        Inputs:
          - settings: ensresolve.config.settings.Settings.

        Outputs:
          - ResolutionEngine using Web3ContractCaller, HttpGatewayClient and
            the configured index and label healer.
        """

        if settings.index.type == "sqlite":
            index: IndexReader = SqliteIndexReader(settings.index.path)
        elif settings.index.snapshot:
            index = InMemoryIndex.from_mapping(_load_snapshot(settings.index.snapshot))
        else:
            index = InMemoryIndex()

        timeout = max((c.request_timeout_seconds for c in settings.chains), default=10.0)
        caller = Web3ContractCaller(settings.rpc_urls(), request_timeout=timeout)
        healer = StaticLabelHealer(settings.label_healer.labels) if settings.label_healer.labels else None
        return cls(
            index,
            caller,
            HttpGatewayClient(),
            settings=settings.engine,
            label_healer=healer,
        )


def _load_snapshot(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"index snapshot {path} must contain a mapping")
    return data
