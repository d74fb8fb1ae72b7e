"""Record resolution: fetch the selected records from the index or the chain.

Brief:
  RecordExecutor.execute() produces a RecordSet for (name, assignment,
  selection) following the acceleration decision:

    - ONCHAIN_STATIC, accelerated: one index read for all selected kinds.
    - REVERSE_RECORD, accelerated: the name record comes from the indexed
      reverse name for the address and coin type encoded in the reverse name.
    - otherwise: live calls, one per record kind, submitted concurrently to a
      thread pool. Calls are wrapped in ENSIP-10 resolve(bytes,bytes) when the
      resolver supports IExtendedResolver. An ERC-3668 OffchainLookup revert
      gets exactly one gateway round-trip followed by the callback call.

  A failed, reverted or timed-out call only affects its own slot.
  OFFCHAIN_DEFERRING decisions are handled by the engine before the executor
  runs; if one reaches the executor it is resolved live.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from cachetools import TTLCache
from eth_abi.exceptions import DecodingError

from .acceleration import AccelerationDecision, ResolverBehavior
from .cancellation import CancelToken, RunDeadline, wait_all
from .errors import CallError, CallTimeout, OffchainLookupRequired, TransientError
from .index import IndexReader, LabelHealer
from .models import AccountId, RecordResult, RecordSelection, RecordSet, ResolverAssignment
from .names import dns_encode_name, heal_name, namehash
from .reverse_names import parse_reverse_name
from .rpc import (
    EXTENDED_RESOLVER_INTERFACE_ID,
    ContractCaller,
    GatewayClient,
    decode_bool,
    decode_bytes,
    decode_string,
    encode_addr_call,
    encode_callback_call,
    encode_name_call,
    encode_resolve_call,
    encode_supports_interface_call,
    encode_text_call,
)
from .tracing import NULL_SPAN, TraceSpan
from .values import interpret_address_value, interpret_name_value, interpret_text_value

logger = logging.getLogger("ensresolve.executor")

# ("name", None) | ("addr", coin_type) | ("text", key)
SlotKey = Tuple[str, Any]


def _slot_keys(selection: RecordSelection) -> List[SlotKey]:
    keys: List[SlotKey] = []
    if selection.name:
        keys.append(("name", None))
    keys.extend(("addr", coin_type) for coin_type in selection.addresses)
    keys.extend(("text", key) for key in selection.texts)
    return keys


def _assemble(selection: RecordSelection, results: Dict[SlotKey, RecordResult]) -> RecordSet:
    """Place results by selection order, independent of completion order."""

    return RecordSet(
        name=results[("name", None)] if selection.name else None,
        addresses={ct: results[("addr", ct)] for ct in selection.addresses},
        texts={key: results[("text", key)] for key in selection.texts},
    )


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class RecordExecutor:
    """Brief: Resolve the records of one name against its active resolver.

    Inputs (constructor):
      - index: IndexReader for accelerated reads.
      - caller: ContractCaller for live calls.
      - gateway: GatewayClient for ERC-3668 round-trips.
      - pool: ThreadPoolExecutor dedicated to resolver calls.
      - label_healer: Optional LabelHealer used when DNS-encoding names.
      - call_timeout_ms: Per contract call timeout.
      - gateway_timeout_ms: Per gateway round-trip timeout.
      - extended_cache_ttl: Seconds an IExtendedResolver probe result is kept.
      - extended_cache_size: Max resolvers kept in the probe cache.
    """

    def __init__(
        self,
        index: IndexReader,
        caller: ContractCaller,
        gateway: GatewayClient,
        pool: concurrent.futures.ThreadPoolExecutor,
        *,
        label_healer: Optional[LabelHealer] = None,
        call_timeout_ms: int = 3000,
        gateway_timeout_ms: int = 5000,
        extended_cache_ttl: float = 300.0,
        extended_cache_size: int = 4096,
    ) -> None:
        self._index = index
        self._caller = caller
        self._gateway = gateway
        self._pool = pool
        self._label_healer = label_healer
        self.call_timeout_ms = int(call_timeout_ms)
        self.gateway_timeout_ms = int(gateway_timeout_ms)
        self._extended_cache: TTLCache = TTLCache(maxsize=extended_cache_size, ttl=extended_cache_ttl)
        self._extended_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def execute(
        self,
        name: str,
        assignment: ResolverAssignment,
        selection: RecordSelection,
        decision: AccelerationDecision,
        *,
        span: TraceSpan = NULL_SPAN,
        cancel: Optional[CancelToken] = None,
    ) -> RecordSet:
        """Brief: Resolve selection for name.

        Inputs:
          - name: Queried (interpreted) name.
          - assignment: Active resolver from the locator.
          - selection: Record kinds to resolve.
          - decision: Acceleration decision for assignment.resolver.
          - span: Parent trace span.
          - cancel: Request cancel token.

        Outputs:
          - RecordSet with exactly the selection's keys.

        Raises:
          - ResolutionCancelled: cancel fired while calls were outstanding.
          - TransientError: The index failed on an accelerated read or the
            resolver probe could not reach the chain.
        """

        cancel = cancel or CancelToken()
        if selection.is_empty:
            return RecordSet()
        cancel.raise_if_cancelled()

        with span.step(
            "execute-records",
            name=name,
            resolver=str(assignment.resolver),
            accelerated=decision.accelerated,
        ) as step:
            if decision.accelerated and decision.behavior is ResolverBehavior.REVERSE_RECORD:
                parsed = parse_reverse_name(name)
                if parsed is not None:
                    return self._from_reverse_index(parsed, selection, step)
                logger.debug("%r is not a reverse name; resolving live", name)
            elif decision.accelerated and decision.behavior is ResolverBehavior.ONCHAIN_STATIC:
                return self._from_index(name, assignment, selection, step)
            return self._live(name, assignment, selection, step, cancel)

    # ------------------------------------------------------------------
    # Accelerated paths
    # ------------------------------------------------------------------
    def _from_index(
        self,
        name: str,
        assignment: ResolverAssignment,
        selection: RecordSelection,
        span: TraceSpan,
    ) -> RecordSet:
        with span.step("indexed-records", resolver=str(assignment.resolver)) as step:
            if assignment.requires_wildcard:
                # Static resolvers do not implement ENSIP-10, so an ancestor's
                # static resolver is not active for this name.
                step.add_event("no-active-resolver")
                return RecordSet.unset(selection)

            records = self._index.get_resolver_records(
                assignment.resolver, namehash(name), selection
            )
            if records is None:
                step.set_attribute("found", False)
                return RecordSet.unset(selection)

            step.set_attribute("found", True)
            results: Dict[SlotKey, RecordResult] = {}
            if selection.name:
                results[("name", None)] = RecordResult(interpret_name_value(records.name))
            for ct in selection.addresses:
                results[("addr", ct)] = RecordResult(
                    interpret_address_value(ct, records.addresses.get(ct))
                )
            for key in selection.texts:
                results[("text", key)] = RecordResult(interpret_text_value(records.texts.get(key)))
            return _assemble(selection, results)

    def _from_reverse_index(
        self,
        parsed: Tuple[str, int],
        selection: RecordSelection,
        span: TraceSpan,
    ) -> RecordSet:
        address, coin_type = parsed
        with span.step("indexed-reverse-name", address=address, coin_type=coin_type) as step:
            out = RecordSet.unset(selection)
            if selection.name:
                claimed = self._index.get_reverse_name(address, coin_type)
                step.set_attribute("name", claimed)
                out.name = RecordResult(interpret_name_value(claimed))
            return out

    # ------------------------------------------------------------------
    # Live path
    # ------------------------------------------------------------------
    def is_extended_resolver(
        self,
        resolver: AccountId,
        *,
        span: TraceSpan = NULL_SPAN,
        cancel: Optional[CancelToken] = None,
    ) -> bool:
        """Brief: ERC-165 probe for IExtendedResolver (0x9061b923), memoized.

        Inputs:
          - resolver: Resolver contract.

        Outputs:
          - bool: False when the probe reverts, fails or times out.

        Raises:
          - TransientError: The chain is unreachable. This is a precondition
            for every slot of the resolver, so it is raised rather than
            recorded per slot.
        """

        with self._extended_lock:
            cached = self._extended_cache.get(resolver)
        if cached is not None:
            span.add_event("extended-resolver-cached", extended=cached)
            return cached

        cancel = cancel or CancelToken()
        with span.step("supports-extended-resolver", resolver=str(resolver)) as step:
            clock = RunDeadline(self.call_timeout_ms)
            fut = self._pool.submit(self._probe, resolver, clock)
            timed_out = wait_all({fut: clock}, cancel)
            cacheable = True
            if fut in timed_out:
                extended, cacheable = False, False
                step.fail("CallTimeout: supportsInterface probe timed out")
            else:
                try:
                    extended = decode_bool(fut.result())
                except CallTimeout as exc:
                    extended, cacheable = False, False
                    step.fail(_error_text(exc))
                except CallError as exc:
                    extended = False
                    step.set_attribute("probe_error", _error_text(exc))
                except (DecodingError, ValueError):
                    extended = False
            step.set_attribute("extended", extended)

        if cacheable:
            with self._extended_lock:
                self._extended_cache[resolver] = extended
        return extended

    def _probe(self, resolver: AccountId, clock: RunDeadline) -> bytes:
        clock.start()
        return self._caller.call(
            resolver,
            encode_supports_interface_call(EXTENDED_RESOLVER_INTERFACE_ID),
            timeout_ms=self.call_timeout_ms,
        )

    def _heal(self, name: str) -> str:
        if self._label_healer is None:
            return name
        return heal_name(name, self._label_healer.heal)

    def _live(
        self,
        name: str,
        assignment: ResolverAssignment,
        selection: RecordSelection,
        span: TraceSpan,
        cancel: CancelToken,
    ) -> RecordSet:
        resolver = assignment.resolver
        extended = self.is_extended_resolver(resolver, span=span, cancel=cancel)
        if assignment.requires_wildcard and not extended:
            span.add_event("no-active-resolver")
            logger.debug("Resolver %s for %r is not extended; no active resolver", resolver, name)
            return RecordSet.unset(selection)

        node = namehash(name)
        dns_name = dns_encode_name(self._heal(name)) if extended else b""

        budget_ms = 2 * self.call_timeout_ms + self.gateway_timeout_ms
        futures: Dict[SlotKey, concurrent.futures.Future] = {}
        deadlines: Dict[concurrent.futures.Future, RunDeadline] = {}
        for key in _slot_keys(selection):
            data = self._encode_slot(key, node)
            if extended:
                data = encode_resolve_call(dns_name, data)
            clock = RunDeadline(budget_ms)
            fut = self._pool.submit(self._run_slot, key, resolver, data, extended, span, clock)
            futures[key] = fut
            deadlines[fut] = clock

        timed_out = wait_all(deadlines, cancel)

        results: Dict[SlotKey, RecordResult] = {}
        for key, fut in futures.items():
            if fut in timed_out:
                logger.debug("Call %s on %s timed out", key, resolver)
                results[key] = RecordResult(error=f"CallTimeout: no result within {budget_ms} ms")
            else:
                results[key] = fut.result()
        out = _assemble(selection, results)
        span.set_attribute("partial_failure", out.partial_failure)
        return out

    @staticmethod
    def _encode_slot(key: SlotKey, node: bytes) -> bytes:
        kind, arg = key
        if kind == "name":
            return encode_name_call(node)
        if kind == "addr":
            return encode_addr_call(node, arg)
        return encode_text_call(node, arg)

    @staticmethod
    def _interpret(key: SlotKey, raw: bytes) -> Optional[str]:
        kind, arg = key
        if not raw:
            return None
        if kind == "name":
            return interpret_name_value(decode_string(raw))
        if kind == "addr":
            return interpret_address_value(arg, decode_bytes(raw))
        return interpret_text_value(decode_string(raw))

    def _run_slot(
        self,
        key: SlotKey,
        resolver: AccountId,
        data: bytes,
        extended: bool,
        span: TraceSpan,
        clock: Optional[RunDeadline] = None,
    ) -> RecordResult:
        if clock is not None:
            clock.start()
        kind, arg = key
        with span.step("resolver-call", kind=kind, key=arg, extended=extended) as step:
            try:
                raw = self._call_with_offchain_lookup(resolver, data, step)
                if extended and raw:
                    raw = decode_bytes(raw)
                value = self._interpret(key, raw)
            except (CallError, TransientError) as exc:
                logger.debug("Call %s on %s failed: %s", key, resolver, exc)
                step.fail(_error_text(exc))
                return RecordResult(error=_error_text(exc))
            except (DecodingError, ValueError) as exc:
                logger.debug("Malformed return data for %s on %s: %s", key, resolver, exc)
                step.fail(_error_text(exc))
                return RecordResult(error=f"MalformedResult: {exc}")
            step.set_attribute("value", value)
            return RecordResult(value=value)

    def _call_with_offchain_lookup(self, resolver: AccountId, data: bytes, span: TraceSpan) -> bytes:
        """Brief: eth_call with at most one ERC-3668 gateway hop.

        Raises:
          - CallError subclasses for reverts, gateway failures, sender
            mismatches and a second OffchainLookup from the callback.
        """

        try:
            return self._caller.call(resolver, data, timeout_ms=self.call_timeout_ms)
        except OffchainLookupRequired as exc:
            lookup = exc.lookup

        if lookup.sender.lower() != resolver.address.lower():
            raise CallError(f"OffchainLookup sender {lookup.sender} is not resolver {resolver.address}")

        with span.step("offchain-lookup", sender=lookup.sender, urls=list(lookup.urls)):
            response = self._gateway.fetch(lookup, timeout_ms=self.gateway_timeout_ms)

        callback = encode_callback_call(lookup.callback_function, response, lookup.extra_data)
        with span.step("offchain-callback", callback="0x" + lookup.callback_function.hex()):
            try:
                return self._caller.call(resolver, callback, timeout_ms=self.call_timeout_ms)
            except OffchainLookupRequired as exc:
                raise CallError("callback raised a second OffchainLookup") from exc
