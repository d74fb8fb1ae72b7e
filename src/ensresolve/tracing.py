"""Protocol tracing: a per-request tree of timed steps.

Brief:
  A ProtocolTrace owns a root TraceSpan. Code that performs a protocol step
  opens a child with ``span.step("name", key=value)`` and passes the child to
  anything it calls, so the span tree mirrors the call structure. Children may
  be attached from worker threads.

  NULL_SPAN has the same surface but records nothing.
"""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Any, Dict, Iterator, List, Optional


def _jsonable(value: Any) -> Any:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class TraceSpan:
    """Brief: One timed step.

    Inputs:
      - name: Step name (e.g. 'find-resolver').
      - attributes: Initial attributes.

    Outputs:
      - TraceSpan with started_at (epoch seconds), duration_ms once finished,
        status 'ok' or 'error', error text, events and children.
    """

    recording = True

    def __init__(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        self.name = name
        self.started_at = time.time()
        self._t0 = time.monotonic()
        self.duration_ms: Optional[float] = None
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self.events: List[Dict[str, Any]] = []
        self.children: List["TraceSpan"] = []
        self.status = "ok"
        self.error: Optional[str] = None
        self._lock = threading.Lock()

    def set_attribute(self, key: str, value: Any) -> None:
        with self._lock:
            self.attributes[key] = value

    def add_event(self, name: str, /, **attributes: Any) -> None:
        with self._lock:
            self.events.append(
                {"name": name, "at": time.time(), "attributes": attributes}
            )

    def fail(self, error: str) -> None:
        """Mark the span failed without raising (e.g. an error captured into a slot)."""

        with self._lock:
            self.status = "error"
            self.error = error

    def finish(self) -> None:
        with self._lock:
            if self.duration_ms is None:
                self.duration_ms = (time.monotonic() - self._t0) * 1000.0

    @contextlib.contextmanager
    def step(self, name: str, /, **attributes: Any) -> Iterator["TraceSpan"]:
        """Brief: Open a child span for the duration of the with-block.

        Inputs:
          - name: Child step name.
          - attributes: Initial child attributes.

        Outputs:
          - The child span; exceptions leaving the block mark it failed and
            propagate unchanged.
        """

        child = TraceSpan(name, attributes)
        with self._lock:
            self.children.append(child)
        try:
            yield child
        except BaseException as exc:
            child.fail(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            child.finish()

    def find(self, name: str) -> List["TraceSpan"]:
        """Return all descendant spans (depth-first, self included) named name."""

        found = [self] if self.name == name else []
        for child in list(self.children):
            found.extend(child.find(name))
        return found

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            children = list(self.children)
            out: Dict[str, Any] = {
                "name": self.name,
                "started_at": self.started_at,
                "duration_ms": self.duration_ms,
                "status": self.status,
                "attributes": _jsonable(self.attributes),
            }
            if self.error is not None:
                out["error"] = self.error
            if self.events:
                out["events"] = _jsonable(self.events)
        out["children"] = [c.to_dict() for c in children]
        return out


class _NullSpan(TraceSpan):
    """Span that records nothing; step() yields itself."""

    recording = False

    def __init__(self) -> None:
        super().__init__("null")

    def set_attribute(self, key: str, value: Any) -> None:
        return None

    def add_event(self, name: str, /, **attributes: Any) -> None:
        return None

    def fail(self, error: str) -> None:
        return None

    def finish(self) -> None:
        return None

    @contextlib.contextmanager
    def step(self, name: str, /, **attributes: Any) -> Iterator[TraceSpan]:
        yield self

    def to_dict(self) -> Dict[str, Any]:
        return {}


NULL_SPAN: TraceSpan = _NullSpan()


class ProtocolTrace:
    """Brief: Trace for a single engine request.

    Inputs:
      - operation: Root span name ('forward', 'reverse', 'universal', ...).
      - attributes: Root span attributes.
    """

    def __init__(self, operation: str, **attributes: Any) -> None:
        self.root = TraceSpan(operation, attributes)

    def finish(self) -> None:
        self.root.finish()

    def to_dict(self) -> Dict[str, Any]:
        return self.root.to_dict()
