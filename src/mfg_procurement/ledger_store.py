"""Path-addressable record store used as the engine's persistence collaborator.

The engine never touches a database directly; every read and write goes
through the small set of primitives declared by :class:`LedgerStore`:

1. Plain access: ``read``, ``write`` (replace) and ``update`` (merge).
2. Append-only logs: ``append`` returns a generated, sortable identifier.
3. Coordination: ``compare_and_set`` for optimistic status transitions and
   counters, and ``transaction`` so a multi-record mutation either commits
   as a whole or leaves no trace.
4. Observation: ``subscribe`` delivers change callbacks per path.

:class:`MemoryLedgerStore` is the reference implementation. It keeps the
record tree in nested dictionaries and is persisted to the master workbook
by :mod:`mfg_procurement.data_manager`.
"""

from __future__ import annotations

import copy
import itertools
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

from . import log


ChangeCallback = Callable[[str, Any], None]
Unsubscribe = Callable[[], None]


class StoreAccessError(RuntimeError):
    """Raised when the store refuses or fails to serve a request."""


class LedgerStore(Protocol):
    """Structural interface every persistence backend must satisfy."""

    def read(self, path: str) -> Any:
        ...

    def write(self, path: str, value: Any) -> None:
        ...

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        ...

    def append(self, path: str, record: Mapping[str, Any]) -> str:
        ...

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        ...

    def compare_and_set(self, path: str, expected: Any, new: Any) -> bool:
        ...

    def transaction(self) -> Any:
        ...


def split_path(path: str) -> List[str]:
    """Split a ``/``-separated path into its non-empty segments.

    Raises:
        StoreAccessError: If ``path`` does not name at least one segment.
    """

    segments = [segment for segment in str(path).split("/") if segment]
    if not segments:
        raise StoreAccessError(f"Invalid ledger path: {path!r}")
    return segments


def join_path(*segments: object) -> str:
    """Join path segments, ignoring empty ones."""

    return "/".join(str(segment).strip("/") for segment in segments if str(segment).strip("/"))


class MemoryLedgerStore:
    """In-memory :class:`LedgerStore` guarded by a re-entrant lock.

    Nested :meth:`transaction` blocks join the outermost one: a rollback
    always restores the state captured when the outermost block started.
    Subscribers are notified after the outermost block commits, never for
    rolled-back changes.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._root: Dict[str, Any] = copy.deepcopy(data) if data else {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Any]] = None
        self._pending: List[str] = []
        self._subscribers: Dict[int, Tuple[List[str], ChangeCallback]] = {}
        self._tokens = itertools.count(1)
        self._sequence = itertools.count()

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def read(self, path: str) -> Any:
        with self._lock:
            node = self._locate(split_path(path))
            return copy.deepcopy(node)

    def write(self, path: str, value: Any) -> None:
        segments = split_path(path)
        with self._lock:
            if value is None:
                parent = self._locate(segments[:-1]) if len(segments) > 1 else self._root
                if isinstance(parent, dict):
                    parent.pop(segments[-1], None)
            else:
                parent = self._ensure_parent(segments)
                parent[segments[-1]] = copy.deepcopy(value)
            self._changed(path)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        segments = split_path(path)
        with self._lock:
            parent = self._ensure_parent(segments)
            node = parent.get(segments[-1])
            if not isinstance(node, dict):
                node = {}
                parent[segments[-1]] = node
            for key, value in fields.items():
                if value is None:
                    node.pop(key, None)
                else:
                    node[key] = copy.deepcopy(value)
            self._changed(path)

    def append(self, path: str, record: Mapping[str, Any]) -> str:
        segments = split_path(path)
        with self._lock:
            parent = self._ensure_parent([*segments, ""])
            record_id = self.generate_id()
            # A store rebuilt from a snapshot restarts its sequence; never overwrite.
            while record_id in parent:
                record_id = self.generate_id()
            parent[record_id] = copy.deepcopy(dict(record))
            self._changed(join_path(path, record_id))
            return record_id

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        segments = split_path(path)
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (segments, callback)

        def _unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return _unsubscribe

    def compare_and_set(self, path: str, expected: Any, new: Any) -> bool:
        with self._lock:
            current = self._locate(split_path(path))
            if current != expected:
                log.debug("compare_and_set rejected at '%s': expected %r, found %r", path, expected, current)
                return False
            self.write(path, new)
            return True

    @contextmanager
    def transaction(self) -> Iterator["MemoryLedgerStore"]:
        """Group writes so they commit together or not at all."""

        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._snapshot = copy.deepcopy(self._root)
                self._pending = []
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    log.debug("Rolling back ledger transaction")
                    self._root = self._snapshot if self._snapshot is not None else {}
                    self._pending = []
                raise
            finally:
                self._depth -= 1
                if outermost:
                    self._snapshot = None
            if not outermost:
                return
            changed, self._pending = self._pending, []
        self._dispatch(changed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def generate_id(self) -> str:
        """Return a time-ordered identifier unique within this store."""

        millis = int(time.time() * 1000)
        return f"-{millis:012x}{next(self._sequence):06x}"

    def snapshot(self) -> Dict[str, Any]:
        """Return a deep copy of the whole record tree."""

        with self._lock:
            return copy.deepcopy(self._root)

    def _locate(self, segments: List[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    def _ensure_parent(self, segments: List[str]) -> Dict[str, Any]:
        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        return node

    def _changed(self, path: str) -> None:
        if self._depth:
            self._pending.append(path)
        else:
            self._dispatch([path])

    def _dispatch(self, changed: List[str]) -> None:
        if not changed or not self._subscribers:
            return
        with self._lock:
            subscribers = list(self._subscribers.values())
        notified: set[int] = set()
        for index, (segments, callback) in enumerate(subscribers):
            for path in changed:
                changed_segments = split_path(path)
                size = min(len(segments), len(changed_segments))
                if segments[:size] != changed_segments[:size] or index in notified:
                    continue
                notified.add(index)
                subscribed_path = join_path(*segments)
                try:
                    callback(subscribed_path, self.read(subscribed_path))
                except Exception:
                    log.exception("Ledger subscriber for '%s' failed", subscribed_path)


__all__ = [
    "ChangeCallback",
    "Unsubscribe",
    "StoreAccessError",
    "LedgerStore",
    "MemoryLedgerStore",
    "split_path",
    "join_path",
]
