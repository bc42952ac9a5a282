"""In-memory OPC-style server used by tests, diagnostics and the CLI demo mode.

The simulator implements the full `ProtocolClient` surface without any
network I/O. Tests drive it directly: inject per-item failures, drop the
connection in the middle of an operation, push value changes or announce a
server shutdown, then inspect `calls` to count transport operations.
"""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tagsync.models.subscription_models import ItemDescriptor, ItemResult, ItemValueResult
from tagsync.protocols.base_protocol import (
    ConnectionLostError,
    DataCallback,
    ProtocolClient,
    ProtocolError,
    ShutdownCallback,
)

log = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "TagSync.Simulator"


@dataclass
class _SimGroup:
    name: str
    rate_ms: int
    active: bool
    deadband: float
    items: Dict[str, ItemDescriptor] = field(default_factory=dict)
    callback: Optional[DataCallback] = None


class SimulatedProtocolClient(ProtocolClient):
    """Thread-safe in-memory transport.

    `servers` maps host -> available server names. When `tags` is given the
    server only knows those tags and rejects others with
    E_UNKNOWN_ITEM_NAME; otherwise any tag name is accepted.
    """

    def __init__(self, servers: Optional[Dict[str, List[str]]] = None, tags: Optional[Dict[str, Any]] = None) -> None:
        self.servers: Dict[str, List[str]] = servers if servers is not None else {"127.0.0.1": [DEFAULT_SERVER_NAME]}
        self._strict = tags is not None
        self._tags: Dict[str, Any] = dict(tags or {})
        self._lock = threading.RLock()
        self._handles = itertools.count(1)
        self._groups: Dict[int, _SimGroup] = {}
        self._connected_to: Optional[Tuple[str, str]] = None
        self._connection_id = 0
        self._on_shutdown: Optional[ShutdownCallback] = None

        # Failure injection: item name -> protocol result identifier
        self.add_failures: Dict[str, str] = {}
        self.remove_failures: Dict[str, str] = {}
        self.read_failures: Dict[str, str] = {}
        self.write_failures: Dict[str, str] = {}
        self.connect_error: Optional[Exception] = None
        self.discover_error: Optional[Exception] = None
        # Name of the next operation that should find the connection gone
        self.lose_connection_on: Optional[str] = None
        # Operation name -> exception raised by the next call of that operation
        self.fail_next: Dict[str, Exception] = {}

        self.calls: List[Tuple[str, Any]] = []

    # -- inspection -------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._connected_to is not None

    def call_count(self, op: Optional[str] = None) -> int:
        if op is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == op)

    def reset_calls(self) -> None:
        self.calls.clear()

    def group_rates(self) -> List[int]:
        with self._lock:
            return [g.rate_ms for g in self._groups.values()]

    def group_items(self, rate_ms: int) -> List[str]:
        with self._lock:
            for g in self._groups.values():
                if g.rate_ms == rate_ms:
                    return list(g.items)
        return []

    def value_of(self, name: str) -> Any:
        with self._lock:
            return self._tags.get(name)

    def set_value(self, name: str, value: Any) -> None:
        """Change a tag value without notifying subscribers."""
        with self._lock:
            self._tags[name] = value

    # -- ProtocolClient ---------------------------------------------
    def discover(self, host: str) -> List[str]:
        self.calls.append(("discover", host))
        if self.discover_error is not None:
            raise self.discover_error
        return list(self.servers.get(host, []))

    def connect(self, server_name: str, host: str, on_shutdown: ShutdownCallback) -> None:
        self.calls.append(("connect", (server_name, host)))
        if self.connect_error is not None:
            raise self.connect_error
        if server_name not in self.servers.get(host, []):
            raise ProtocolError(f"server {server_name} not available on {host}")
        with self._lock:
            self._connected_to = (server_name, host)
            self._connection_id += 1
            self._on_shutdown = on_shutdown
            self._groups.clear()
        log.debug("simulator connected: %s@%s", server_name, host)

    def disconnect(self) -> None:
        self.calls.append(("disconnect", None))
        with self._lock:
            self._connected_to = None
            self._on_shutdown = None
            self._groups.clear()

    def create_group(self, name: str, rate_ms: int, active: bool = True, deadband: float = 0.0) -> Any:
        self.calls.append(("create_group", (name, rate_ms)))
        with self._lock:
            self._check("create_group")
            handle = next(self._handles)
            self._groups[handle] = _SimGroup(name=name, rate_ms=rate_ms, active=active, deadband=deadband)
            return handle

    def cancel_group(self, handle: Any) -> None:
        self.calls.append(("cancel_group", handle))
        with self._lock:
            self._check("cancel_group")
            if self._groups.pop(handle, None) is None:
                raise ProtocolError(f"unknown group handle {handle!r}")

    def add_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        self.calls.append(("add_items", (handle, [i.name for i in items])))
        results = []
        with self._lock:
            self._check("add_items")
            group = self._group(handle)
            for item in items:
                if item.name in self.add_failures:
                    results.append(ItemResult(item.name, self.add_failures[item.name]))
                elif self._strict and item.name not in self._tags:
                    results.append(ItemResult(item.name, "E_UNKNOWN_ITEM_NAME"))
                else:
                    group.items[item.name] = item
                    self._tags.setdefault(item.name, None)
                    results.append(ItemResult(item.name, "S_OK"))
        return results

    def remove_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        self.calls.append(("remove_items", (handle, [i.name for i in items])))
        results = []
        with self._lock:
            self._check("remove_items")
            group = self._group(handle)
            for item in items:
                if item.name in self.remove_failures:
                    results.append(ItemResult(item.name, self.remove_failures[item.name]))
                elif group.items.pop(item.name, None) is None:
                    results.append(ItemResult(item.name, "E_INVALIDHANDLE"))
                else:
                    results.append(ItemResult(item.name, "S_OK"))
        return results

    def read(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemValueResult]:
        self.calls.append(("read", (handle, [i.name for i in items])))
        results = []
        with self._lock:
            self._check("read")
            group = self._group(handle)
            for item in items:
                if item.name in self.read_failures:
                    results.append(ItemValueResult(item.name, None, self.read_failures[item.name]))
                elif item.name not in group.items:
                    results.append(ItemValueResult(item.name, None, "E_INVALIDHANDLE"))
                else:
                    results.append(ItemValueResult(item.name, self._tags.get(item.name), "S_OK"))
        return results

    def write(self, handle: Any, item_values: Sequence[Tuple[ItemDescriptor, Any]]) -> List[ItemResult]:
        self.calls.append(("write", (handle, [(i.name, v) for i, v in item_values])))
        results = []
        with self._lock:
            self._check("write")
            group = self._group(handle)
            for item, value in item_values:
                if item.name in self.write_failures:
                    results.append(ItemResult(item.name, self.write_failures[item.name]))
                elif item.name not in group.items:
                    results.append(ItemResult(item.name, "E_INVALIDHANDLE"))
                else:
                    self._tags[item.name] = value
                    results.append(ItemResult(item.name, "S_OK"))
        return results

    def set_data_callback(self, handle: Any, callback: DataCallback) -> None:
        self.calls.append(("set_data_callback", handle))
        with self._lock:
            self._check("set_data_callback")
            self._group(handle).callback = callback

    def clear_data_callback(self, handle: Any) -> None:
        self.calls.append(("clear_data_callback", handle))
        with self._lock:
            self._check("clear_data_callback")
            self._group(handle).callback = None

    # -- server-side actions ----------------------------------------
    def push(self, name: str, value: Any, result_id: str = "S_OK") -> int:
        """Change a tag value and notify every group monitoring it.

        Returns the number of callbacks invoked.
        """
        with self._lock:
            self._tags[name] = value
            targets = [
                (handle, g.callback) for handle, g in self._groups.items()
                if name in g.items and g.callback is not None and g.active
            ]
        for handle, callback in targets:
            callback(handle, [ItemValueResult(name, value, result_id)])
        return len(targets)

    def shutdown(self, reason: str = "server shutting down") -> None:
        """Announce a server shutdown, then drop the connection."""
        with self._lock:
            callback = self._on_shutdown
            connection_id = self._connection_id
        if callback is not None:
            callback(reason)
        with self._lock:
            if self._connection_id != connection_id:
                # Client already reconnected from inside the callback
                return
            self._connected_to = None
            self._on_shutdown = None
            self._groups.clear()

    # -- helpers ----------------------------------------------------
    def _check(self, op: str) -> None:
        error = self.fail_next.pop(op, None)
        if error is not None:
            raise error
        if self.lose_connection_on == op:
            self.lose_connection_on = None
            self._connected_to = None
            self._groups.clear()
        if self._connected_to is None:
            raise ConnectionLostError(f"{op}: not connected")

    def _group(self, handle: Any) -> _SimGroup:
        try:
            return self._groups[handle]
        except KeyError:
            raise ProtocolError(f"unknown group handle {handle!r}") from None
