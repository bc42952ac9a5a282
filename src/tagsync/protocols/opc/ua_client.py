"""OPC UA transport for the session layer, built on python-opcua.

Subscription groups map onto UA subscriptions (publishing interval = group
poll rate) and items onto monitored nodes addressed by their NodeId string,
e.g. "ns=2;s=Device1.Temperature". UA status codes are translated to the
protocol result identifiers understood by `ResultCode.decode`.

python-opcua has no server shutdown callback; a subscription status change
(the server reporting BadShutdown / BadTimeout for a subscription) is
forwarded as the shutdown notice instead.

Notifications arrive on the library socket thread, which must never block
on the session lock; they are handed to a single dispatcher thread.
"""
from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tagsync.models.subscription_models import ItemDescriptor, ItemResult, ItemValueResult
from tagsync.protocols.base_protocol import (
    ConnectionLostError,
    DataCallback,
    ProtocolClient,
    ShutdownCallback,
)

log = logging.getLogger(__name__)

try:  # optional dependency
    from opcua import Client, ua
except Exception:  # pragma: no cover - optional dependency
    Client = None  # type: ignore
    ua = None  # type: ignore

DEFAULT_PORT = 4840

UA_STATUS_MAP = {
    "Good": "S_OK",
    "GoodClamped": "S_CLAMP",
    "BadNodeIdUnknown": "E_UNKNOWN_ITEM_NAME",
    "BadNodeIdInvalid": "E_INVALIDITEMID",
    "BadTypeMismatch": "E_BADTYPE",
    "BadNotWritable": "E_READONLY",
    "BadNotReadable": "E_WRITEONLY",
    "BadUserAccessDenied": "E_ACCESS_DENIED",
    "BadOutOfRange": "E_RANGE",
    "BadTimeout": "E_TIMEDOUT",
    "BadMonitoredItemIdInvalid": "E_INVALIDHANDLE",
    "BadBrowseNameInvalid": "E_UNKNOWN_ITEM_PATH",
}


def status_to_result_id(status_name: Optional[str]) -> str:
    """Translate a UA status code name to a protocol result identifier."""
    if not status_name:
        return "S_OK"
    if status_name in UA_STATUS_MAP:
        return UA_STATUS_MAP[status_name]
    if status_name.startswith("Good"):
        return "S_OK"
    return "E_FAIL"


def _exception_result_id(exc: Exception) -> str:
    """Result identifier for a failed per-item UA call."""
    code = getattr(exc, "code", None)
    if code is None or ua is None:
        return "E_FAIL"
    try:
        return status_to_result_id(ua.StatusCode(code).name)
    except Exception:
        return "E_FAIL"


@dataclass
class _UAGroup:
    name: str
    rate_ms: int
    subscription: Any = None
    # NodeId string -> monitored item handle / item name
    monitored: Dict[str, int] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)
    callback: Optional[DataCallback] = None


class _SubHandler(object):
    """python-opcua subscription handler for one group."""

    def __init__(self, owner: "UAProtocolClient", group: _UAGroup) -> None:
        self._owner = owner
        self._group = group

    def datachange_notification(self, node, val, data):
        callback = self._group.callback
        if callback is None:
            return
        try:
            status = data.monitored_item.Value.StatusCode.name
        except AttributeError:
            status = "Good"
        node_id = node.nodeid.to_string()
        name = self._group.names.get(node_id, node_id)
        result = ItemValueResult(name, val, status_to_result_id(status))
        self._owner._dispatch(callback, self._group, [result])

    def event_notification(self, event):
        log.debug("OPC UA event ignored: %s", event)

    def status_change_notification(self, status):
        reason = f"subscription {self._group.name} status changed: {status}"
        self._owner._dispatch(self._owner._notify_shutdown, reason)


class UAProtocolClient(ProtocolClient):
    """`ProtocolClient` over python-opcua.

    - Fails at construction with an actionable error if the package is missing.
    - Data and shutdown callbacks run on the "ua-notify" dispatcher thread.
    """

    def __init__(self, port: int = DEFAULT_PORT, timeout: float = 4.0) -> None:
        if Client is None:
            raise RuntimeError(
                "python-opcua package not installed. Install with: pip install opcua"
            )
        self._port = port
        self._timeout = timeout
        self._client: Optional[Client] = None
        self._on_shutdown: Optional[ShutdownCallback] = None
        # (host, server name) -> endpoint url learned during discovery
        self._endpoints: Dict[Tuple[str, str], str] = {}
        self._dispatcher: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def _base_url(self, host: str) -> str:
        return f"opc.tcp://{host}:{self._port}"

    def discover(self, host: str) -> List[str]:
        client = Client(self._base_url(host), timeout=self._timeout)
        names = []
        for desc in client.connect_and_find_servers():
            name = desc.ApplicationName.Text
            urls = list(desc.DiscoveryUrls or [])
            self._endpoints[(host, name)] = urls[0] if urls else self._base_url(host)
            names.append(name)
        return names

    def connect(self, server_name: str, host: str, on_shutdown: ShutdownCallback) -> None:
        if self._client is not None:
            log.warning("Closing the previous OPC UA connection before connecting to %s", server_name)
            self.disconnect()
        url = self._endpoints.get((host, server_name), self._base_url(host))
        client = Client(url, timeout=self._timeout)
        client.connect()
        self._client = client
        self._on_shutdown = on_shutdown
        self._dispatcher = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="ua-notify")
        log.info("Connected to OPC UA server %s at %s", server_name, url)

    def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            self._client.disconnect()
        finally:
            self._client = None
            self._on_shutdown = None
            dispatcher, self._dispatcher = self._dispatcher, None
            if dispatcher is not None:
                # May run on the dispatcher thread itself, so never wait
                dispatcher.shutdown(wait=False)

    def create_group(self, name: str, rate_ms: int, active: bool = True, deadband: float = 0.0) -> Any:
        client = self._require_client()
        group = _UAGroup(name=name, rate_ms=rate_ms)
        if not active:
            log.debug("Inactive groups are not supported by OPC UA subscriptions; %s created active", name)
        with _ConnectionGuard("create_group"):
            group.subscription = client.create_subscription(rate_ms, _SubHandler(self, group))
        return group

    def cancel_group(self, handle: Any) -> None:
        with _ConnectionGuard("cancel_group"):
            handle.subscription.delete()
        handle.monitored.clear()
        handle.names.clear()

    def add_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        client = self._require_client()
        results = []
        for item in items:
            try:
                with _ConnectionGuard("add_items"):
                    node = client.get_node(item.name)
                    monitored = handle.subscription.subscribe_data_change(node)
                node_id = node.nodeid.to_string()
                handle.monitored[node_id] = monitored
                handle.names[node_id] = item.name
                results.append(ItemResult(item.name, "S_OK"))
            except ConnectionLostError:
                raise
            except Exception as e:
                log.debug("OPC UA subscribe failed for %s: %s", item.name, e)
                results.append(ItemResult(item.name, _exception_result_id(e)))
        return results

    def remove_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        client = self._require_client()
        results = []
        for item in items:
            try:
                node_id = client.get_node(item.name).nodeid.to_string()
                monitored = handle.monitored.get(node_id)
                if monitored is None:
                    results.append(ItemResult(item.name, "E_INVALIDHANDLE"))
                    continue
                with _ConnectionGuard("remove_items"):
                    handle.subscription.unsubscribe(monitored)
                del handle.monitored[node_id]
                handle.names.pop(node_id, None)
                results.append(ItemResult(item.name, "S_OK"))
            except ConnectionLostError:
                raise
            except Exception as e:
                results.append(ItemResult(item.name, _exception_result_id(e)))
        return results

    def read(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemValueResult]:
        client = self._require_client()
        results = []
        for item in items:
            try:
                with _ConnectionGuard("read"):
                    dv = client.get_node(item.name).get_data_value()
                results.append(ItemValueResult(item.name, dv.Value.Value, status_to_result_id(dv.StatusCode.name)))
            except ConnectionLostError:
                raise
            except Exception as e:
                results.append(ItemValueResult(item.name, None, _exception_result_id(e)))
        return results

    def write(self, handle: Any, item_values: Sequence[Tuple[ItemDescriptor, Any]]) -> List[ItemResult]:
        client = self._require_client()
        results = []
        for item, value in item_values:
            try:
                with _ConnectionGuard("write"):
                    client.get_node(item.name).set_value(value)
                results.append(ItemResult(item.name, "S_OK"))
            except ConnectionLostError:
                raise
            except Exception as e:
                results.append(ItemResult(item.name, _exception_result_id(e)))
        return results

    def set_data_callback(self, handle: Any, callback: DataCallback) -> None:
        handle.callback = callback

    def clear_data_callback(self, handle: Any) -> None:
        handle.callback = None

    # -- helpers ----------------------------------------------------
    def _require_client(self):
        if self._client is None:
            raise ConnectionLostError("OPC UA client not connected")
        return self._client

    def _dispatch(self, fn, *args) -> None:
        dispatcher = self._dispatcher
        if dispatcher is None:
            log.debug("OPC UA notification after disconnect dropped")
            return
        try:
            dispatcher.submit(self._run_callback, fn, *args)
        except RuntimeError:
            log.debug("OPC UA notification after disconnect dropped")

    @staticmethod
    def _run_callback(fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            log.exception("OPC UA notification callback error")

    def _notify_shutdown(self, reason: str) -> None:
        callback = self._on_shutdown
        if callback is not None:
            callback(reason)


class _ConnectionGuard:
    """Turns socket-level failures into ConnectionLostError."""

    def __init__(self, op: str) -> None:
        self._op = op

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None and issubclass(exc_type, (OSError, TimeoutError)):
            raise ConnectionLostError(f"{self._op}: {exc}") from exc
        return False
