import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from tagsync.core.events import DATA_CHANGED, EventReporter, NotificationHub
from tagsync.core.health_daemon import DEFAULT_INTERVAL_S, HealthDaemon
from tagsync.core.reconciler import SubscriptionReconciler
from tagsync.core.session import Session, SessionState
from tagsync.models.data_item import DataItem, ResultCode
from tagsync.models.session_config import DEFAULT_HOST, SessionConfig
from tagsync.models.subscription_models import ItemDescriptor, ItemValueResult, SubscriptionGroup
from tagsync.protocols.base_protocol import ConnectionLostError, ProtocolClient

logger = logging.getLogger(__name__)


class TagSessionManager:
    """
    Resilient client session for a subscription-based data access server.

    Keeps the server-side subscription groups in line with the declared
    data items, reconnects and re-registers from a background health
    daemon, and reports everything through the `hub` channels
    (data_changed, error, log). No exception escapes the public methods:
    failures come back as a ResultCode and/or an error event.

    A single re-entrant lock serializes caller operations, daemon ticks and
    pushed data changes, so a timer-driven reconciliation never interleaves
    with a caller-driven one.
    """

    def __init__(self, client: ProtocolClient, health_interval_s: float = DEFAULT_INTERVAL_S):
        self._client = client
        self._lock = threading.RLock()
        self.hub = NotificationHub()
        self._reporter = EventReporter(self.hub, logger)
        self._session = Session()
        self._reconciler = SubscriptionReconciler(
            client, self._session, self._reporter, self._on_data_changed, self._on_connection_lost
        )
        self._daemon = HealthDaemon(self._on_tick, health_interval_s, on_error=self._on_tick_error)
        self._closed = False

    @classmethod
    def from_config(cls, config: SessionConfig, client: ProtocolClient) -> 'TagSessionManager':
        return cls(client, health_interval_s=config.health_interval_s)

    # -- state --------------------------------------------------------
    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def server_name(self) -> str:
        return self._session.server_name

    @property
    def host(self) -> str:
        return self._session.host

    @property
    def data_items(self) -> List[DataItem]:
        with self._lock:
            return list(self._session.desired)

    @property
    def group_count(self) -> int:
        with self._lock:
            return len(self._session.groups)

    @property
    def daemon_running(self) -> bool:
        return self._daemon.running

    def subscriptions(self) -> Dict[int, List[str]]:
        """Poll rate -> item names currently registered at the server."""
        with self._lock:
            return {g.rate_ms: list(g.items) for g in self._session.groups}

    # -- events -------------------------------------------------------
    def on(self, channel: str, callback: Callable):
        self.hub.on(channel, callback)

    def off(self, channel: str, callback: Callable):
        self.hub.off(channel, callback)

    # -- discovery ----------------------------------------------------
    def get_servers(self, host: str = DEFAULT_HOST) -> Optional[List[str]]:
        """Names of the servers available at `host`, or None if discovery failed."""
        try:
            return list(self._client.discover(host))
        except Exception as e:
            self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to list servers on {host}", e)
            return None

    # -- connection lifecycle ----------------------------------------
    def connect(self, server_name: str, host: str = DEFAULT_HOST) -> ResultCode:
        with self._lock:
            return self._connect(server_name, host)

    def disconnect(self) -> ResultCode:
        self._daemon.stop()
        with self._lock:
            return self._teardown_connection()

    def _connect(self, server_name: str, host: str) -> ResultCode:
        if not server_name or not server_name.strip() or not host or not host.strip():
            self._reporter.error(ResultCode.GENERIC_FAILURE, "Server name or host not specified")
            return ResultCode.GENERIC_FAILURE

        if self._session.is_connected:
            if self._session.targets(server_name, host):
                self._reporter.log(f"Server already connected, host={host}, server={server_name}")
                return ResultCode.OK
            self._reporter.log(f"Switching server from {self._session.server_name} to {server_name}")
            self._teardown_connection()

        self._session.server_name = server_name
        self._session.host = host
        self._session.link_lost.clear()
        try:
            servers = self._client.discover(host) or []
            if server_name not in servers:
                self._reporter.error(ResultCode.GENERIC_FAILURE, f"Server {server_name} not found on host {host}")
                # Keep retrying the target in the background
                self._daemon.start()
                return ResultCode.GENERIC_FAILURE

            self._session.state = SessionState.CONNECTING
            self._client.connect(server_name, host, self._on_server_shutdown)
            self._session.state = SessionState.CONNECTED
            self._reporter.log(f"Connected to server, host={host}, server={server_name}")
        except Exception as e:
            self._session.mark_disconnected()
            self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to connect to server {server_name} on {host}", e)
            return ResultCode.GENERIC_FAILURE

        self._daemon.start()
        return ResultCode.OK

    def _teardown_connection(self) -> ResultCode:
        if not self._session.is_connected:
            self._reporter.log("Server already disconnected")
            return ResultCode.SERVER_NOT_CONNECTED

        # Every step runs even if an earlier one failed; the first failure is reported
        failure = None
        try:
            # Newest group first
            for group in reversed(list(self._session.groups)):
                try:
                    self._reconciler.teardown(group)
                except Exception as e:
                    logger.warning(f"Failed to tear down subscription group {group.name}: {e}")
                    failure = failure or e
            try:
                self._client.disconnect()
            except Exception as e:
                logger.warning(f"Failed to close the server connection: {e}")
                failure = failure or e
        finally:
            self._mark_disconnected()

        if failure is not None:
            self._reporter.error(ResultCode.GENERIC_FAILURE, "Failed to disconnect from server", failure)
            return ResultCode.GENERIC_FAILURE
        self._reporter.log("Disconnected from server")
        return ResultCode.OK

    def _mark_disconnected(self):
        self._session.mark_disconnected()
        for item in self._session.desired:
            item.quality = ResultCode.SERVER_NOT_CONNECTED

    def _on_connection_lost(self, exc: Exception):
        self._mark_disconnected()
        self._reporter.log(f"Connection to server lost: {exc}")
        try:
            self._client.disconnect()
        except Exception:
            logger.debug("Transport cleanup after connection loss failed", exc_info=True)

    def _on_server_shutdown(self, reason: str):
        """Shutdown notice from the transport thread."""
        # Lets an in-flight reconciliation bail out before we get the lock
        self._session.link_lost.set()
        with self._lock:
            if not self._session.is_connected:
                self._reporter.log(f"Server shutdown notice ignored, not connected: {reason}")
                return
            self._reporter.error(ResultCode.SERVER_SHUTDOWN, f"Server shutdown: {reason}")
            self._teardown_connection()
            self._daemon.start()

    # -- subscriptions ------------------------------------------------
    def register_data_items(self, items: Optional[Iterable[DataItem]]):
        """Declare the desired item set and reconcile the server against it."""
        with self._lock:
            self._session.desired = self._unique(items or [])
            self._reconciler.reconcile(self._session.desired)

    def _unique(self, items: Iterable[DataItem]) -> List[DataItem]:
        seen = set()
        unique = []
        for item in items:
            if item.name in seen:
                self._reporter.error(ResultCode.INVALID_ARGUMENT, f"Duplicate data item name {item.name} ignored")
                continue
            seen.add(item.name)
            unique.append(item)
        return unique

    def _on_data_changed(self, handle, results: List[ItemValueResult]):
        """Pushed value changes from the transport thread."""
        with self._lock:
            if not any(g.handle == handle for g in self._session.groups):
                logger.debug(f"Data change for unknown group {handle!r} ignored")
                return
            for result in results:
                item = self._session.find_item(result.item_name)
                if item is None:
                    continue
                code = ResultCode.decode(result.result_id)
                item.shift(result.value, code)
                self._reporter.data_changed(code, item)

    # -- health daemon -------------------------------------------------
    def _on_tick(self):
        with self._lock:
            if not self._daemon.running:
                return
            if self._session.is_connected:
                if any(not item.is_good for item in self._session.desired):
                    self._reporter.log("Re-registering data items")
                    self._reconciler.reconcile(self._session.desired)
            elif self._session.has_target:
                self._reporter.log(
                    f"Reconnecting to server, host={self._session.host}, server={self._session.server_name}"
                )
                self._connect(self._session.server_name, self._session.host)
                self._reconciler.reconcile(self._session.desired)

    def _on_tick_error(self, exc: Exception):
        self._reporter.error(ResultCode.GENERIC_FAILURE, "Health check failed", exc)

    # -- read / write -------------------------------------------------
    def write(self, item: Optional[DataItem], value) -> ResultCode:
        with self._lock:
            if not self._session.is_live:
                self._reporter.error(ResultCode.SERVER_NOT_CONNECTED, "Server not connected, connect before writing data items")
                return ResultCode.SERVER_NOT_CONNECTED
            if item is None:
                self._reporter.error(ResultCode.INVALID_ARGUMENT, "write() requires a data item")
                return ResultCode.INVALID_ARGUMENT

            group, descriptor = self._resolve(item)
            if descriptor is None:
                return self._unknown_item(item, "write", ResultCode.UNKNOWN)

            # Local history is never rolled back, whatever the server says
            live = self._session.find_item(item.name)
            targets = [item] if live is None or live is item else [item, live]
            for target in targets:
                target.old_value = target.new_value
                target.new_value = value

            try:
                results = self._client.write(group.handle, [(descriptor, value)])
            except ConnectionLostError as e:
                self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to write data item {item.name}", e)
                self._on_connection_lost(e)
                return ResultCode.UNKNOWN
            except Exception as e:
                self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to write data item {item.name}", e)
                return ResultCode.UNKNOWN

            if not results:
                return self._unknown_item(item, "write", ResultCode.UNKNOWN)

            code = ResultCode.UNKNOWN
            for result in results:
                code = ResultCode.decode(result.result_id)
                if not code.succeeded:
                    self._reporter.error(code, f"Failed to write data item {result.item_name}: {result.result_id}")
            return code

    def read(self, item: Optional[DataItem]) -> Optional[DataItem]:
        """
        Read one item synchronously. Returns a clone of the updated item, the
        item itself when its name is unknown to the server, or None on
        failure.
        """
        with self._lock:
            if not self._session.is_live:
                self._reporter.error(ResultCode.SERVER_NOT_CONNECTED, "Server not connected, connect before reading data items")
                return None
            if item is None:
                self._reporter.error(ResultCode.INVALID_ARGUMENT, "read() requires a data item")
                return None

            group, descriptor = self._resolve(item)
            if descriptor is None:
                self._unknown_item(item, "read", ResultCode.UNKNOWN_ITEM_NAME)
                return item

            try:
                results = self._client.read(group.handle, [descriptor])
            except ConnectionLostError as e:
                self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to read data item {item.name}", e)
                self._on_connection_lost(e)
                return None
            except Exception as e:
                self._reporter.error(ResultCode.GENERIC_FAILURE, f"Failed to read data item {item.name}", e)
                return None

            if not results:
                self._unknown_item(item, "read", ResultCode.UNKNOWN_ITEM_NAME)
                return item

            snapshot = None
            for result in results:
                code = ResultCode.decode(result.result_id)
                live = self._session.find_item(item.name) or item
                live.shift(result.value, code)
                snapshot = live.clone()
                if not code.succeeded:
                    self._reporter.error(code, f"Failed to read data item {result.item_name}: {result.result_id}")
            return snapshot

    def _resolve(self, item: DataItem) -> Tuple[Optional[SubscriptionGroup], Optional[ItemDescriptor]]:
        group = self._session.find_group(item.poll_rate_ms)
        if group is None:
            return None, None
        return group, group.descriptor(item.name)

    def _unknown_item(self, item: DataItem, op: str, quality: ResultCode) -> ResultCode:
        self._reporter.error(ResultCode.UNKNOWN_ITEM_NAME, f"Failed to {op} data item, unknown item name: {item.name}")
        item.quality = quality
        return ResultCode.UNKNOWN_ITEM_NAME

    # -- disposal -----------------------------------------------------
    def close(self):
        """Drop listeners, force a disconnect and stop the health daemon."""
        if self._closed:
            return
        self._closed = True
        self.hub.clear(DATA_CHANGED)
        self.disconnect()
        self.hub.clear()
        self._daemon.close()
        with self._lock:
            self._session.desired = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
