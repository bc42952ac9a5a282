import logging
import threading
from typing import Callable, Dict, List, Optional

from tagsync.models.data_item import DataItem, ResultCode
from tagsync.models.events import DataChangedEvent, ErrorEvent, LogEvent

logger = logging.getLogger(__name__)

DATA_CHANGED = "data_changed"
ERROR = "error"
LOG = "log"

CHANNELS = (DATA_CHANGED, ERROR, LOG)


class NotificationHub:
    """
    Fan-out of data-changed, error and log events to registered observers.
    Callbacks run synchronously, in registration order, on the thread that
    raised the event. Listeners may register or unregister from inside a
    callback; the change applies from the next emission.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Callable]] = {name: [] for name in CHANNELS}

    def on(self, channel: str, callback: Callable):
        """Register a callback for a channel."""
        with self._lock:
            self._channel(channel).append(callback)

    def off(self, channel: str, callback: Callable):
        """Unregister a callback. Unknown callbacks are ignored."""
        with self._lock:
            try:
                self._channel(channel).remove(callback)
            except ValueError:
                pass

    def emit(self, channel: str, event):
        """Emit an event, calling all registered listeners."""
        with self._lock:
            listeners = list(self._channel(channel))
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                # One faulty listener must not starve the others
                logger.exception(f"Error in '{channel}' listener {callback!r}")

    def listener_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channel(channel))

    def clear(self, channel: Optional[str] = None):
        """Remove all listeners, or only those of one channel."""
        with self._lock:
            if channel is None:
                for listeners in self._listeners.values():
                    listeners.clear()
            else:
                self._channel(channel).clear()

    def _channel(self, channel: str) -> List[Callable]:
        try:
            return self._listeners[channel]
        except KeyError:
            raise ValueError(f"Unknown event channel '{channel}'") from None


class EventReporter:
    """Raises hub events and mirrors each one to the log."""
    def __init__(self, hub: NotificationHub, source: Optional[logging.Logger] = None):
        self.hub = hub
        self._logger = source or logger

    def data_changed(self, code: ResultCode, item: DataItem):
        self._logger.debug(f"{item.name}: {code.name} value={item.new_value!r}")
        self.hub.emit(DATA_CHANGED, DataChangedEvent(code, item))

    def error(self, code: ResultCode, message: str, exception: Optional[BaseException] = None):
        if exception is not None:
            self._logger.error(f"[{code.name}] {message}: {exception}")
        else:
            self._logger.error(f"[{code.name}] {message}")
        self.hub.emit(ERROR, ErrorEvent(code, message, exception))

    def log(self, message: str):
        self._logger.info(message)
        self.hub.emit(LOG, LogEvent(message))
