from datetime import datetime
import json
import logging
import threading
from typing import Dict, List, Optional

from tagsync.core.events import DATA_CHANGED, ERROR, LOG, NotificationHub
from tagsync.models.events import DataChangedEvent, ErrorEvent, LogEvent

logger = logging.getLogger(__name__)


class EventLogger:
    """
    Keeps a bounded history of session events that can be saved/loaded.
    Attach it to a NotificationHub to record error, log and (optionally)
    data-changed events.
    """

    def __init__(self, max_history=1000, source: str = "session", record_data: bool = False):
        self._history: List[Dict[str, str]] = []
        self._max_history = max_history
        self._source = source
        self._record_data = record_data
        self._lock = threading.Lock()
        self._hub: Optional[NotificationHub] = None

    def attach(self, hub: NotificationHub):
        self.detach()
        self._hub = hub
        hub.on(ERROR, self._on_error)
        hub.on(LOG, self._on_log)
        if self._record_data:
            hub.on(DATA_CHANGED, self._on_data)

    def detach(self):
        if self._hub is None:
            return
        self._hub.off(ERROR, self._on_error)
        self._hub.off(LOG, self._on_log)
        self._hub.off(DATA_CHANGED, self._on_data)
        self._hub = None

    def log(self, level: str, source: str, message: str, timestamp: Optional[datetime] = None):
        """Record one event."""
        ts = (timestamp or datetime.now()).strftime("%H:%M:%S.%f")[:-3]
        event = {
            'timestamp': ts,
            'level': level,
            'source': source,
            'message': message
        }
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history.pop(0)

    def _on_error(self, event: ErrorEvent):
        message = f"[{event.code.name}] {event.message}"
        if event.exception is not None:
            message += f": {event.exception}"
        self.log("ERROR", self._source, message, event.timestamp)

    def _on_log(self, event: LogEvent):
        self.log("INFO", self._source, event.message, event.timestamp)

    def _on_data(self, event: DataChangedEvent):
        self.log("DATA", event.item.name, f"{event.code.name} value={event.item.new_value!r}", event.timestamp)

    def get_history(self):
        with self._lock:
            return list(self._history)

    def clear_history(self):
        with self._lock:
            self._history = []

    def save_to_file(self, filepath: str):
        try:
            with open(filepath, 'w') as f:
                json.dump(self.get_history(), f, indent=4)
        except Exception as e:
            logger.error(f"Failed to save event history: {e}")

    def load_from_file(self, filepath: str):
        try:
            with open(filepath, 'r') as f:
                history = json.load(f)
            with self._lock:
                self._history = history[-self._max_history:]
        except Exception as e:
            logger.error(f"Failed to load event history: {e}")
