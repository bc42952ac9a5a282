import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal as QtSignal

from tagsync.core.events import DATA_CHANGED, ERROR, LOG, NotificationHub
from tagsync.models.events import DataChangedEvent, ErrorEvent, LogEvent

logger = logging.getLogger(__name__)


class QtSessionBridge(QObject):
    """
    Re-emits session events as Qt signals.
    Session events fire on the timer or transport thread; Qt queues the
    signal into the receiver's thread for connections across threads.
    """
    # Use `object` so Shiboken does not try to convert the dataclasses
    data_changed = QtSignal(object)   # DataChangedEvent
    error_happened = QtSignal(object)  # ErrorEvent
    log_happened = QtSignal(str)       # message

    def __init__(self, parent=None):
        super().__init__(parent)
        self._hub: Optional[NotificationHub] = None

    def attach(self, source):
        """Attach to a TagSessionManager or a bare NotificationHub."""
        hub = getattr(source, 'hub', source)
        self.detach()
        self._hub = hub
        hub.on(DATA_CHANGED, self._forward_data)
        hub.on(ERROR, self._forward_error)
        hub.on(LOG, self._forward_log)
        logger.debug("Qt session bridge attached")

    def detach(self):
        if self._hub is None:
            return
        self._hub.off(DATA_CHANGED, self._forward_data)
        self._hub.off(ERROR, self._forward_error)
        self._hub.off(LOG, self._forward_log)
        self._hub = None

    def _forward_data(self, event: DataChangedEvent):
        self.data_changed.emit(event)

    def _forward_error(self, event: ErrorEvent):
        self.error_happened.emit(event)

    def _forward_log(self, event: LogEvent):
        self.log_happened.emit(event.message)
