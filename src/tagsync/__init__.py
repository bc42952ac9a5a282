"""SCADA TagSync - resilient subscription sessions for industrial data servers."""

from tagsync.core.events import DATA_CHANGED, ERROR, LOG, NotificationHub
from tagsync.core.session import SessionState
from tagsync.core.session_manager import TagSessionManager
from tagsync.models.data_item import DataItem, ResultCode
from tagsync.models.events import DataChangedEvent, ErrorEvent, LogEvent
from tagsync.models.session_config import SessionConfig
from tagsync.protocols.base_protocol import ConnectionLostError, ProtocolClient, ProtocolError

__version__ = "1.0.0"

__all__ = [
    "DATA_CHANGED",
    "ERROR",
    "LOG",
    "ConnectionLostError",
    "DataChangedEvent",
    "DataItem",
    "ErrorEvent",
    "LogEvent",
    "NotificationHub",
    "ProtocolClient",
    "ProtocolError",
    "ResultCode",
    "SessionConfig",
    "SessionState",
    "TagSessionManager",
]
