from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from tagsync.models.data_item import DataItem, ResultCode


@dataclass
class DataChangedEvent:
    """Value change, registration or unregistration of a data item."""
    code: ResultCode
    item: DataItem
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ErrorEvent:
    code: ResultCode
    message: str
    exception: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class LogEvent:
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
