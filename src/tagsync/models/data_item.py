import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ResultCode(Enum):
    """Quality / result of the last operation on a data item.

    Values are the protocol's own result identifiers where one exists, so a
    transport result can be decoded by value.
    """
    OK = "S_OK"
    UNKNOWN = "UNKNOWN"
    GENERIC_FAILURE = "E_FAIL"
    SERVER_NOT_CONNECTED = "SERVER_NOT_CONNECTED"
    UNKNOWN_ITEM_NAME = "E_UNKNOWN_ITEM_NAME"
    SERVER_SHUTDOWN = "SERVER_SHUTDOWN"
    ITEM_REGISTERED = "ITEM_REGISTERED"
    ITEM_UNREGISTERED = "ITEM_UNREGISTERED"
    INVALID_ARGUMENT = "E_INVALIDARG"

    # Transport per-item failures
    INVALID_ITEM_ID = "E_INVALIDITEMID"
    BAD_TYPE = "E_BADTYPE"
    READ_ONLY = "E_READONLY"
    WRITE_ONLY = "E_WRITEONLY"
    BAD_RIGHTS = "E_BADRIGHTS"
    OUT_OF_RANGE = "E_RANGE"
    INVALID_HANDLE = "E_INVALIDHANDLE"
    UNKNOWN_ITEM_PATH = "E_UNKNOWN_ITEM_PATH"
    UNSUPPORTED_RATE = "S_UNSUPPORTEDRATE"
    CLAMPED = "S_CLAMP"
    TIMED_OUT = "E_TIMEDOUT"
    ACCESS_DENIED = "E_ACCESS_DENIED"

    @property
    def succeeded(self) -> bool:
        """True for OK and the protocol's other success codes (S_*)."""
        return self.value.startswith("S_")

    @classmethod
    def decode(cls, result_id: Any) -> 'ResultCode':
        """Map a transport result identifier to a ResultCode.

        Accepts a ResultCode, a protocol identifier ("S_OK") or a member
        name ("OK"). Anything unrecognised decodes to UNKNOWN.
        """
        if isinstance(result_id, cls):
            return result_id
        if result_id is None:
            return cls.UNKNOWN
        text = str(result_id).strip()
        for code in cls:
            if code.value == text:
                return code
        try:
            return cls[text.upper()]
        except KeyError:
            return cls.UNKNOWN


@dataclass
class DataItem:
    """A named tag with its desired poll rate and last two observed values."""
    name: str
    poll_rate_ms: int
    old_value: Any = None
    new_value: Any = None
    quality: ResultCode = ResultCode.UNKNOWN

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("DataItem name must be a non-empty string")
        if isinstance(self.poll_rate_ms, bool) or not isinstance(self.poll_rate_ms, int) or self.poll_rate_ms <= 0:
            raise ValueError(f"DataItem '{self.name}' poll rate must be a positive integer, got {self.poll_rate_ms!r}")

    @property
    def is_good(self) -> bool:
        return self.quality == ResultCode.OK

    def shift(self, value: Any, quality: ResultCode):
        """Push a newly observed value into the two-slot history."""
        self.old_value = self.new_value
        self.new_value = value
        self.quality = quality

    def clone(self) -> 'DataItem':
        return copy.copy(self)

    def to_dict(self):
        return {
            'name': self.name,
            'poll_rate_ms': self.poll_rate_ms,
        }

    @classmethod
    def from_dict(cls, data) -> 'DataItem':
        # Accept the older "update_rate" key as well
        rate = data.get('poll_rate_ms', data.get('update_rate'))
        return cls(name=data.get('name'), poll_rate_ms=rate)
