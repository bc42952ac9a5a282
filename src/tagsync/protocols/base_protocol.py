from abc import ABC, abstractmethod
from typing import Any, Callable, List, Sequence, Tuple

from tagsync.models.subscription_models import ItemDescriptor, ItemResult, ItemValueResult

DataCallback = Callable[[Any, List[ItemValueResult]], None]
ShutdownCallback = Callable[[str], None]


class ProtocolError(Exception):
    """Raised by a transport when an operation cannot be carried out."""


class ConnectionLostError(ProtocolError):
    """Raised by a transport when the server connection dropped mid-operation."""


class ProtocolClient(ABC):
    """
    Abstract Base Class for subscription-capable data access transports.
    The session layer only talks to the server through this interface.

    Per-item outcomes are reported in the returned result lists using the
    protocol's own result identifiers ("S_OK", "E_UNKNOWN_ITEM_NAME", ...);
    exceptions are reserved for failures of the whole call.
    """

    @abstractmethod
    def discover(self, host: str) -> List[str]:
        """Return the names of the servers available at `host`."""
        pass

    @abstractmethod
    def connect(self, server_name: str, host: str, on_shutdown: ShutdownCallback):
        """
        Open the connection. `on_shutdown(reason)` is invoked from the
        transport's thread when the server announces it is going away.
        """
        pass

    @abstractmethod
    def disconnect(self):
        """Close the connection."""
        pass

    @abstractmethod
    def create_group(self, name: str, rate_ms: int, active: bool = True, deadband: float = 0.0) -> Any:
        """Create a subscription group and return its handle."""
        pass

    @abstractmethod
    def cancel_group(self, handle: Any):
        pass

    @abstractmethod
    def add_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        pass

    @abstractmethod
    def remove_items(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemResult]:
        pass

    @abstractmethod
    def read(self, handle: Any, items: Sequence[ItemDescriptor]) -> List[ItemValueResult]:
        pass

    @abstractmethod
    def write(self, handle: Any, item_values: Sequence[Tuple[ItemDescriptor, Any]]) -> List[ItemResult]:
        pass

    @abstractmethod
    def set_data_callback(self, handle: Any, callback: DataCallback):
        """Register the push callback for value changes within a group."""
        pass

    @abstractmethod
    def clear_data_callback(self, handle: Any):
        pass
