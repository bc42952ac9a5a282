import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class ItemDescriptor:
    """
    Server item descriptor handed to the transport.
    Immutable so the transport can use it as a key.
    """
    name: str
    client_handle: str = field(default_factory=lambda: str(uuid.uuid4()))
    item_path: Optional[str] = None


@dataclass
class ItemResult:
    """Per-item outcome of an add/remove/write batch."""
    item_name: str
    result_id: Any = "S_OK"


@dataclass
class ItemValueResult:
    """Per-item outcome of a read, or one entry of a pushed data change."""
    item_name: str
    value: Any = None
    result_id: Any = "S_OK"


@dataclass
class SubscriptionGroup:
    """Server-side collection of items sharing one poll rate."""
    rate_ms: int
    handle: Any
    name: str = ""
    # item name -> descriptor, in registration order
    items: Dict[str, ItemDescriptor] = field(default_factory=dict)
    callback: Optional[Callable] = None

    def __post_init__(self):
        if not self.name:
            self.name = str(self.rate_ms)

    def descriptor(self, item_name: str) -> Optional[ItemDescriptor]:
        return self.items.get(item_name)

    def descriptors(self) -> List[ItemDescriptor]:
        return list(self.items.values())

    def __len__(self):
        return len(self.items)
