import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from tagsync.models.data_item import DataItem
from tagsync.models.subscription_models import SubscriptionGroup


class SessionState(Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"


@dataclass
class Session:
    """
    Connection identity, subscription groups and desired items of one
    logical connection. Mutated only while the manager's lock is held,
    except `link_lost` which the transport thread may raise at any time.
    """
    server_name: str = ""
    host: str = ""
    state: SessionState = SessionState.DISCONNECTED
    groups: List[SubscriptionGroup] = field(default_factory=list)
    desired: List[DataItem] = field(default_factory=list)
    link_lost: threading.Event = field(default_factory=threading.Event)

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    @property
    def is_live(self) -> bool:
        """Connected and no shutdown notice pending."""
        return self.is_connected and not self.link_lost.is_set()

    @property
    def has_target(self) -> bool:
        return bool(self.server_name and self.host)

    def targets(self, server_name: str, host: str) -> bool:
        return self.server_name == server_name and self.host == host

    def find_group(self, rate_ms: int) -> Optional[SubscriptionGroup]:
        for group in self.groups:
            if group.rate_ms == rate_ms:
                return group
        return None

    def find_item(self, name: str) -> Optional[DataItem]:
        for item in self.desired:
            if item.name == name:
                return item
        return None

    def mark_disconnected(self):
        self.state = SessionState.DISCONNECTED
        self.groups.clear()
