import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from tagsync.models.data_item import DataItem

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_HEALTH_INTERVAL_S = 5.0
DEFAULT_OPCUA_PORT = 4840


@dataclass
class SessionConfig:
    """Connection target and desired tag set for one session."""
    server_name: str = ""
    host: str = DEFAULT_HOST
    health_interval_s: float = DEFAULT_HEALTH_INTERVAL_S
    opcua_port: int = DEFAULT_OPCUA_PORT
    items: List[DataItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'server_name': self.server_name,
            'host': self.host,
            'health_interval_s': self.health_interval_s,
            'opcua_port': self.opcua_port,
            'items': [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionConfig':
        items = [DataItem.from_dict(entry) for entry in data.get('items', [])]
        return cls(
            server_name=data.get('server_name', ""),
            host=data.get('host') or DEFAULT_HOST,
            health_interval_s=float(data.get('health_interval_s', DEFAULT_HEALTH_INTERVAL_S)),
            opcua_port=int(data.get('opcua_port', DEFAULT_OPCUA_PORT)),
            items=items,
        )

    @classmethod
    def load(cls, filepath: str) -> 'SessionConfig':
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        config = cls.from_dict(data)
        logger.info(f"Loaded session config from {filepath} ({len(config.items)} items)")
        return config

    def save(self, filepath: str):
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=4)
        logger.info(f"Saved session config to {filepath}")
