"""OPC transports for the session layer.

This package provides:
- an in-memory simulator (no external deps) used by tests and demos
- an OPC UA transport built on python-opcua, with a clear error when the
  optional dependency is missing
"""

from __future__ import annotations

__all__ = [
    "SimulatedProtocolClient",
    "UAProtocolClient",
]

from .simulator import SimulatedProtocolClient

# UAProtocolClient raises at construction if python-opcua is not installed
from .ua_client import UAProtocolClient
