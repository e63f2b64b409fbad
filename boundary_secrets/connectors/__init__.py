"""
Connectors Package for boundary-secrets.

This package provides the identity cluster connectors: the Boundary HTTP
connector and an in-memory mock cluster.
"""

from typing import Any, Dict, Optional

from .base_connector import (
    DEFAULT_TIMEOUT,
    BaseConnector,
    ConnectorResult,
    MockConnector,
    RemoteSession,
    ResultStatus,
)
from .boundary_connector import BoundaryConnector


def get_connector(config: Optional[Dict[str, Any]] = None, mock: bool = False) -> BaseConnector:
    """Get the connector for the current mode."""
    if mock:
        return MockConnector(config)
    return BoundaryConnector(config)


__all__ = [
    "DEFAULT_TIMEOUT",
    "BaseConnector",
    "BoundaryConnector",
    "ConnectorResult",
    "MockConnector",
    "RemoteSession",
    "ResultStatus",
    "get_connector",
]
