"""
Configuration Store for boundary-secrets.

Holds the single cluster configuration record. A write fully replaces the
previous record and drops any cached cluster session.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..connectors import BaseConnector
from ..errors import InvalidRequest, NotConfigured
from ..models import BoundaryConfig
from .storage import Storage

logger = logging.getLogger(__name__)

CONFIG_KEY = "config"


class ConfigStore:
    """Persists the BoundaryConfig under a fixed storage key."""

    def __init__(self, storage: Storage, connector: Optional[BaseConnector] = None):
        """
        Initialize the config store.

        Args:
            storage: Backing key/value storage
            connector: Connector whose session is invalidated on change
        """
        self.storage = storage
        self.connector = connector

    def put(self, config: BoundaryConfig) -> None:
        """Replace the configuration."""
        self.storage.put(CONFIG_KEY, config.model_dump())
        if self.connector is not None:
            self.connector.invalidate()
        logger.info(f"Stored configuration for {config.addr} (auth method {config.auth_method_id})")

    def put_data(self, data: Dict[str, Any]) -> BoundaryConfig:
        """Validate raw request data and store it as the configuration."""
        try:
            config = BoundaryConfig(**(data or {}))
        except ValidationError as e:
            raise InvalidRequest(_format_validation_error("config", e)) from e
        self.put(config)
        return config

    def get(self) -> BoundaryConfig:
        """
        Get the current configuration.

        Raises:
            NotConfigured: nothing has been written yet
        """
        data = self.storage.get(CONFIG_KEY)
        if data is None:
            raise NotConfigured()
        return BoundaryConfig(**data)

    def exists(self) -> bool:
        return self.storage.get(CONFIG_KEY) is not None

    def delete(self) -> bool:
        """Remove the configuration."""
        existed = self.storage.delete(CONFIG_KEY)
        if self.connector is not None:
            self.connector.invalidate()
        if existed:
            logger.info("Deleted configuration")
        return existed


def _format_validation_error(what: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or what
        problems.append(f"{field}: {item.get('msg')}")
    return f"invalid {what}: " + "; ".join(problems)
