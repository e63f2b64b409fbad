"""
Key/value storage for boundary-secrets.

Provides the host-style storage interface (get/put/delete/list by key) used to
persist configuration, roles and leases, with an in-memory backend and a
JSON file backend for state that must survive restarts.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Abstract key/value store. Values are JSON-compatible dictionaries."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value stored under key, or None."""
        pass

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any]) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        pass

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """
        List keys directly under prefix.

        Returned keys have the prefix stripped, sorted.
        """
        pass


class InMemoryStorage(Storage):
    """Storage kept in a process-local dictionary."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._data.get(key)
            return json.loads(json.dumps(value)) if value is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        # Round-trip through JSON so callers never share mutable state with the store
        encoded = json.loads(json.dumps(value, default=str))
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            keys = [k[len(prefix):] for k in self._data if k.startswith(prefix)]
        return sorted(k for k in keys if k and '/' not in k)


class JSONFileStorage(InMemoryStorage):
    """
    Storage persisted to a single JSON file.

    The whole map is rewritten after every mutation, which suits the small
    number of records a broker holds (one config, a few roles, live leases).
    """

    def __init__(self, storage_path: Union[str, Path]):
        """
        Initialize the file-backed store.

        Args:
            storage_path: Path of the JSON file; created on first write.
        """
        super().__init__()
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._load_state()

        logger.info(f"Initialized JSONFileStorage at {self.storage_path} with {len(self._data)} keys")

    def put(self, key: str, value: Dict[str, Any]) -> None:
        super().put(key, value)
        self._save_state()

    def delete(self, key: str) -> bool:
        existed = super().delete(key)
        if existed:
            self._save_state()
        return existed

    def _save_state(self):
        """Write the current map to disk atomically."""
        with self._lock:
            state_data = {
                "entries": self._data,
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }
            tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state_data, f, indent=2, default=str)
            tmp_path.replace(self.storage_path)

    def _load_state(self):
        """Load the map from disk if the file exists."""
        if not self.storage_path.exists():
            return

        with open(self.storage_path, encoding="utf-8") as f:
            state_data = json.load(f)

        self._data = state_data.get("entries", {})
        logger.info(f"Loaded {len(self._data)} keys from {self.storage_path}")
