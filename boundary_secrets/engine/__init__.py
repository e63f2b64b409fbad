"""
Engine Package.

This package provides the configuration and role stores, the credential
lifecycle engine, and the lease manager that drives revocation and renewal.
"""

from .config_store import ConfigStore
from .lease_manager import LeaseManager
from .lifecycle import CredentialLifecycleEngine, CredentialState, CredentialTransaction
from .role_store import RoleStore
from .storage import InMemoryStorage, JSONFileStorage, Storage

__all__ = [
    "ConfigStore",
    "CredentialLifecycleEngine",
    "CredentialState",
    "CredentialTransaction",
    "InMemoryStorage",
    "JSONFileStorage",
    "LeaseManager",
    "RoleStore",
    "Storage",
]
