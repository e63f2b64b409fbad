"""
boundary-secrets

Dynamic credentials for Boundary: every request creates a fresh password
account and user on the cluster, hands back the login under a lease, and
deletes exactly those objects when the lease is revoked or expires.
"""

__version__ = "1.0.0"
__author__ = "boundary-secrets Team"
__email__ = "team@example.com"

from .backend import Backend, Operation, Request, Response, build_backend
from .engine.lifecycle import CredentialLifecycleEngine
from .models import BoundaryConfig, IssuedCredential, Lease, Role

__all__ = [
    "Backend",
    "BoundaryConfig",
    "CredentialLifecycleEngine",
    "IssuedCredential",
    "Lease",
    "Operation",
    "Request",
    "Response",
    "Role",
    "build_backend",
]
