"""
Error types raised by boundary-secrets.

Every error carries enough context (operation, remote object ids) to be acted
on without re-deriving state.
"""

from typing import List, Optional, Tuple


class BrokerError(Exception):
    """Base class for all broker errors."""


class NotConfigured(BrokerError):
    """No cluster configuration has been written."""

    def __init__(self, message: str = "backend is not configured; write config first"):
        super().__init__(message)


class NotFound(BrokerError):
    """A role, lease or remote object does not exist."""


class InvalidRequest(BrokerError, ValueError):
    """Request data failed local validation."""


class UnsupportedOperation(BrokerError):
    """No handler exists for the requested path and operation."""


class RemoteError(BrokerError):
    """A call to the identity cluster failed."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 object_id: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.object_id = object_id


class Unauthenticated(RemoteError):
    """The cluster rejected the administrative credentials or session token."""


class RemoteUnavailable(RemoteError):
    """The cluster could not be reached or did not answer in time."""


class PartialCreateFailure(BrokerError):
    """
    Credential creation failed and the compensating delete failed too.

    The named objects are left on the cluster and need manual cleanup.
    """

    def __init__(self, account_id: str, user_id: Optional[str], cause: BaseException,
                 cleanup_errors: List[str]):
        self.account_id = account_id
        self.user_id = user_id
        self.cause = cause
        self.cleanup_errors = cleanup_errors
        orphans = f"account {account_id}"
        if user_id:
            orphans += f" and user {user_id}"
        super().__init__(
            f"credential creation failed ({cause}) and cleanup failed "
            f"({'; '.join(cleanup_errors)}); manual cleanup required for {orphans}"
        )


class RevokeFailure(BrokerError):
    """One or both deletes failed during revocation; the host should retry later."""

    def __init__(self, account_id: str, user_id: str, failures: List[Tuple[str, str]]):
        self.account_id = account_id
        self.user_id = user_id
        self.failures = failures
        details = "; ".join(f"{operation}: {error}" for operation, error in failures)
        super().__init__(
            f"failed to revoke credential (user {user_id}, account {account_id}): {details}"
        )
