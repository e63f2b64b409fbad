"""
Base Connector Classes for boundary-secrets.

This module provides the foundation for identity cluster connectors: the
shared session cache with its re-authentication contract, and an in-memory
mock cluster used for testing and local development.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import RemoteUnavailable, Unauthenticated
from ..models import BoundaryConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ResultStatus(str, Enum):
    """Outcome classes for a remote operation."""
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class ConnectorResult:
    """Result of a connector operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None, status: Optional[ResultStatus] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error
        if status is None:
            status = ResultStatus.OK if success else ResultStatus.FAILED
        self.status = status

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"

    def __repr__(self):
        return f"ConnectorResult(status={self.status.value}, message={self.message!r})"


class RemoteSession(BaseModel):
    """Authenticated handle to the identity cluster."""
    model_config = ConfigDict(frozen=True)

    token: str = Field(..., repr=False)
    address: str
    auth_method_id: str
    config_fingerprint: tuple = Field(..., repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BaseConnector(ABC):
    """
    Abstract base class for identity cluster connectors.

    Owns the cached RemoteSession. Subclasses implement authentication and
    the account/user operations; callers only ever see sessions through
    get_session() and drop them through invalidate().
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the connector.

        Args:
            config: Connector settings (timeout, tls_verify, ...)
            mock_mode: True for the in-memory mock cluster
        """
        self.config = config or {}
        self.mock_mode = mock_mode
        self.timeout = float(self.config.get('timeout') or DEFAULT_TIMEOUT)
        self.system_name = self.__class__.__name__.replace('Connector', '').lower()

        self._session: Optional[RemoteSession] = None
        self._session_lock = threading.Lock()

        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    def get_session(self, config: BoundaryConfig, timeout: Optional[float] = None) -> RemoteSession:
        """
        Return an authenticated session for config.

        Reuses the cached session when it was created from the same
        configuration. Otherwise authenticates, caches and returns a new one.

        Raises:
            Unauthenticated: the cluster rejected the admin credentials
            RemoteUnavailable: the cluster could not be reached
        """
        fingerprint = config.fingerprint()
        with self._session_lock:
            cached = self._session
        if cached is not None and cached.config_fingerprint == fingerprint:
            return cached

        # Authenticate outside the lock; concurrent callers may both log in,
        # the last one to finish is cached.
        result = self._authenticate(config, timeout or self.timeout)
        if result.status == ResultStatus.UNAUTHENTICATED:
            raise Unauthenticated(
                f"authentication as {config.login_name} on {config.auth_method_id} rejected: {result.error}",
                operation="authenticate", object_id=config.auth_method_id,
            )
        if result.status == ResultStatus.UNAVAILABLE:
            raise RemoteUnavailable(
                f"cannot reach {config.addr} to authenticate: {result.error}",
                operation="authenticate", object_id=config.auth_method_id,
            )
        if not result.success:
            raise Unauthenticated(
                f"authentication on {config.auth_method_id} failed: {result.error or result.message}",
                operation="authenticate", object_id=config.auth_method_id,
            )

        session = RemoteSession(
            token=result.data["token"],
            address=config.addr,
            auth_method_id=config.auth_method_id,
            config_fingerprint=fingerprint,
        )
        with self._session_lock:
            self._session = session

        logger.info(f"Authenticated to {config.addr} as {config.login_name}")
        return session

    def invalidate(self, session: Optional[RemoteSession] = None) -> None:
        """
        Drop the cached session, forcing re-authentication on next use.

        When session is given, the cache is only dropped if it still holds
        that session, so a newer session installed by another request survives.
        """
        with self._session_lock:
            if session is None or self._session is session:
                self._session = None
                logger.debug("Invalidated cached cluster session")

    def has_session(self) -> bool:
        with self._session_lock:
            return self._session is not None

    @abstractmethod
    def _authenticate(self, config: BoundaryConfig, timeout: float) -> ConnectorResult:
        """
        Log in with the admin credentials.

        Returns:
            ConnectorResult whose data holds {"token": ...} on success
        """
        pass

    @abstractmethod
    def create_account(self, session: RemoteSession, auth_method_id: str, login_name: str,
                       password: str, timeout: Optional[float] = None) -> ConnectorResult:
        """
        Create a password account.

        Returns:
            ConnectorResult with {"id": account_id} on success
        """
        pass

    @abstractmethod
    def get_account(self, session: RemoteSession, account_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        """Fetch an account."""
        pass

    @abstractmethod
    def delete_account(self, session: RemoteSession, account_id: str,
                       timeout: Optional[float] = None) -> ConnectorResult:
        """Delete an account. Missing accounts report NOT_FOUND."""
        pass

    @abstractmethod
    def create_user(self, session: RemoteSession, scope_id: str, name: str, description: str = "",
                    timeout: Optional[float] = None) -> ConnectorResult:
        """
        Create a user in a scope.

        Returns:
            ConnectorResult with {"id": user_id, "version": int} on success
        """
        pass

    @abstractmethod
    def add_accounts_to_user(self, session: RemoteSession, user_id: str, version: int,
                             account_ids: List[str], timeout: Optional[float] = None) -> ConnectorResult:
        """Associate accounts with a user."""
        pass

    @abstractmethod
    def get_user(self, session: RemoteSession, user_id: str,
                 timeout: Optional[float] = None) -> ConnectorResult:
        """Fetch a user."""
        pass

    @abstractmethod
    def delete_user(self, session: RemoteSession, user_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        """Delete a user. Missing users report NOT_FOUND."""
        pass

    def get_system_name(self) -> str:
        """Get the name of the system this connector manages."""
        return self.system_name

    def is_mock_mode(self) -> bool:
        """Check if this connector is running in mock mode."""
        return self.mock_mode


class MockConnector(BaseConnector):
    """
    In-memory identity cluster.

    Keeps accounts and users in dictionaries, counts every call, and can be
    told to fail specific operations for testing compensation and retries.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 admin_login_name: Optional[str] = None, admin_password: Optional[str] = None):
        super().__init__(config, mock_mode=True)

        # When unset, any non-empty admin credentials are accepted
        self.admin_login_name = admin_login_name
        self.admin_password = admin_password

        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: set = set()
        self.calls: Counter = Counter()
        self._failures: Dict[str, List[ResultStatus]] = {}
        self._state_lock = threading.Lock()

    def fail_next(self, operation: str, status: ResultStatus = ResultStatus.FAILED, times: int = 1):
        """Make the next `times` calls of operation return status."""
        self._failures.setdefault(operation, []).extend([status] * times)

    def expire_tokens(self):
        """Invalidate every issued token cluster-side, as a token expiry would."""
        self.tokens.clear()

    @property
    def remote_calls(self) -> int:
        """Number of calls made against the mock cluster, authentication included."""
        return sum(self.calls.values())

    def _begin(self, operation: str, session: Optional[RemoteSession] = None) -> Optional[ConnectorResult]:
        self.calls[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            status = pending.pop(0)
            return ConnectorResult(False, f"Injected {status.value} for {operation}",
                                   error=f"injected {status.value}", status=status)
        if session is not None and session.token not in self.tokens:
            return ConnectorResult(False, "Session token rejected", error="invalid token",
                                   status=ResultStatus.UNAUTHENTICATED)
        return None

    def _authenticate(self, config: BoundaryConfig, timeout: float) -> ConnectorResult:
        failure = self._begin("authenticate")
        if failure:
            return failure

        if self.admin_login_name is not None and (
            config.login_name != self.admin_login_name or config.password != self.admin_password
        ):
            return ConnectorResult(False, "Invalid admin credentials", error="authentication failed",
                                   status=ResultStatus.UNAUTHENTICATED)

        token = f"at_{secrets.token_hex(8)}"
        self.tokens.add(token)
        return ConnectorResult(True, "Authenticated", {"token": token})

    def create_account(self, session: RemoteSession, auth_method_id: str, login_name: str,
                       password: str, timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("create_account", session)
        if failure:
            return failure

        with self._state_lock:
            for account in self.accounts.values():
                if account["auth_method_id"] == auth_method_id and account["login_name"] == login_name:
                    return ConnectorResult(False, f"Login name {login_name} already exists",
                                           error="duplicate login name")
            account_id = f"acctpw_{secrets.token_hex(5)}"
            self.accounts[account_id] = {
                "id": account_id,
                "auth_method_id": auth_method_id,
                "login_name": login_name,
                "password": password,
            }

        logger.info(f"Mock created account {account_id}")
        return ConnectorResult(True, f"Created account {account_id}", {"id": account_id})

    def get_account(self, session: RemoteSession, account_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("get_account", session)
        if failure:
            return failure
        if account_id not in self.accounts:
            return ConnectorResult(False, f"Account {account_id} not found", status=ResultStatus.NOT_FOUND)
        return ConnectorResult(True, f"Found account {account_id}", dict(self.accounts[account_id]))

    def delete_account(self, session: RemoteSession, account_id: str,
                       timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("delete_account", session)
        if failure:
            return failure

        with self._state_lock:
            if self.accounts.pop(account_id, None) is None:
                return ConnectorResult(False, f"Account {account_id} not found", status=ResultStatus.NOT_FOUND)
            for user in self.users.values():
                if account_id in user["account_ids"]:
                    user["account_ids"].remove(account_id)

        logger.info(f"Mock deleted account {account_id}")
        return ConnectorResult(True, f"Deleted account {account_id}")

    def create_user(self, session: RemoteSession, scope_id: str, name: str, description: str = "",
                    timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("create_user", session)
        if failure:
            return failure

        user_id = f"u_{secrets.token_hex(5)}"
        with self._state_lock:
            self.users[user_id] = {
                "id": user_id,
                "scope_id": scope_id,
                "name": name,
                "description": description,
                "version": 1,
                "account_ids": [],
            }

        logger.info(f"Mock created user {user_id}")
        return ConnectorResult(True, f"Created user {user_id}", {"id": user_id, "version": 1})

    def add_accounts_to_user(self, session: RemoteSession, user_id: str, version: int,
                             account_ids: List[str], timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("add_accounts_to_user", session)
        if failure:
            return failure

        with self._state_lock:
            user = self.users.get(user_id)
            if user is None:
                return ConnectorResult(False, f"User {user_id} not found", status=ResultStatus.NOT_FOUND)
            if user["version"] != version:
                return ConnectorResult(False, f"Version mismatch for user {user_id}",
                                       error="version mismatch")
            user["account_ids"].extend(a for a in account_ids if a not in user["account_ids"])
            user["version"] += 1

        return ConnectorResult(True, f"Added {len(account_ids)} accounts to {user_id}",
                               {"id": user_id, "version": user["version"]})

    def get_user(self, session: RemoteSession, user_id: str,
                 timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("get_user", session)
        if failure:
            return failure
        if user_id not in self.users:
            return ConnectorResult(False, f"User {user_id} not found", status=ResultStatus.NOT_FOUND)
        return ConnectorResult(True, f"Found user {user_id}", dict(self.users[user_id]))

    def delete_user(self, session: RemoteSession, user_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        failure = self._begin("delete_user", session)
        if failure:
            return failure

        with self._state_lock:
            if self.users.pop(user_id, None) is None:
                return ConnectorResult(False, f"User {user_id} not found", status=ResultStatus.NOT_FOUND)

        logger.info(f"Mock deleted user {user_id}")
        return ConnectorResult(True, f"Deleted user {user_id}")

    def get_mock_state(self) -> Dict[str, Any]:
        """Get current mock state for inspection."""
        return {
            "accounts": self.accounts,
            "users": self.users,
            "calls": dict(self.calls),
        }
