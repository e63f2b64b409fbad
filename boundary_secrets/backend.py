"""
Backend for boundary-secrets.

Routes host requests (an operation on a path) to the configuration store,
role store and credential lifecycle engine, and wires the lease manager's
revoke/renew callbacks back into the engine.
"""

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel, Field

from .audit import AuditLogger
from .connectors import BaseConnector, get_connector
from .engine import (
    ConfigStore,
    CredentialLifecycleEngine,
    InMemoryStorage,
    JSONFileStorage,
    LeaseManager,
    RoleStore,
    Storage,
)
from .errors import BrokerError, InvalidRequest, PartialCreateFailure, UnsupportedOperation
from .models import CredentialResponse, IssuedCredential, Lease

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Request operations understood by the backend."""
    CREATE = "create"
    UPDATE = "update"
    READ = "read"
    DELETE = "delete"
    LIST = "list"


class Request(BaseModel):
    """A host request routed to the backend."""
    operation: Operation
    path: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(None, description="Per-call timeout for remote operations")


class Response(BaseModel):
    """Response data, plus the lease when a credential was issued."""
    data: Dict[str, Any] = Field(default_factory=dict)
    lease: Optional[Lease] = None


Handler = Callable[[Request, Dict[str, str]], Optional[Response]]


class Backend:
    """
    Dynamic Boundary credential backend.

    Paths:
        config          create/update/read/delete the cluster configuration
        role/           list roles
        role/<name>     create/update/read/delete a role
        creds/<name>    read: issue a credential under the role
    """

    def __init__(
        self,
        storage: Storage,
        connector: BaseConnector,
        audit_logger: Optional[AuditLogger] = None,
        request_timeout: Optional[float] = None,
        cleanup_timeout: float = 5.0,
        default_ttl: int = 3600,
        max_ttl: int = 86400,
    ):
        self.storage = storage
        self.connector = connector
        self.config_store = ConfigStore(storage, connector)
        self.role_store = RoleStore(storage)
        self.engine = CredentialLifecycleEngine(
            connector,
            self.config_store,
            self.role_store,
            audit_logger=audit_logger,
            request_timeout=request_timeout,
            cleanup_timeout=cleanup_timeout,
            default_ttl=default_ttl,
            max_ttl=max_ttl,
        )
        self.leases = LeaseManager(storage, revoke_callback=self.revoke, renew_callback=self.renew)

        self._routes: List[Tuple[Pattern, Dict[Operation, Handler]]] = [
            (re.compile(r"^config/?$"), {
                Operation.CREATE: self._write_config,
                Operation.UPDATE: self._write_config,
                Operation.READ: self._read_config,
                Operation.DELETE: self._delete_config,
            }),
            (re.compile(r"^role/?$"), {
                Operation.LIST: self._list_roles,
            }),
            (re.compile(r"^role/(?P<name>[^/]+)$"), {
                Operation.CREATE: self._write_role,
                Operation.UPDATE: self._write_role,
                Operation.READ: self._read_role,
                Operation.DELETE: self._delete_role,
            }),
            (re.compile(r"^creds/(?P<name>[^/]+)$"), {
                Operation.READ: self._read_creds,
            }),
        ]

    def handle_request(self, request: Request) -> Optional[Response]:
        """
        Dispatch a request.

        Returns:
            Response, or None for writes and deletes

        Raises:
            UnsupportedOperation: no route for the path/operation pair
        """
        path = request.path.strip().lstrip("/")
        for pattern, handlers in self._routes:
            match = pattern.match(path)
            if not match:
                continue
            handler = handlers.get(request.operation)
            if handler is None:
                raise UnsupportedOperation(f"operation {request.operation.value} not supported on {path}")
            logger.debug(f"Handling {request.operation.value} {path}")
            return handler(request, match.groupdict())

        raise UnsupportedOperation(f"no handler for path {path}")

    def revoke(self, envelope: IssuedCredential) -> None:
        """Host revoke callback."""
        self.engine.revoke(envelope)

    def renew(self, lease: Lease, increment: Optional[int] = None) -> int:
        """Host renew callback; returns the granted TTL."""
        return self.engine.renew(lease, increment)

    def revoke_lease(self, lease_id: str) -> None:
        self.leases.revoke(lease_id)

    def renew_lease(self, lease_id: str, increment: Optional[int] = None) -> int:
        return self.leases.renew(lease_id, increment)

    def tidy_leases(self) -> Dict[str, List[str]]:
        return self.leases.tidy()

    def list_leases(self) -> List[Lease]:
        return self.leases.list()

    def _write_config(self, request: Request, params: Dict[str, str]) -> None:
        self.config_store.put_data(request.data)
        return None

    def _read_config(self, request: Request, params: Dict[str, str]) -> Response:
        return Response(data=self.config_store.get().public_view())

    def _delete_config(self, request: Request, params: Dict[str, str]) -> None:
        self.config_store.delete()
        return None

    def _list_roles(self, request: Request, params: Dict[str, str]) -> Response:
        self.config_store.get()
        return Response(data={"keys": self.role_store.list()})

    def _write_role(self, request: Request, params: Dict[str, str]) -> None:
        self.config_store.get()
        name = params["name"]
        if request.data.get("name") not in (None, name):
            raise InvalidRequest(f"role name in body does not match path ({name})")
        self.role_store.put_data(name, request.data)
        return None

    def _read_role(self, request: Request, params: Dict[str, str]) -> Response:
        self.config_store.get()
        return Response(data=self.role_store.get(params["name"]).model_dump())

    def _delete_role(self, request: Request, params: Dict[str, str]) -> None:
        self.config_store.get()
        self.role_store.delete(params["name"])
        return None

    def _read_creds(self, request: Request, params: Dict[str, str]) -> Response:
        txn = self.engine.issue(params["name"], timeout=request.timeout)
        envelope = txn.envelope
        try:
            lease = self.leases.issue(envelope, txn.ttl, txn.max_ttl, role_name=txn.role_name)
        except BaseException as exc:
            # Without a stored lease nothing could ever revoke the new objects
            self._discard_unleased(envelope, exc)
            raise

        credential = CredentialResponse(
            login_name=envelope.login_name,
            password=envelope.password,
            auth_method_id=envelope.auth_method_id,
            account_id=envelope.account_id,
            user_id=envelope.user_id,
            lease_id=lease.lease_id,
            lease_duration=lease.ttl,
            renewable=lease.renewable,
        )
        return Response(data=credential.model_dump(), lease=lease)

    def _discard_unleased(self, envelope: IssuedCredential, cause: BaseException) -> None:
        """
        Revoke a credential whose lease could not be stored.

        Raises:
            PartialCreateFailure: the revoke failed too; the objects need manual cleanup
        """
        logger.warning(f"Failed to store lease for account {envelope.account_id}, "
                       f"user {envelope.user_id} ({cause!r}); revoking")
        try:
            self.engine.revoke(envelope, timeout=self.engine.cleanup_timeout)
        except BrokerError as e:
            logger.critical(f"MANUAL CLEANUP REQUIRED: could not remove account {envelope.account_id}, "
                            f"user {envelope.user_id} after the lease write failed: {e}")
            if isinstance(cause, Exception):
                raise PartialCreateFailure(envelope.account_id, envelope.user_id, cause, [str(e)]) from cause


def build_backend(settings: Dict[str, Any], connector: Optional[BaseConnector] = None) -> Backend:
    """
    Build a Backend from settings.

    Args:
        settings: Dictionary from settings.load_settings()
        connector: Connector to use instead of one built from settings
    """
    storage_file = settings.get("storage_file")
    storage: Storage = JSONFileStorage(Path(storage_file)) if storage_file else InMemoryStorage()

    if connector is None:
        connector = get_connector(
            {"timeout": settings.get("request_timeout"), "tls_verify": settings.get("tls_verify", True)},
            mock=settings.get("mock_mode", False),
        )

    audit_dir = settings.get("audit_dir")
    audit_logger = AuditLogger(audit_dir) if audit_dir else None

    return Backend(
        storage,
        connector,
        audit_logger=audit_logger,
        request_timeout=settings.get("request_timeout"),
        cleanup_timeout=settings.get("cleanup_timeout", 5.0),
        default_ttl=settings.get("default_ttl", 3600),
        max_ttl=settings.get("max_ttl", 86400),
    )
