"""
Credential Lifecycle Engine for boundary-secrets.

Turns a request for credentials under a role into a password account plus a
user on the identity cluster, and reverses exactly that on revocation.
Creation is a small state machine with a compensating step: if anything
fails after the account exists, the engine deletes what it created before
reporting the error.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..audit import AuditLogger
from ..connectors import BaseConnector, ConnectorResult, ResultStatus
from ..errors import (
    BrokerError,
    InvalidRequest,
    PartialCreateFailure,
    RemoteError,
    RemoteUnavailable,
    RevokeFailure,
    Unauthenticated,
)
from ..models import AuditEvent, AuditRecord, BoundaryConfig, IssuedCredential, Lease
from .config_store import ConfigStore
from .helpers import calculate_renewal_ttl, generate_password, render_login_name, resolve_ttls
from .role_store import RoleStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60 * 60
DEFAULT_MAX_TTL = 24 * 60 * 60
DEFAULT_CLEANUP_TIMEOUT = 5.0


class CredentialState(str, Enum):
    """States of a single credential request."""
    REQUESTED = "requested"
    ACCOUNT_CREATED = "account_created"
    USER_CREATED = "user_created"
    LEASE_ISSUED = "lease_issued"
    COMPENSATED = "compensated"
    FAILED = "failed"


class LifecycleStep:
    """Represents a single remote call made on behalf of a credential."""

    def __init__(self, operation: str, resource: str = ""):
        self.operation = operation
        self.resource = resource
        self.executed_at: Optional[datetime] = None
        self.success: bool = False
        self.error: Optional[str] = None
        self.attempts: int = 0

    def mark_success(self):
        """Mark step as successful."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = True
        self.error = None

    def mark_failure(self, error: str):
        """Mark step as failed."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = False
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary for serialization."""
        return {
            "operation": self.operation,
            "resource": self.resource,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "success": self.success,
            "error": self.error,
            "attempts": self.attempts,
        }


class CredentialTransaction:
    """
    Tracks one credential request through creation.

    Holds the ids of whatever has been created so far, which is exactly
    what compensation needs to undo.
    """

    def __init__(self, role_name: str):
        self.transaction_id = str(uuid.uuid4())
        self.role_name = role_name
        self.state = CredentialState.REQUESTED
        self.started_at = datetime.now(timezone.utc)
        self.steps: List[LifecycleStep] = []
        self.account_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.envelope: Optional[IssuedCredential] = None
        self.ttl: int = 0
        self.max_ttl: int = 0

    def advance(self, state: CredentialState):
        logger.debug(f"Credential {self.transaction_id} for role {self.role_name}: "
                     f"{self.state.value} -> {state.value}")
        self.state = state


class CredentialLifecycleEngine:
    """
    Issues, revokes and renews dynamic Boundary credentials.

    The engine keeps no per-credential state between calls: everything
    revocation needs travels in the IssuedCredential envelope.
    """

    def __init__(
        self,
        connector: BaseConnector,
        config_store: ConfigStore,
        role_store: RoleStore,
        audit_logger: Optional[AuditLogger] = None,
        request_timeout: Optional[float] = None,
        cleanup_timeout: float = DEFAULT_CLEANUP_TIMEOUT,
        default_ttl: int = DEFAULT_TTL,
        max_ttl: int = DEFAULT_MAX_TTL,
    ):
        """
        Initialize the engine.

        Args:
            connector: Identity cluster connector
            config_store: Store holding the cluster configuration
            role_store: Store holding roles
            audit_logger: Optional audit log for lifecycle events
            request_timeout: Default timeout for remote calls (connector default if None)
            cleanup_timeout: Timeout for compensating deletes, independent of the request
            default_ttl: Lease TTL when the role sets none
            max_ttl: Maximum lease lifetime when the role sets none
        """
        self.connector = connector
        self.config_store = config_store
        self.role_store = role_store
        self.audit_logger = audit_logger
        self.request_timeout = request_timeout
        self.cleanup_timeout = cleanup_timeout
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    def issue(self, role_name: str, timeout: Optional[float] = None) -> CredentialTransaction:
        """
        Create a new account and user for role_name.

        Configuration and role are resolved before any remote call is made.

        Args:
            role_name: Role to shape the credential
            timeout: Per-call timeout for this request

        Returns:
            The finished CredentialTransaction, carrying the envelope and TTLs

        Raises:
            NotConfigured, NotFound: local lookups failed, nothing was created
            RemoteError: a remote call failed; anything created was cleaned up
            PartialCreateFailure: a remote call failed and cleanup failed too
        """
        config = self.config_store.get()
        role = self.role_store.get(role_name)

        txn = CredentialTransaction(role.name)
        login_name = render_login_name(role)
        password = generate_password()
        txn.ttl, txn.max_ttl = resolve_ttls(role, self.default_ttl, self.max_ttl)
        timeout = timeout or self.request_timeout

        logger.info(f"Issuing credential {txn.transaction_id} for role {role.name} as {login_name}")

        try:
            account = self._call(config, txn.steps, "create_account", login_name,
                                 self.connector.create_account,
                                 config.auth_method_id, login_name, password, timeout=timeout)
        except BrokerError as e:
            txn.advance(CredentialState.FAILED)
            if isinstance(e, RemoteUnavailable):
                # The request may have reached the cluster before timing out
                logger.warning(f"Account {login_name} may exist on {config.addr} after "
                               f"an unanswered create: {e}")
            self._audit_issue(txn, success=False, error=str(e))
            raise

        txn.account_id = account.data["id"]
        txn.advance(CredentialState.ACCOUNT_CREATED)

        try:
            user = self._call(config, txn.steps, "create_user", login_name,
                              self.connector.create_user,
                              role.scope_id, login_name,
                              f"Dynamic credential for role {role.name}", timeout=timeout)
            txn.user_id = user.data["id"]
            self._call(config, txn.steps, "add_accounts_to_user", txn.user_id,
                       self.connector.add_accounts_to_user,
                       txn.user_id, user.data.get("version", 1), [txn.account_id], timeout=timeout)
        except BaseException as exc:
            # Also runs when the request is interrupted between the two steps
            cleanup_errors = self._compensate(config, txn, exc)
            self._audit_issue(txn, success=False, error=str(exc))
            if cleanup_errors and isinstance(exc, Exception):
                raise PartialCreateFailure(txn.account_id, txn.user_id, exc, cleanup_errors) from exc
            raise

        txn.advance(CredentialState.USER_CREATED)

        txn.envelope = IssuedCredential(
            login_name=login_name,
            password=password,
            auth_method_id=config.auth_method_id,
            account_id=txn.account_id,
            user_id=txn.user_id,
            role_name=role.name,
            scope_id=role.scope_id,
        )
        txn.advance(CredentialState.LEASE_ISSUED)

        self._audit_issue(txn, success=True)
        logger.info(f"Issued credential for role {role.name}: account {txn.account_id}, user {txn.user_id}")
        return txn

    def revoke(self, envelope: IssuedCredential, timeout: Optional[float] = None) -> None:
        """
        Delete the user and account behind an issued credential.

        Both deletes are always attempted. Objects that are already gone
        count as deleted, so revoking twice is harmless.

        Raises:
            NotConfigured: no configuration to reach the cluster with
            RevokeFailure: at least one delete failed; retry later
        """
        config = self.config_store.get()
        timeout = timeout or self.request_timeout
        steps: List[LifecycleStep] = []
        failures = []

        for operation, delete, object_id in (
            ("delete_user", self.connector.delete_user, envelope.user_id),
            ("delete_account", self.connector.delete_account, envelope.account_id),
        ):
            try:
                self._call(config, steps, operation, object_id, delete, object_id,
                           timeout=timeout, allow_not_found=True)
            except BrokerError as e:
                failures.append((operation, str(e)))

        self._audit(AuditEvent.REVOKE, envelope.role_name, envelope.account_id, envelope.user_id,
                    success=not failures, steps=steps,
                    error="; ".join(f"{op}: {err}" for op, err in failures) or None)

        if failures:
            error = RevokeFailure(envelope.account_id, envelope.user_id, failures)
            logger.error(str(error))
            raise error

        logger.info(f"Revoked credential: user {envelope.user_id}, account {envelope.account_id}")

    def renew(self, lease: Lease, increment: Optional[int] = None) -> int:
        """
        Work out the TTL granted for a lease renewal.

        Local bookkeeping only: the remote objects do not expire by themselves.

        Returns:
            Granted TTL in seconds, capped by the lease's max_ttl
        """
        if not lease.renewable:
            raise InvalidRequest(f"lease {lease.lease_id} is not renewable")
        if lease.is_expired:
            raise InvalidRequest(f"lease {lease.lease_id} has expired")

        age = (datetime.now(timezone.utc) - lease.issued_at).total_seconds()
        granted = calculate_renewal_ttl(increment, lease.ttl, lease.max_ttl, age)

        self._audit(AuditEvent.RENEW, lease.envelope.role_name, lease.envelope.account_id,
                    lease.envelope.user_id, success=True, lease_id=lease.lease_id,
                    metadata={"requested": increment, "granted": granted})
        return granted

    def _call(self, config: BoundaryConfig, steps: List[LifecycleStep], operation: str,
              resource: str, method: Callable[..., ConnectorResult], *args,
              timeout: Optional[float] = None, allow_not_found: bool = False) -> ConnectorResult:
        """
        Run one remote operation with a single re-authentication retry.

        Returns:
            The successful ConnectorResult

        Raises:
            Unauthenticated: rejected again after re-authenticating
            RemoteUnavailable: the cluster could not be reached
            RemoteError: any other failure
        """
        step = LifecycleStep(operation, resource)
        steps.append(step)

        try:
            session = self.connector.get_session(config, timeout)
            step.attempts += 1
            result = method(session, *args, timeout=timeout)

            if result.status == ResultStatus.UNAUTHENTICATED:
                logger.info(f"{operation} {resource}: session rejected, re-authenticating")
                self.connector.invalidate(session)
                session = self.connector.get_session(config, timeout)
                step.attempts += 1
                result = method(session, *args, timeout=timeout)
        except BrokerError as e:
            step.mark_failure(str(e))
            raise

        if result.success or (allow_not_found and result.status == ResultStatus.NOT_FOUND):
            if not result.success:
                logger.info(f"{operation} {resource}: already absent")
            step.mark_success()
            return result

        message = f"{operation} {resource} failed: {result.error or result.message}"
        step.mark_failure(message)

        if result.status == ResultStatus.UNAUTHENTICATED:
            raise Unauthenticated(message, operation=operation, object_id=resource)
        if result.status == ResultStatus.UNAVAILABLE:
            raise RemoteUnavailable(message, operation=operation, object_id=resource)
        raise RemoteError(message, operation=operation, object_id=resource)

    def _compensate(self, config: BoundaryConfig, txn: CredentialTransaction,
                    cause: BaseException) -> List[str]:
        """
        Delete whatever a failed creation left behind.

        Uses the independent cleanup timeout. After a successful user delete
        txn.user_id is cleared, so it only names objects still on the cluster.

        Returns:
            Cleanup error messages, empty if everything was removed
        """
        logger.warning(f"Credential creation for role {txn.role_name} failed after creating "
                       f"account {txn.account_id} ({cause!r}); compensating")
        errors = []

        if txn.user_id:
            try:
                self._call(config, txn.steps, "compensate_delete_user", txn.user_id,
                           self.connector.delete_user, txn.user_id,
                           timeout=self.cleanup_timeout, allow_not_found=True)
                txn.user_id = None
            except BrokerError as e:
                errors.append(str(e))

        try:
            self._call(config, txn.steps, "compensate_delete_account", txn.account_id,
                       self.connector.delete_account, txn.account_id,
                       timeout=self.cleanup_timeout, allow_not_found=True)
        except BrokerError as e:
            errors.append(str(e))

        if errors:
            txn.advance(CredentialState.FAILED)
            orphans = f"account {txn.account_id}" + (f", user {txn.user_id}" if txn.user_id else "")
            logger.critical(f"MANUAL CLEANUP REQUIRED: could not remove {orphans} on {config.addr} "
                            f"after failed credential creation for role {txn.role_name}: "
                            f"{'; '.join(errors)}")
        else:
            txn.advance(CredentialState.COMPENSATED)
            logger.info(f"Compensation removed account {txn.account_id}")

        self._audit(AuditEvent.COMPENSATE, txn.role_name, txn.account_id, txn.user_id,
                    success=not errors, error="; ".join(errors) or None,
                    steps=[s for s in txn.steps if s.operation.startswith("compensate_")],
                    metadata={"transaction_id": txn.transaction_id, "cause": repr(cause)})
        return errors

    def _audit_issue(self, txn: CredentialTransaction, success: bool, error: Optional[str] = None):
        self._audit(AuditEvent.ISSUE, txn.role_name, txn.account_id, txn.user_id,
                    success=success, error=error, steps=txn.steps,
                    metadata={"transaction_id": txn.transaction_id, "state": txn.state.value})

    def _audit(self, event_type: AuditEvent, role_name: Optional[str], account_id: Optional[str],
               user_id: Optional[str], success: bool, error: Optional[str] = None,
               steps: Optional[List[LifecycleStep]] = None, lease_id: Optional[str] = None,
               metadata: Optional[Dict[str, Any]] = None):
        if self.audit_logger is None:
            return

        record = AuditRecord(
            id=str(uuid.uuid4()),
            event_type=event_type,
            role_name=role_name,
            account_id=account_id,
            user_id=user_id,
            lease_id=lease_id,
            success=success,
            error_message=error,
            steps=[step.to_dict() for step in steps or []],
            metadata=metadata or {},
        )
        try:
            self.audit_logger.log_event(record)
        except OSError as e:
            logger.error(f"Failed to write audit record {record.id} ({event_type.value}): {e}")
