"""
Tests for the Credential Lifecycle Engine.

Covers the creation state machine, compensation on partial failure,
re-authentication, revocation and renewal.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from boundary_secrets.audit import AuditLogger
from boundary_secrets.connectors import ResultStatus
from boundary_secrets.engine import CredentialState
from boundary_secrets.errors import (
    InvalidRequest,
    NotConfigured,
    NotFound,
    PartialCreateFailure,
    RemoteError,
    RemoteUnavailable,
    RevokeFailure,
    Unauthenticated,
)
from boundary_secrets.models import AuditEvent, Lease


class TestIssue:
    """Credential creation."""

    @pytest.fixture
    def engine(self, configured_backend):
        return configured_backend.engine

    def test_issue_returns_complete_envelope(self, engine, connector):
        """Test that a successful issue packages every field of the envelope."""
        txn = engine.issue("test-user-token")

        assert txn.state == CredentialState.LEASE_ISSUED
        envelope = txn.envelope
        assert envelope.login_name.startswith("hashicups-user-")
        assert envelope.password
        assert envelope.auth_method_id == "ampw_1234"
        assert envelope.account_id in connector.accounts
        assert envelope.user_id in connector.users
        assert connector.users[envelope.user_id]["account_ids"] == [envelope.account_id]
        assert connector.accounts[envelope.account_id]["password"] == envelope.password

    def test_ids_are_distinct_per_request(self, engine):
        """Test that two reads never reuse remote objects."""
        first = engine.issue("test-user-token").envelope
        second = engine.issue("test-user-token").envelope

        assert first.account_id != second.account_id
        assert first.user_id != second.user_id
        assert first.login_name != second.login_name
        assert first.password != second.password

    def test_unknown_role_makes_no_remote_calls(self, engine, connector):
        """Test that a missing role fails before touching the cluster."""
        with pytest.raises(NotFound, match="role missing not found"):
            engine.issue("missing")

        assert connector.remote_calls == 0

    def test_not_configured(self, backend, connector):
        """Test that issue without configuration fails locally."""
        with pytest.raises(NotConfigured):
            backend.engine.issue("test-user-token")

        assert connector.remote_calls == 0

    def test_role_ttls_are_applied(self, configured_backend):
        """Test that role TTLs override engine defaults."""
        configured_backend.role_store.put_data("short", {"login_name": "short", "ttl": 60, "max_ttl": 120})

        txn = configured_backend.engine.issue("short")

        assert txn.ttl == 60
        assert txn.max_ttl == 120

    def test_account_create_failure_needs_no_cleanup(self, engine, connector):
        """Test that a failed account create aborts without further calls."""
        connector.fail_next("create_account")

        with pytest.raises(RemoteError, match="create_account"):
            engine.issue("test-user-token")

        assert connector.calls["create_user"] == 0
        assert connector.calls["delete_account"] == 0
        assert connector.accounts == {}

    def test_account_create_unavailable(self, engine, connector):
        """Test that an unreachable cluster surfaces as RemoteUnavailable."""
        connector.fail_next("create_account", ResultStatus.UNAVAILABLE)

        with pytest.raises(RemoteUnavailable) as exc_info:
            engine.issue("test-user-token")

        assert exc_info.value.operation == "create_account"
        assert connector.calls["delete_account"] == 0


class TestCompensation:
    """Cleanup after a failure between account and user creation."""

    @pytest.fixture
    def engine(self, configured_backend):
        return configured_backend.engine

    def test_user_create_failure_deletes_account(self, engine, connector):
        """Test that the account is removed when user creation fails."""
        connector.fail_next("create_user")

        with pytest.raises(RemoteError, match="create_user") as exc_info:
            engine.issue("test-user-token")

        assert not isinstance(exc_info.value, PartialCreateFailure)
        assert connector.calls["create_account"] == 1
        assert connector.calls["delete_account"] == 1
        assert connector.accounts == {}
        assert connector.users == {}

    def test_association_failure_deletes_user_and_account(self, engine, connector):
        """Test that a failed association removes both created objects."""
        connector.fail_next("add_accounts_to_user")

        with pytest.raises(RemoteError, match="add_accounts_to_user"):
            engine.issue("test-user-token")

        assert connector.calls["delete_user"] == 1
        assert connector.calls["delete_account"] == 1
        assert connector.accounts == {}
        assert connector.users == {}

    def test_failed_compensation_names_orphaned_account(self, engine, connector, caplog):
        """Test that a failed cleanup reports the orphaned account id."""
        connector.fail_next("create_user")
        connector.fail_next("delete_account")

        with pytest.raises(PartialCreateFailure) as exc_info:
            engine.issue("test-user-token")

        orphan_id = next(iter(connector.accounts))
        error = exc_info.value
        assert error.account_id == orphan_id
        assert error.user_id is None
        assert orphan_id in str(error)
        assert isinstance(error.__cause__, RemoteError)
        assert any(r.levelname == "CRITICAL" and orphan_id in r.getMessage() for r in caplog.records)

    def test_failed_user_cleanup_names_orphaned_user(self, engine, connector):
        """Test that an orphaned user is named when its delete fails."""
        connector.fail_next("add_accounts_to_user")
        connector.fail_next("delete_user", ResultStatus.UNAVAILABLE)

        with pytest.raises(PartialCreateFailure) as exc_info:
            engine.issue("test-user-token")

        orphan_user = next(iter(connector.users))
        assert exc_info.value.user_id == orphan_user
        # The account delete was still attempted and succeeded
        assert connector.accounts == {}

    def test_compensation_uses_cleanup_timeout(self, engine, connector):
        """Test that cleanup runs with its own timeout, not the request's."""
        connector.fail_next("create_user")

        with patch.object(connector, "delete_account", wraps=connector.delete_account) as delete_account:
            with pytest.raises(RemoteError):
                engine.issue("test-user-token", timeout=30.0)

        assert delete_account.call_args.kwargs["timeout"] == 1.5

    def test_interrupted_request_still_compensates(self, engine, connector):
        """Test that an interruption after account creation still cleans up."""
        with patch.object(connector, "create_user", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                engine.issue("test-user-token")

        assert connector.calls["create_account"] == 1
        assert connector.calls["delete_account"] == 1
        assert connector.accounts == {}


class TestReauthentication:
    """One-shot re-authentication on rejected sessions."""

    @pytest.fixture
    def engine(self, configured_backend):
        return configured_backend.engine

    def test_expired_session_is_renewed_once(self, engine, connector):
        """Test that an expired token triggers one re-login and a retry."""
        engine.issue("test-user-token")
        assert connector.calls["authenticate"] == 1

        connector.expire_tokens()
        txn = engine.issue("test-user-token")

        assert txn.state == CredentialState.LEASE_ISSUED
        assert connector.calls["authenticate"] == 2
        assert connector.calls["create_account"] == 3  # one rejected attempt

    def test_second_rejection_is_unauthenticated(self, engine, connector):
        """Test that a rejection after re-login is not retried again."""
        connector.fail_next("create_account", ResultStatus.UNAUTHENTICATED, times=2)

        with pytest.raises(Unauthenticated):
            engine.issue("test-user-token")

        assert connector.calls["authenticate"] == 2
        assert connector.calls["create_account"] == 2

    def test_bad_admin_credentials_are_not_retried(self, configured_backend, connector):
        """Test that rejected admin credentials fail the request immediately."""
        config = dict(configured_backend.config_store.get().model_dump(), password="wrong")
        configured_backend.config_store.put_data(config)

        with pytest.raises(Unauthenticated, match="admin"):
            configured_backend.engine.issue("test-user-token")

        assert connector.calls["authenticate"] == 1
        assert connector.calls["create_account"] == 0


class TestRevoke:
    """Revocation of issued credentials."""

    @pytest.fixture
    def engine(self, configured_backend):
        return configured_backend.engine

    def test_revoke_removes_user_and_account(self, engine, connector):
        """Test that revoke deletes exactly the issued objects."""
        other = engine.issue("test-user-token").envelope
        envelope = engine.issue("test-user-token").envelope

        engine.revoke(envelope)

        session = connector.get_session(engine.config_store.get())
        assert connector.get_user(session, envelope.user_id).status == ResultStatus.NOT_FOUND
        assert connector.get_account(session, envelope.account_id).status == ResultStatus.NOT_FOUND
        assert other.account_id in connector.accounts
        assert other.user_id in connector.users

    def test_revoke_twice_is_idempotent(self, engine, connector):
        """Test that revoking already-deleted objects succeeds."""
        envelope = engine.issue("test-user-token").envelope

        engine.revoke(envelope)
        engine.revoke(envelope)

        assert connector.calls["delete_user"] == 2
        assert connector.calls["delete_account"] == 2

    def test_revoke_attempts_both_deletes(self, engine, connector):
        """Test that a failed user delete does not stop the account delete."""
        envelope = engine.issue("test-user-token").envelope
        connector.fail_next("delete_user")

        with pytest.raises(RevokeFailure) as exc_info:
            engine.revoke(envelope)

        assert [op for op, _ in exc_info.value.failures] == ["delete_user"]
        assert envelope.account_id not in connector.accounts
        assert envelope.user_id in connector.users

    def test_revoke_does_not_need_the_role(self, configured_backend, connector):
        """Test that deleting the role leaves outstanding credentials revocable."""
        envelope = configured_backend.engine.issue("test-user-token").envelope
        configured_backend.role_store.delete("test-user-token")

        configured_backend.engine.revoke(envelope)

        assert connector.accounts == {}
        assert connector.users == {}

    def test_revoke_reauthenticates(self, engine, connector):
        """Test that revoke survives an expired session."""
        envelope = engine.issue("test-user-token").envelope
        connector.expire_tokens()

        engine.revoke(envelope)

        assert connector.users == {}
        assert connector.calls["authenticate"] == 2


class TestRenew:
    """Lease renewal bookkeeping."""

    @pytest.fixture
    def lease(self, configured_backend):
        txn = configured_backend.engine.issue("test-user-token")
        now = datetime.now(timezone.utc)
        return Lease(
            lease_id="creds/test-user-token/abc",
            envelope=txn.envelope,
            issued_at=now - timedelta(seconds=100),
            expires_at=now + timedelta(seconds=200),
            ttl=300,
            max_ttl=1000,
        )

    def test_renew_makes_no_remote_calls(self, configured_backend, connector, lease):
        """Test that renewal never reaches the cluster."""
        calls_before = connector.remote_calls

        granted = configured_backend.engine.renew(lease, 200)

        assert granted == 200
        assert connector.remote_calls == calls_before

    def test_renew_defaults_to_lease_ttl(self, configured_backend, lease):
        assert configured_backend.engine.renew(lease) == 300

    def test_renew_capped_by_max_ttl(self, configured_backend, lease):
        """Test that renewals never extend past max_ttl from issue."""
        granted = configured_backend.engine.renew(lease, 5000)

        assert 895 <= granted <= 900

    def test_non_renewable_lease(self, configured_backend, lease):
        lease.renewable = False

        with pytest.raises(InvalidRequest, match="not renewable"):
            configured_backend.engine.renew(lease)

    def test_expired_lease_cannot_be_renewed(self, configured_backend, lease):
        """Test that a lease past its expiry stays expired even within max_ttl."""
        lease.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

        with pytest.raises(InvalidRequest, match="expired"):
            configured_backend.engine.renew(lease, 60)


class TestAudit:
    """Audit trail of lifecycle events."""

    @pytest.fixture
    def engine(self, configured_backend, tmp_path):
        configured_backend.engine.audit_logger = AuditLogger(tmp_path / "audit")
        return configured_backend.engine

    def test_issue_and_revoke_are_audited(self, engine):
        envelope = engine.issue("test-user-token").envelope
        engine.revoke(envelope)

        records = engine.audit_logger.get_events(account_id=envelope.account_id)

        assert [r.event_type for r in records] == [AuditEvent.REVOKE, AuditEvent.ISSUE]
        assert all(r.success for r in records)
        assert envelope.password not in str([r.model_dump() for r in records])

    def test_compensation_is_audited(self, engine, connector):
        connector.fail_next("create_user")

        with pytest.raises(RemoteError):
            engine.issue("test-user-token")

        compensations = engine.audit_logger.get_events(event_type=AuditEvent.COMPENSATE)
        assert len(compensations) == 1
        assert compensations[0].success is True
        assert [s["operation"] for s in compensations[0].steps] == ["compensate_delete_account"]
