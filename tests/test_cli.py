"""
Tests for the brokerctl command line interface.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from boundary_secrets.cli.brokerctl import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def base_args(tmp_path):
    """Mock cluster, state and audit log kept under tmp_path."""
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text(yaml.safe_dump({
        "audit_dir": str(tmp_path / "audit"),
        "log_level": "WARNING",
    }))
    return ["--config", str(settings_file), "--mock", "--storage", str(tmp_path / "state.json")]


@pytest.fixture
def invoke(runner, base_args):
    def _invoke(*args, **kwargs):
        return runner.invoke(cli, [*base_args, *args], obj={}, **kwargs)
    return _invoke


@pytest.fixture
def configured(invoke):
    result = invoke("config", "write", "--addr", "https://cluster.example:9200",
                    "--login-name", "admin", "--password", "secret", "--auth-method-id", "ampw_1234")
    assert result.exit_code == 0, result.output
    result = invoke("role", "write", "test-user-token", "--login-name", "hashicups-user")
    assert result.exit_code == 0, result.output
    return invoke


class TestConfigCommands:

    def test_write_and_show(self, configured):
        result = configured("config", "show")

        assert result.exit_code == 0
        assert "ampw_1234" in result.output
        assert "secret" not in result.output

    def test_password_prompt(self, invoke):
        result = invoke("config", "write", "--addr", "https://cluster.example:9200",
                        "--login-name", "admin", "--auth-method-id", "ampw_1234",
                        input="secret\n")

        assert result.exit_code == 0, result.output
        assert "Configuration written" in result.output

    def test_show_before_write(self, invoke):
        result = invoke("config", "show")

        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_invalid_addr(self, invoke):
        result = invoke("config", "write", "--addr", "cluster", "--login-name", "admin",
                        "--password", "secret", "--auth-method-id", "ampw_1234")

        assert result.exit_code == 1
        assert "addr" in result.output


class TestRoleCommands:

    def test_list_and_show(self, configured):
        listing = configured("role", "list")
        shown = configured("role", "show", "test-user-token")

        assert "test-user-token" in listing.output
        assert "hashicups-user" in shown.output

    def test_role_before_config(self, invoke):
        result = invoke("role", "write", "r", "--login-name", "u")

        assert result.exit_code == 1

    def test_delete(self, configured):
        assert configured("role", "delete", "test-user-token").exit_code == 0
        assert "No roles found" in configured("role", "list").output


class TestCredentialCommands:

    def test_issue_and_revoke(self, configured, tmp_path):
        issued = configured("creds", "test-user-token")
        assert issued.exit_code == 0, issued.output
        assert "hashicups-user-" in issued.output
        assert "ampw_1234" in issued.output

        listing = configured("lease", "list")
        assert "Leases (1)" in listing.output

        state = json.loads((tmp_path / "state.json").read_text())
        [lease_id] = [v["lease_id"] for k, v in state["entries"].items() if k.startswith("lease/")]

        # Each invocation gets a fresh mock cluster, so the objects are already
        # gone and revocation succeeds as a no-op.
        revoked = configured("lease", "revoke", lease_id)
        assert revoked.exit_code == 0, revoked.output
        assert "No outstanding leases" in configured("lease", "list").output

    def test_unknown_role(self, configured):
        result = configured("creds", "missing")

        assert result.exit_code == 1
        assert "role missing not found" in result.output

    def test_tidy_with_nothing_expired(self, configured):
        configured("creds", "test-user-token")

        result = configured("lease", "tidy")

        assert result.exit_code == 0
        assert "Revoked: 0" in result.output

    def test_audit(self, configured):
        configured("creds", "test-user-token")

        result = configured("audit", "--event-type", "issue")

        assert result.exit_code == 0
        assert "Audit Log" in result.output
