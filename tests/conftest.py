"""
Shared fixtures for the boundary-secrets tests.
"""

import pytest

from boundary_secrets.backend import Backend, Operation, Request
from boundary_secrets.connectors import MockConnector
from boundary_secrets.engine import InMemoryStorage

CLUSTER_CONFIG = {
    "addr": "https://cluster.example:9200",
    "login_name": "admin",
    "password": "secret",
    "auth_method_id": "ampw_1234",
}


@pytest.fixture
def cluster_config():
    return dict(CLUSTER_CONFIG)


@pytest.fixture
def connector():
    """In-memory cluster that accepts the scenario admin credentials."""
    return MockConnector(admin_login_name="admin", admin_password="secret")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def backend(storage, connector):
    return Backend(storage, connector, cleanup_timeout=1.5)


@pytest.fixture
def configured_backend(backend):
    """Backend with the cluster config and the test-user-token role written."""
    backend.handle_request(Request(operation=Operation.CREATE, path="config", data=dict(CLUSTER_CONFIG)))
    backend.handle_request(Request(
        operation=Operation.UPDATE,
        path="role/test-user-token",
        data={"login_name": "hashicups-user"},
    ))
    return backend
