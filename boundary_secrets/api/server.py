"""
FastAPI Server for boundary-secrets.

Exposes the backend's config, role, credential and lease operations over
HTTP. Endpoints are plain functions so FastAPI runs each request on its
worker thread pool; the backend is shared between them.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request as HTTPRequest, status
from fastapi.responses import JSONResponse, Response as HTTPResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..backend import Backend, Operation, Request, build_backend
from ..errors import (
    BrokerError,
    InvalidRequest,
    NotConfigured,
    NotFound,
    PartialCreateFailure,
    RemoteError,
    RemoteUnavailable,
    RevokeFailure,
    Unauthenticated,
    UnsupportedOperation,
)
from ..settings import load_settings

logger = logging.getLogger(__name__)


class ConfigRequest(BaseModel):
    """Cluster configuration write."""
    addr: str = Field(..., description="Boundary controller URL")
    login_name: str = Field(..., description="Admin login name")
    password: str = Field(..., description="Admin password")
    auth_method_id: str = Field(..., description="Password auth method ID")


class RoleRequest(BaseModel):
    """Role write."""
    login_name: str = Field(..., description="Login name template or fixed value")
    scope_id: str = Field("global", description="Scope for created users")
    exact_login_name: bool = Field(False, description="Use login_name verbatim")
    ttl: int = Field(0, description="Lease TTL in seconds")
    max_ttl: int = Field(0, description="Maximum lease TTL in seconds")


class RenewRequest(BaseModel):
    """Lease renewal."""
    increment: Optional[int] = Field(None, description="Requested TTL in seconds")


class LeaseResponse(BaseModel):
    """Lease metadata (the envelope is never returned)."""
    lease_id: str
    role_name: Optional[str]
    account_id: str
    user_id: str
    issued_at: str
    expires_at: str
    ttl: int
    max_ttl: int
    renewable: bool


# Shared backend (initialized on startup unless configured beforehand)
backend: Optional[Backend] = None

ERROR_STATUS = [
    (NotConfigured, status.HTTP_412_PRECONDITION_FAILED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidRequest, status.HTTP_400_BAD_REQUEST),
    (UnsupportedOperation, status.HTTP_405_METHOD_NOT_ALLOWED),
    (RemoteUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (Unauthenticated, status.HTTP_502_BAD_GATEWAY),
    (PartialCreateFailure, status.HTTP_502_BAD_GATEWAY),
    (RevokeFailure, status.HTTP_502_BAD_GATEWAY),
    (RemoteError, status.HTTP_502_BAD_GATEWAY),
]


def configure(new_backend: Optional[Backend]) -> None:
    """Set the backend used by the API."""
    global backend
    backend = new_backend


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    if backend is None:
        logger.info("Initializing boundary-secrets backend from settings")
        configure(build_backend(load_settings()))

    yield

    logger.info("Shutting down boundary-secrets API server")


app = FastAPI(
    title="boundary-secrets",
    description="Dynamic Boundary credentials with lease-driven revocation",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(BrokerError)
async def broker_error_handler(request: HTTPRequest, exc: BrokerError):
    """Map broker errors to HTTP status codes."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break

    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=code, content={"error": type(exc).__name__, "detail": str(exc)})


def _backend() -> Backend:
    if backend is None:
        raise HTTPException(status_code=503, detail="Backend not available")
    return backend


def _handle(operation: Operation, path: str, data: Optional[Dict[str, Any]] = None,
            timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
    response = _backend().handle_request(
        Request(operation=operation, path=path, data=data or {}, timeout=timeout)
    )
    return response.data if response is not None else None


@app.get("/health")
def health_check():
    """Health check endpoint."""
    current = backend
    return {
        "status": "healthy" if current is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "configured": current.config_store.exists() if current is not None else False,
        "mock_mode": current.connector.is_mock_mode() if current is not None else None,
    }


@app.put("/v1/config", status_code=204)
def write_config(config: ConfigRequest):
    """Write (replace) the cluster configuration."""
    _handle(Operation.UPDATE, "config", config.model_dump())
    return HTTPResponse(status_code=204)


@app.get("/v1/config")
def read_config():
    """Read the cluster configuration, without the admin password."""
    return _handle(Operation.READ, "config")


@app.delete("/v1/config", status_code=204)
def delete_config():
    _handle(Operation.DELETE, "config")
    return HTTPResponse(status_code=204)


@app.get("/v1/roles")
def list_roles():
    return _handle(Operation.LIST, "role/")


@app.put("/v1/roles/{name}", status_code=204)
def write_role(name: str, role: RoleRequest):
    """Create or overwrite a role."""
    _handle(Operation.UPDATE, f"role/{name}", role.model_dump())
    return HTTPResponse(status_code=204)


@app.get("/v1/roles/{name}")
def read_role(name: str):
    return _handle(Operation.READ, f"role/{name}")


@app.delete("/v1/roles/{name}", status_code=204)
def delete_role(name: str):
    _handle(Operation.DELETE, f"role/{name}")
    return HTTPResponse(status_code=204)


@app.get("/v1/creds/{role_name}")
def read_creds(role_name: str, timeout: Optional[float] = Query(None, gt=0, description="Remote call timeout")):
    """
    Issue a credential under a role.

    Creates a fresh account and user on the cluster and returns the login
    name and password together with the lease that controls their lifetime.
    """
    return _handle(Operation.READ, f"creds/{role_name}", timeout=timeout)


@app.get("/v1/leases", response_model=List[LeaseResponse])
def list_leases():
    return [
        LeaseResponse(
            lease_id=lease.lease_id,
            role_name=lease.envelope.role_name,
            account_id=lease.envelope.account_id,
            user_id=lease.envelope.user_id,
            issued_at=lease.issued_at.isoformat(),
            expires_at=lease.expires_at.isoformat(),
            ttl=lease.ttl,
            max_ttl=lease.max_ttl,
            renewable=lease.renewable,
        )
        for lease in _backend().list_leases()
    ]


@app.post("/v1/leases/tidy")
def tidy_leases():
    """Revoke every expired lease."""
    return _backend().tidy_leases()


@app.post("/v1/leases/{lease_id:path}/renew")
def renew_lease(lease_id: str, renew: Optional[RenewRequest] = None):
    granted = _backend().renew_lease(lease_id, renew.increment if renew else None)
    return {"lease_id": lease_id, "lease_duration": granted}


@app.post("/v1/leases/{lease_id:path}/revoke", status_code=204)
def revoke_lease(lease_id: str):
    _backend().revoke_lease(lease_id)
    return HTTPResponse(status_code=204)


def start_server(host: str = "127.0.0.1", port: int = 8200, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "boundary_secrets.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()
