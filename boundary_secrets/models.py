"""
Core data models for boundary-secrets.

This module defines the Pydantic models used throughout the broker
for cluster configuration, roles, issued credentials, leases, and audit records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BoundaryConfig(BaseModel):
    """Connection details and administrative credentials for the identity cluster."""
    addr: str = Field(..., description="Base URL of the Boundary cluster")
    login_name: str = Field(..., description="Administrative login name")
    password: str = Field(..., repr=False, description="Administrative password")
    auth_method_id: str = Field(..., description="Password auth method used for logins and new accounts")

    @field_validator('addr', 'login_name', 'password', 'auth_method_id')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('must not be empty')
        return v.strip()

    @field_validator('addr')
    @classmethod
    def validate_addr(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError('must be an absolute http(s) URL')
        return v.rstrip('/')

    def fingerprint(self) -> tuple:
        """Identity of the configuration as far as session reuse is concerned."""
        return (self.addr, self.auth_method_id, self.login_name, self.password)

    def public_view(self) -> Dict[str, str]:
        """Configuration without the admin password."""
        return {
            "addr": self.addr,
            "login_name": self.login_name,
            "auth_method_id": self.auth_method_id,
        }


class Role(BaseModel):
    """Named template controlling how a dynamic credential is shaped."""
    name: str = Field(..., description="Unique role name")
    login_name: str = Field(..., description="Login name template or fixed value")
    scope_id: str = Field("global", description="Scope in which users are created")
    exact_login_name: bool = Field(False, description="Use login_name verbatim instead of adding a random suffix")
    ttl: int = Field(0, ge=0, description="Default lease TTL in seconds (0 uses the engine default)")
    max_ttl: int = Field(0, ge=0, description="Maximum lease TTL in seconds (0 uses the engine default)")

    @field_validator('name', 'login_name', 'scope_id')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('must not be empty')
        return v.strip()

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if '/' in v:
            raise ValueError('role name must not contain "/"')
        return v

    @model_validator(mode='after')
    def validate_ttls(self) -> 'Role':
        if self.ttl and self.max_ttl and self.ttl > self.max_ttl:
            raise ValueError('ttl cannot be greater than max_ttl')
        return self


class IssuedCredential(BaseModel):
    """
    Envelope for one issued credential.

    account_id and user_id are the ownership handles needed to delete the
    remote objects; revocation reads nothing else.
    """
    login_name: str
    password: str = Field(..., repr=False)
    auth_method_id: str
    account_id: str
    user_id: str
    role_name: Optional[str] = None
    scope_id: Optional[str] = None
    issued_at: datetime = Field(default_factory=utcnow)


class Lease(BaseModel):
    """Host-side lease holding an envelope until it is revoked."""
    lease_id: str
    envelope: IssuedCredential
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    ttl: int
    max_ttl: int
    renewable: bool = True
    last_renewed_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        return utcnow() >= self.expires_at

    @property
    def remaining_seconds(self) -> int:
        return max(0, int((self.expires_at - utcnow()).total_seconds()))


class CredentialResponse(BaseModel):
    """Caller-visible result of a credential read."""
    login_name: str
    password: str
    auth_method_id: str
    account_id: str
    user_id: str
    lease_id: str
    lease_duration: int
    renewable: bool


class AuditEvent(str, Enum):
    """Lifecycle events written to the audit log."""
    ISSUE = "issue"
    COMPENSATE = "compensate"
    REVOKE = "revoke"
    RENEW = "renew"


class AuditRecord(BaseModel):
    """Audit record for one credential lifecycle event."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=utcnow)
    event_type: AuditEvent
    role_name: Optional[str] = None
    account_id: Optional[str] = None
    user_id: Optional[str] = None
    lease_id: Optional[str] = None
    success: bool = Field(..., description="Whether the action succeeded")
    error_message: Optional[str] = Field(None, description="Error details if failed")
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
