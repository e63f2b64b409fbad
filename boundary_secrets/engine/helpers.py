"""
Helper functions for the credential lifecycle engine.

Login name rendering, password generation and lease TTL arithmetic.
"""

import logging
import re
import secrets
import string
import time
from typing import Optional

from ..errors import InvalidRequest
from ..models import Role

logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 32
PASSWORD_ALPHABET = string.ascii_letters + string.digits
LOGIN_NAME_MAX_LENGTH = 64

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_INVALID_LOGIN_CHARS = re.compile(r"[^a-z0-9._-]")


def render_login_name(role: Role) -> str:
    """
    Render the login name for a new account from the role's template.

    Supported placeholders are {role}, {random} and {unix_time}. A template
    without placeholders gets "-{random}" appended so every request creates
    a distinct login, unless the role asks for the name verbatim.

    Args:
        role: Role holding the template

    Returns:
        Login name, lower-cased and limited to Boundary's allowed characters
    """
    template = role.login_name
    if not role.exact_login_name and not _PLACEHOLDER.search(template):
        template += "-{random}"

    values = {
        "role": role.name,
        "random": secrets.token_hex(4),
        "unix_time": str(int(time.time())),
    }

    def substitute(match):
        key = match.group(1)
        if key not in values:
            raise InvalidRequest(f"unknown placeholder {{{key}}} in login_name of role {role.name}")
        return values[key]

    rendered = _PLACEHOLDER.sub(substitute, template).lower()
    rendered = _INVALID_LOGIN_CHARS.sub("-", rendered).strip("-.")

    if not rendered:
        raise InvalidRequest(f"login_name of role {role.name} renders to an empty name")

    if len(rendered) > LOGIN_NAME_MAX_LENGTH:
        # Keep the random tail, which is what makes the name unique
        rendered = rendered[-LOGIN_NAME_MAX_LENGTH:].lstrip("-.")

    return rendered


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate a random password for a new account."""
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def resolve_ttls(role: Role, default_ttl: int, max_ttl: int) -> tuple:
    """
    Work out the (ttl, max_ttl) pair for a new lease.

    Role values take precedence over engine defaults; ttl never exceeds max_ttl.
    """
    effective_max = role.max_ttl or max_ttl
    effective_ttl = role.ttl or default_ttl
    return min(effective_ttl, effective_max), effective_max


def calculate_renewal_ttl(requested: Optional[int], current_ttl: int, max_ttl: int,
                          age_seconds: float) -> int:
    """
    TTL granted for a renewal.

    Args:
        requested: Increment asked for, or None/0 for the lease's own ttl
        current_ttl: The lease's configured ttl
        max_ttl: Maximum lifetime of the lease measured from issue
        age_seconds: Time since the lease was issued

    Returns:
        Seconds from now the lease may live, never negative
    """
    if requested is not None and requested < 0:
        raise InvalidRequest("renewal increment must not be negative")

    increment = requested or current_ttl
    remaining = int(max_ttl - age_seconds)
    granted = max(0, min(increment, remaining))

    if granted < increment:
        logger.info(f"Renewal capped at {granted}s by max_ttl {max_ttl}s")
    return granted
