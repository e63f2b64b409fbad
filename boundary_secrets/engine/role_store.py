"""
Role Store for boundary-secrets.

Named credential templates referenced by credential reads.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from ..errors import InvalidRequest, NotFound
from ..models import Role
from .config_store import _format_validation_error
from .storage import Storage

logger = logging.getLogger(__name__)

ROLE_PREFIX = "role/"


class RoleStore:
    """Persists roles under role/<name>."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def put(self, role: Role) -> None:
        """Create or overwrite a role."""
        self.storage.put(ROLE_PREFIX + role.name, role.model_dump())
        logger.info(f"Stored role {role.name}")

    def put_data(self, name: str, data: Dict[str, Any]) -> Role:
        """Validate raw request data and store it as role name."""
        try:
            role = Role(**{**(data or {}), "name": name})
        except ValidationError as e:
            raise InvalidRequest(_format_validation_error(f"role {name}", e)) from e
        self.put(role)
        return role

    def get(self, name: str) -> Role:
        """
        Get a role by name.

        Raises:
            NotFound: no role with that name exists
        """
        data = self.storage.get(ROLE_PREFIX + name)
        if data is None:
            raise NotFound(f"role {name} not found")
        return Role(**data)

    def delete(self, name: str) -> bool:
        """Delete a role. Leases already issued under it are unaffected."""
        existed = self.storage.delete(ROLE_PREFIX + name)
        if existed:
            logger.info(f"Deleted role {name}")
        return existed

    def list(self) -> List[str]:
        """Names of all roles, sorted."""
        return self.storage.list(ROLE_PREFIX)
