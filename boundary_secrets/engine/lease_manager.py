"""
Lease Manager for boundary-secrets.

Reference implementation of the host's lease interface: it stores each
issued envelope under a lease, and calls back into the backend to revoke
or renew it. Nothing here runs in the background; expired leases are only
revoked when tidy() is called.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..errors import BrokerError, NotFound
from ..models import IssuedCredential, Lease
from .storage import Storage

logger = logging.getLogger(__name__)

LEASE_PREFIX = "lease/"

RevokeCallback = Callable[[IssuedCredential], None]
RenewCallback = Callable[[Lease, Optional[int]], int]


class LeaseManager:
    """Issues leases and drives their revoke/renew callbacks."""

    def __init__(self, storage: Storage, revoke_callback: RevokeCallback,
                 renew_callback: RenewCallback, lease_path: str = "creds"):
        """
        Initialize the lease manager.

        Args:
            storage: Storage where leases (with their envelopes) are kept
            revoke_callback: Called with the envelope to revoke a lease
            renew_callback: Called with the lease and requested increment,
                returns the granted TTL
            lease_path: Prefix for generated lease ids
        """
        self.storage = storage
        self.revoke_callback = revoke_callback
        self.renew_callback = renew_callback
        self.lease_path = lease_path
        # Serializes revoke/renew of the same lease id
        self._lease_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def issue(self, envelope: IssuedCredential, ttl: int, max_ttl: int,
              role_name: Optional[str] = None) -> Lease:
        """Attach a new lease to an envelope."""
        now = datetime.now(timezone.utc)
        lease_id = f"{self.lease_path}/{role_name or envelope.role_name or 'default'}/{uuid.uuid4().hex}"
        lease = Lease(
            lease_id=lease_id,
            envelope=envelope,
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl),
            ttl=ttl,
            max_ttl=max_ttl,
        )
        self._save(lease)
        logger.info(f"Issued lease {lease_id} (ttl={ttl}s, max_ttl={max_ttl}s)")
        return lease

    def get(self, lease_id: str) -> Lease:
        """
        Get a lease by id.

        Raises:
            NotFound: unknown or already revoked lease
        """
        data = self.storage.get(self._key(lease_id))
        if data is None:
            raise NotFound(f"lease {lease_id} not found")
        return Lease(**data)

    def list(self) -> List[Lease]:
        """All outstanding leases, oldest first."""
        leases = []
        for key in self.storage.list(LEASE_PREFIX):
            data = self.storage.get(LEASE_PREFIX + key)
            if data is not None:
                leases.append(Lease(**data))
        return sorted(leases, key=lambda lease: lease.issued_at)

    def renew(self, lease_id: str, increment: Optional[int] = None) -> int:
        """
        Extend a lease.

        Returns:
            The granted TTL in seconds
        """
        try:
            with self._lock_for(lease_id):
                lease = self.get(lease_id)
                granted = self.renew_callback(lease, increment)

                now = datetime.now(timezone.utc)
                lease.expires_at = now + timedelta(seconds=granted)
                lease.last_renewed_at = now
                self._save(lease)
        finally:
            self._release_lock(lease_id)

        logger.info(f"Renewed lease {lease_id} for {granted}s")
        return granted

    def revoke(self, lease_id: str) -> None:
        """
        Revoke a lease through the revoke callback.

        The lease is deleted only if the callback succeeds; on failure it
        stays in storage so a later revoke or tidy can retry it.
        """
        try:
            with self._lock_for(lease_id):
                lease = self.get(lease_id)
                self.revoke_callback(lease.envelope)
                self.storage.delete(self._key(lease_id))
        finally:
            self._release_lock(lease_id)
        logger.info(f"Revoked lease {lease_id}")

    def tidy(self) -> Dict[str, List[str]]:
        """
        Revoke every expired lease.

        Returns:
            {"revoked": [...], "failed": [...]} lease ids
        """
        revoked, failed = [], []
        for lease in self.list():
            if not lease.is_expired:
                continue
            try:
                self.revoke(lease.lease_id)
                revoked.append(lease.lease_id)
            except NotFound:
                # Revoked concurrently
                continue
            except BrokerError as e:
                logger.warning(f"Failed to revoke expired lease {lease.lease_id}, will retry: {e}")
                failed.append(lease.lease_id)

        if revoked or failed:
            logger.info(f"Tidy revoked {len(revoked)} expired leases, {len(failed)} failed")
        return {"revoked": revoked, "failed": failed}

    def _save(self, lease: Lease):
        self.storage.put(self._key(lease.lease_id), lease.model_dump(mode="json"))

    def _lock_for(self, lease_id: str) -> threading.Lock:
        key = self._key(lease_id)
        with self._locks_guard:
            return self._lease_locks.setdefault(key, threading.Lock())

    def _release_lock(self, lease_id: str):
        # Locks are only kept for leases still in storage
        key = self._key(lease_id)
        with self._locks_guard:
            if self.storage.get(key) is None:
                self._lease_locks.pop(key, None)

    @staticmethod
    def _key(lease_id: str) -> str:
        # Lease ids contain "/", flatten them into a single storage key segment
        return LEASE_PREFIX + lease_id.replace("/", ":")
