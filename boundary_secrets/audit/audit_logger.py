"""
Audit Logging Module.

This module provides functionality for logging every credential issue,
compensation, renewal and revocation as an append-only JSON line.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from ..models import AuditEvent, AuditRecord

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only logger for credential lifecycle events.

    Records go to daily audit_YYYY-MM-DD.jsonl files. Passwords and tokens
    are never part of a record.
    """

    def __init__(self, audit_dir: Union[str, Path] = "audit_logs"):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs
        """
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(self, record: AuditRecord) -> str:
        """
        Log an audit event.

        Args:
            record: The audit record to log

        Returns:
            The record ID
        """
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        log_file = self.audit_dir / f"audit_{date_str}.jsonl"

        data = record.model_dump(mode="json")
        with self._lock:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(data) + "\n")

        logger.debug(f"Logged audit event {record.id} ({record.event_type.value})")
        return record.id

    def get_events(
        self,
        account_id: Optional[str] = None,
        event_type: Optional[AuditEvent] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit events, most recent first.

        Args:
            account_id: Filter by remote account ID
            event_type: Filter by event type
            limit: Maximum number of records to return

        Returns:
            List of matching AuditRecords
        """
        results = []

        log_files = sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True)

        for log_file in log_files:
            if len(results) >= limit:
                break

            with open(log_file, encoding="utf-8") as f:
                lines = f.readlines()

            for line in reversed(lines):
                if len(results) >= limit:
                    break
                if not line.strip():
                    continue

                try:
                    record = AuditRecord(**json.loads(line))
                except ValueError as e:
                    logger.warning(f"Skipping unreadable audit record in {log_file}: {e}")
                    continue

                if account_id and record.account_id != account_id:
                    continue
                if event_type and record.event_type != event_type:
                    continue

                results.append(record)

        return results
