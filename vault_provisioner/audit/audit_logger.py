"""
Audit Logging Module.

This module records every vault mutation attempted by the provisioning
workflows and the retention job as append-only JSON lines.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..models import AuditRecord, utcnow

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only logger for audit events.

    One file per UTC day (``audit_YYYY-MM-DD.jsonl``); records are never
    rewritten once appended.
    """

    def __init__(self, audit_dir: str = "audit_logs"):
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
        log_file = self.audit_dir / f"audit_{utcnow().strftime('%Y-%m-%d')}.jsonl"

        try:
            with self._lock, open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record.model_dump(mode="json")) + "\n")
        except OSError as e:
            logger.error(f"Failed to log audit event {record.id}: {e}")
            raise

        logger.info(f"Audit: {record.operator} {record.action} {record.user_email} "
                    f"({'ok' if record.success else 'failed'})")
        return record.id

    def get_events(
        self,
        user_email: Optional[str] = None,
        operator: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit events, most recent first.

        Args:
            user_email: Filter by target email (case-insensitive)
            operator: Filter by operator
            start_date: Filter by start date
            end_date: Filter by end date
            limit: Maximum number of records to return

        Returns:
            List of matching AuditRecords
        """
        results: List[AuditRecord] = []
        email = user_email.lower() if user_email else None

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
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
                    record = AuditRecord.model_validate_json(line)
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable audit record in {log_file.name}: {e}")
                    continue

                if email and record.user_email.lower() != email:
                    continue
                if operator and record.operator != operator:
                    continue
                if start_date and record.timestamp < start_date:
                    continue
                if end_date and record.timestamp > end_date:
                    continue

                results.append(record)

        return results
