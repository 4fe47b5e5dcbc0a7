"""
Retention Policy Job for the Vault Provisioner.

Classifies every organization member against the retention rules and
deletes the ones that were never activated, are disabled and stale, or
have been inactive for too long. Runs are sequential and never overlap.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..audit.audit_logger import AuditLogger
from ..config import RetentionSettings
from ..connectors.base_connector import BaseVaultConnector
from ..errors import VaultProvisionerError
from ..models import (
    AuditRecord,
    MembershipRecord,
    MemberType,
    RetentionAction,
    RetentionReason,
    RetentionSummary,
    RetentionVerdict,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_PACING_SECONDS = 0.5
RETENTION_OPERATOR = "retention-job"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RetentionPolicy:
    """
    Retention rules, evaluated in order; the first match wins.

    1. No master password and created more than ``never_activated_days`` ago
    2. Disabled and last active more than ``disabled_stale_days`` ago
    3. Last active more than ``inactive_days`` ago
    4. Otherwise retained

    Owners and admins are retained unconditionally when ``protect_admins``
    is set. A rule whose timestamp is unknown does not match.
    """

    def __init__(self, never_activated_days: int = 7, disabled_stale_days: int = 30,
                 inactive_days: int = 90, protect_admins: bool = True):
        self.never_activated = timedelta(days=never_activated_days)
        self.disabled_stale = timedelta(days=disabled_stale_days)
        self.inactive = timedelta(days=inactive_days)
        self.protect_admins = protect_admins

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> "RetentionPolicy":
        return cls(
            never_activated_days=settings.never_activated_days,
            disabled_stale_days=settings.disabled_stale_days,
            inactive_days=settings.inactive_days,
            protect_admins=settings.protect_admins,
        )

    def classify(self, member: MembershipRecord, now: datetime) -> RetentionVerdict:
        """
        Decide whether a member should be deleted.

        Args:
            member: Member as listed by the vault
            now: Reference time for every age comparison in the run

        Returns:
            RetentionVerdict with the action and its reason
        """
        created_at = _aware(member.created_at)
        last_active = _aware(member.last_active)

        if self.protect_admins and member.type in (MemberType.OWNER, MemberType.ADMIN):
            return self._verdict(member, RetentionAction.RETAIN, RetentionReason.PROTECTED)

        if not member.has_master_password and created_at and now - created_at > self.never_activated:
            return self._verdict(member, RetentionAction.DELETE, RetentionReason.NEVER_ACTIVATED)

        if not member.enabled and last_active and now - last_active > self.disabled_stale:
            return self._verdict(member, RetentionAction.DELETE, RetentionReason.DISABLED_AND_STALE)

        if last_active and now - last_active > self.inactive:
            return self._verdict(member, RetentionAction.DELETE, RetentionReason.INACTIVE)

        return self._verdict(member, RetentionAction.RETAIN, RetentionReason.ACTIVE)

    @staticmethod
    def _verdict(member: MembershipRecord, action: RetentionAction,
                 reason: RetentionReason) -> RetentionVerdict:
        return RetentionVerdict(
            organization_member_id=member.organization_member_id,
            email=member.email,
            action=action,
            reason=reason,
        )


class RetentionJob:
    """
    One sequential pass of the retention policy over the organization.

    A run that starts while another is in progress returns immediately with
    ``skipped=True``. Deletions are paced to stay under the vault's rate
    limit, and a failed deletion is recorded without stopping the pass.
    """

    def __init__(self, connector: BaseVaultConnector, policy: Optional[RetentionPolicy] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 pacing_seconds: float = MIN_PACING_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = utcnow):
        """
        Initialize the job.

        Args:
            connector: Vault membership connector
            policy: Retention rules, defaults to 7/30/90 days
            audit_logger: Receives one record per attempted deletion
            pacing_seconds: Pause between consecutive deletions
            sleep: Injected for tests
            clock: Injected for tests
        """
        if pacing_seconds < MIN_PACING_SECONDS:
            raise ValueError(f"Pacing must be at least {MIN_PACING_SECONDS}s")

        self.connector = connector
        self.policy = policy or RetentionPolicy()
        self.audit_logger = audit_logger
        self.pacing_seconds = pacing_seconds
        self.sleep = sleep
        self.clock = clock
        self._lock = threading.Lock()
        self.last_summary: Optional[RetentionSummary] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run(self, dry_run: bool = False) -> RetentionSummary:
        """
        Run the retention policy once.

        Args:
            dry_run: Classify only, delete nothing

        Returns:
            RetentionSummary of the pass
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Retention run already in progress, skipping")
            return RetentionSummary(started_at=self.clock(), completed_at=self.clock(),
                                    dry_run=dry_run, skipped=True)

        try:
            summary = self._run(dry_run)
        finally:
            self._lock.release()

        self.last_summary = summary
        return summary

    def _run(self, dry_run: bool) -> RetentionSummary:
        run_id = str(uuid.uuid4())
        summary = RetentionSummary(started_at=self.clock(), dry_run=dry_run)
        logger.info(f"Retention run {run_id} started (dry_run={dry_run})")

        try:
            members = self.connector.list_members()
        except VaultProvisionerError as e:
            logger.error(f"Retention run {run_id} could not list members: {e}")
            summary.errors.append(f"list members: {e}")
            summary.completed_at = self.clock()
            return summary

        summary.total_users = len(members)
        now = self.clock()
        attempted = 0

        for member in members:
            verdict = self.policy.classify(member, now)
            summary.verdicts.append(verdict)

            if not verdict.should_delete:
                continue

            if dry_run:
                logger.info(f"Would delete {member.email}: {verdict.reason.value}")
                continue

            if attempted:
                self.sleep(self.pacing_seconds)
            attempted += 1

            if self._delete(member, verdict, run_id, summary):
                summary.deleted += 1

        summary.completed_at = self.clock()
        logger.info(f"Retention run {run_id} finished: {summary.total_users} members, "
                    f"{summary.deleted} deleted, {len(summary.errors)} errors")
        return summary

    def _delete(self, member: MembershipRecord, verdict: RetentionVerdict, run_id: str,
                summary: RetentionSummary) -> bool:
        try:
            result = self.connector.delete_member(member.organization_member_id)
        except Exception as e:
            logger.exception(f"Unexpected error deleting {member.email}")
            summary.errors.append(f"{member.email}: {e}")
            self._audit(member, verdict, run_id, False, str(e), summary)
            return False

        if not result.success:
            logger.error(f"Failed to delete {member.email}: {result.error}")
            summary.errors.append(f"{member.email}: {result.error}")
        else:
            logger.info(f"Deleted {member.email} ({verdict.reason.value})")

        self._audit(member, verdict, run_id, result.success, result.error, summary)
        return result.success

    def _audit(self, member: MembershipRecord, verdict: RetentionVerdict, run_id: str,
               success: bool, error: Optional[str], summary: RetentionSummary):
        if not self.audit_logger:
            return

        record = AuditRecord(
            id=str(uuid.uuid4()),
            event_type="retention",
            operator=RETENTION_OPERATOR,
            user_email=member.email,
            action="delete",
            resource=member.organization_member_id,
            success=success,
            error_message=error,
            workflow_id=run_id,
            metadata={"reason": verdict.reason.value},
        )
        try:
            self.audit_logger.log_event(record)
        except OSError as e:
            logger.error(f"Audit write failed for deletion of {member.email}: {e}")
            summary.errors.append(f"{member.email}: audit write failed: {e}")
