"""
Provisioning service for the Vault Provisioner.

Wires settings into connectors, the policy mapper, the audit trail and
the retention job, and exposes the operations the chat front-end, the
HTTP API and the CLI share.
"""

import logging
from typing import List, Optional

from .audit.audit_logger import AuditLogger
from .config import Settings
from .connectors import (
    BaseDirectory,
    BaseVaultConnector,
    SlackNotifier,
    build_directory,
    build_notifier,
    build_vault_connector,
)
from .engine.policy_mapper import PolicyMapper
from .engine.retention import RetentionJob, RetentionPolicy
from .engine.scheduler import RetentionScheduler
from .models import AccessGrant, MembershipRecord, MemberStatus, RetentionSummary, UserFacingResult
from .workflows import ConfirmationWorkflow, ProvisioningWorkflow

logger = logging.getLogger(__name__)


class ProvisioningService:
    """Main entry point for vault membership operations."""

    def __init__(self, settings: Settings,
                 connector: Optional[BaseVaultConnector] = None,
                 directory: Optional[BaseDirectory] = None,
                 policy_mapper: Optional[PolicyMapper] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 notifier: Optional[SlackNotifier] = None,
                 retention_job: Optional[RetentionJob] = None):
        """
        Initialize the service.

        Components not passed in are built from settings.
        """
        self.settings = settings
        self.connector = connector or build_vault_connector(settings)
        self.directory = directory or build_directory(settings)
        self.policy_mapper = policy_mapper or PolicyMapper(settings.vault.policy_file,
                                                           baseline=self._baseline_override(settings))
        self.audit_logger = audit_logger or AuditLogger(settings.audit_dir)
        self.notifier = notifier or build_notifier(settings)
        self.retention_job = retention_job or RetentionJob(
            self.connector,
            RetentionPolicy.from_settings(settings.retention),
            audit_logger=self.audit_logger,
            pacing_seconds=settings.retention.pacing_seconds,
        )

        logger.info(f"Provisioning service initialized (mock_mode={settings.mock_mode})")

    @staticmethod
    def _baseline_override(settings: Settings) -> Optional[AccessGrant]:
        if not settings.vault.baseline_collection_id:
            return None
        return AccessGrant(
            collection_id=settings.vault.baseline_collection_id,
            name=settings.vault.baseline_collection_name or "Baseline",
        )

    def provision_access(self, email: str, operator: str = "system") -> UserFacingResult:
        """Invite a person to the vault, or resend their pending invitation."""
        workflow = ProvisioningWorkflow(self.connector, self.directory, self.policy_mapper,
                                        self.audit_logger, operator=operator)
        return workflow.provision_access(email)

    def confirm_access(self, email: str, operator: str = "system") -> UserFacingResult:
        """Confirm a member who has accepted their invitation."""
        workflow = ConfirmationWorkflow(self.connector, self.audit_logger, operator=operator)
        return workflow.confirm_access(email)

    def list_members(self, status: Optional[MemberStatus] = None) -> List[MembershipRecord]:
        members = self.connector.list_members()
        if status is not None:
            members = [m for m in members if m.status == status]
        return members

    def run_retention(self, dry_run: bool = False) -> RetentionSummary:
        return self.retention_job.run(dry_run=dry_run)

    def build_scheduler(self) -> RetentionScheduler:
        return RetentionScheduler(self.retention_job, self.settings.scheduler, self.notifier)
