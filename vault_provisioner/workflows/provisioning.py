"""
Provisioning Workflow for the Vault Provisioner.

Gives a person access to the vault: looks them up in the directory,
resolves the collections for their role and either invites them or
resends the pending invitation, depending on their current membership.
"""

import logging
from typing import Optional

from ..audit.audit_logger import AuditLogger
from ..connectors.base_connector import BaseVaultConnector
from ..connectors.directory_connector import BaseDirectory
from ..engine.policy_mapper import PolicyMapper
from ..models import Identity, MemberStatus, MembershipRecord, UserFacingResult
from .base_workflow import BaseWorkflow, WorkflowStep
from .helpers import SUPPORT_HINT

logger = logging.getLogger(__name__)


class ProvisioningWorkflow(BaseWorkflow):
    """
    Workflow for the "invite to vault" command.

    The directory is always consulted before the vault, so an email the
    directory cannot attribute to a role never reaches the vault API.
    Membership is re-read on every run; a second request for a freshly
    invited email observes the Invited state and reinvites.
    """

    def __init__(self, connector: BaseVaultConnector, directory: BaseDirectory,
                 policy_mapper: PolicyMapper, audit_logger: Optional[AuditLogger] = None,
                 operator: str = "system"):
        super().__init__(connector, audit_logger, operator)
        self.directory = directory
        self.policy_mapper = policy_mapper

    def provision_access(self, email: str) -> UserFacingResult:
        return self.execute(email)

    def _run(self, email: str) -> UserFacingResult:
        identity = self.directory.lookup(email)
        if identity is None:
            logger.info(f"{email} not found in directory, nothing provisioned")
            return UserFacingResult(
                title="Email Not Found",
                description=f'Email "{email}" not found in team directory. '
                            f'Check the email or contact the projects team for help.',
                success=False,
                level="warning",
                email=email,
            )

        member = self.connector.find_by_email(email)

        if member is None:
            return self._invite(email, identity)

        if member.status in (MemberStatus.INVITED, MemberStatus.ACCEPTED):
            return self._reinvite(email, member)

        if member.status == MemberStatus.CONFIRMED:
            return UserFacingResult(
                title="Already Confirmed",
                description=f"{member.display_name} is already confirmed and can access the vault.",
                level="info",
                email=email,
            )

        # Revoked members are restored by an admin in the vault, never here
        return UserFacingResult(
            title="Access Revoked",
            description=f"Vault access for {email} has been revoked. {SUPPORT_HINT}",
            success=False,
            level="warning",
            email=email,
        )

    def _invite(self, email: str, identity: Identity) -> UserFacingResult:
        grants = self.policy_mapper.resolve_grants(identity.effective_role)
        collection_names = [grant.name or grant.collection_id for grant in grants]

        step = WorkflowStep("invite", email, resource=identity.effective_role,
                            parameters={"collections": collection_names})
        result = self._execute_step(step, lambda: self.connector.invite(email, grants))
        if not result.success:
            raise result.to_exception()

        return UserFacingResult(
            title="Invitation Sent",
            description=(f"Invitation sent to {email} with access to {', '.join(collection_names)}. "
                         f"Check email and visit the password manager to complete setup."),
            email=email,
            details={"invite_id": result.data, "collections": collection_names,
                     "name": identity.name, "team": identity.team},
        )

    def _reinvite(self, email: str, member: MembershipRecord) -> UserFacingResult:
        step = WorkflowStep("reinvite", email, resource=member.organization_member_id,
                            parameters={"status": member.status.label})
        result = self._execute_step(step, lambda: self.connector.reinvite(member.organization_member_id))
        if not result.success:
            raise result.to_exception()

        return UserFacingResult(
            title="Invitation Resent",
            description=f"Invitation resent to {email}. Check email to complete setup.",
            email=email,
            details={"status": member.status.label},
        )
