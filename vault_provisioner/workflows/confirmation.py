"""
Confirmation Workflow for the Vault Provisioner.

Confirms a member who accepted their invitation, which grants them the
organization's shared collections. Only possible once the member has
created their account and generated a public key.
"""

import logging

from ..models import MemberStatus, UserFacingResult
from .base_workflow import BaseWorkflow, WorkflowStep
from .helpers import SUPPORT_HINT, account_setup_required

logger = logging.getLogger(__name__)


class ConfirmationWorkflow(BaseWorkflow):
    """Workflow for the "confirm vault access" command."""

    def confirm_access(self, email: str) -> UserFacingResult:
        return self.execute(email)

    def _run(self, email: str) -> UserFacingResult:
        member = self.connector.find_by_email(email)

        if member is None:
            return UserFacingResult(
                title="User Not Found",
                description=f'No user found with email "{email}". Use /vault invite {email} first.',
                success=False,
                level="warning",
                email=email,
            )

        if member.status == MemberStatus.CONFIRMED:
            return UserFacingResult(
                title="Already Confirmed",
                description=f"{member.display_name} is already confirmed and can access the vault.",
                level="info",
                email=email,
            )

        if member.status == MemberStatus.REVOKED:
            return UserFacingResult(
                title="Access Revoked",
                description=f"Vault access for {email} has been revoked. {SUPPORT_HINT}",
                success=False,
                level="warning",
                email=email,
            )

        public_key = self.connector.get_public_key(member.user_id) if member.user_id else None
        if not public_key:
            logger.info(f"{email} has no public key yet, confirmation deferred")
            return account_setup_required(email)

        step = WorkflowStep("confirm", email, resource=member.organization_member_id)
        result = self._execute_step(
            step,
            lambda: self.connector.confirm(member.organization_member_id, member.user_id, public_key=public_key),
        )
        if not result.success:
            raise result.to_exception()

        return UserFacingResult(
            title="User Confirmed",
            description=f"{member.display_name} can now access the vault.",
            email=email,
        )
