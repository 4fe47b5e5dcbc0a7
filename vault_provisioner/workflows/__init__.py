"""
Workflows Package for the Vault Provisioner.

This package provides the operator-driven membership workflows:
provisioning (invite or reinvite) and confirmation.
"""

from .base_workflow import BaseWorkflow, WorkflowStep
from .confirmation import ConfirmationWorkflow
from .helpers import deliver_reply, user_message_for_error, validate_email
from .provisioning import ProvisioningWorkflow

__all__ = [
    "BaseWorkflow",
    "WorkflowStep",
    "ProvisioningWorkflow",
    "ConfirmationWorkflow",
    "validate_email",
    "user_message_for_error",
    "deliver_reply",
]
