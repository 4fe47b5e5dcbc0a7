"""
Vault Provisioner

Chat-driven membership automation for an organization's shared
credential vault.

Invites people the member directory knows about with the collections
their role grants, confirms them once their account exists, and runs a
scheduled retention policy that removes abandoned accounts.
"""

__version__ = "1.0.0"
__author__ = "Vault Provisioner Team"
__email__ = "team@example.com"

from .engine.policy_mapper import PolicyMapper
from .engine.retention import RetentionJob, RetentionPolicy
from .engine.session_cache import SessionCache
from .service import ProvisioningService
from .workflows.confirmation import ConfirmationWorkflow
from .workflows.provisioning import ProvisioningWorkflow

__all__ = [
    "PolicyMapper",
    "SessionCache",
    "RetentionPolicy",
    "RetentionJob",
    "ProvisioningService",
    "ProvisioningWorkflow",
    "ConfirmationWorkflow",
]
