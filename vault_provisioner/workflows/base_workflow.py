"""
Base Workflow Classes for the Vault Provisioner.

This module provides the foundation for the provisioning and confirmation
workflows: step tracking, audit logging of vault mutations and the mapping
of errors to operator-facing replies at the workflow boundary.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..audit.audit_logger import AuditLogger
from ..connectors.base_connector import BaseVaultConnector, ConnectorResult
from ..errors import VaultProvisionerError
from ..models import AuditRecord, UserFacingResult, utcnow
from .helpers import (
    invalid_email_result,
    normalize_email,
    unexpected_error_result,
    user_message_for_error,
    validate_email,
)

logger = logging.getLogger(__name__)


class WorkflowStep:
    """Represents a single vault mutation in a workflow execution."""

    def __init__(self, operation: str, email: str, resource: str = "",
                 parameters: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.email = email
        self.resource = resource
        self.parameters = parameters or {}
        self.executed_at: Optional[datetime] = None
        self.success: bool = False
        self.error: Optional[str] = None
        self.result: Optional[Any] = None

    def mark_success(self, result: Any = None):
        """Mark step as successful."""
        self.executed_at = utcnow()
        self.success = True
        self.result = result

    def mark_failure(self, error: str):
        """Mark step as failed."""
        self.executed_at = utcnow()
        self.success = False
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary for serialization."""
        return {
            "operation": self.operation,
            "email": self.email,
            "resource": self.resource,
            "parameters": self.parameters,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "success": self.success,
            "error": self.error,
        }


class BaseWorkflow(ABC):
    """
    Abstract base class for membership workflows.

    One instance handles one operator request. Subclasses implement
    ``_run(email)`` and raise VaultProvisionerError for failures; ``execute``
    validates the email, maps errors to replies and guarantees exactly one
    UserFacingResult per call.
    """

    def __init__(self, connector: BaseVaultConnector, audit_logger: Optional[AuditLogger] = None,
                 operator: str = "system"):
        """
        Initialize the workflow.

        Args:
            connector: Vault membership connector
            audit_logger: Receives one record per attempted mutation
            operator: Identity of whoever triggered the workflow, for audit only
        """
        self.connector = connector
        self.audit_logger = audit_logger
        self.operator = operator
        self.workflow_id = str(uuid.uuid4())
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.steps: List[WorkflowStep] = []
        self.errors: List[str] = []

        logger.debug(f"Initialized {self.__class__.__name__} workflow {self.workflow_id}")

    def execute(self, email: str) -> UserFacingResult:
        """
        Run the workflow for one email.

        Args:
            email: Target personal email

        Returns:
            Reply for the operator; never raises
        """
        self.started_at = utcnow()
        logger.info(f"{self.__class__.__name__} {self.workflow_id} started by {self.operator} for {email}")

        if not validate_email(email):
            result = invalid_email_result(email)
        else:
            email = normalize_email(email)
            try:
                result = self._run(email)
            except VaultProvisionerError as e:
                self.errors.append(str(e))
                logger.warning(f"{self.__class__.__name__} failed for {email}: {e}")
                result = user_message_for_error(e, email)
            except Exception:
                logger.exception(f"Unexpected error in {self.__class__.__name__} for {email}")
                self.errors.append("unexpected error")
                result = unexpected_error_result(email)

        self.completed_at = utcnow()
        logger.info(f"{self.__class__.__name__} {self.workflow_id} finished: {result.title}")
        return result

    @abstractmethod
    def _run(self, email: str) -> UserFacingResult:
        """Workflow body; raises VaultProvisionerError on failure."""
        pass

    def _execute_step(self, step: WorkflowStep, call: Callable[[], ConnectorResult]) -> ConnectorResult:
        """
        Execute a single vault mutation and audit it.

        Args:
            step: The step to execute
            call: Performs the connector call

        Returns:
            ConnectorResult from the connector
        """
        self.steps.append(step)
        result = call()

        if result.success:
            step.mark_success(result.data)
            logger.info(f"Step completed: {step.operation}({step.email})")
        else:
            step.mark_failure(result.error or "Unknown error")
            self.errors.append(f"{step.operation}: {result.error}")

        self._log_audit_event(step)
        return result

    def _log_audit_event(self, step: WorkflowStep) -> Optional[str]:
        """Record a step in the audit trail; returns the audit record ID."""
        if not self.audit_logger:
            return None

        record = AuditRecord(
            id=str(uuid.uuid4()),
            event_type=step.operation,
            operator=self.operator,
            user_email=step.email,
            action=step.operation,
            resource=step.resource,
            success=step.success,
            error_message=step.error,
            workflow_id=self.workflow_id,
            metadata=step.parameters,
        )
        try:
            return self.audit_logger.log_event(record)
        except OSError as e:
            logger.error(f"Audit write failed for {step.operation}({step.email}): {e}")
            self.errors.append(f"audit {step.operation}: {e}")
            return None

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get summary of workflow execution."""
        successful_steps = len([s for s in self.steps if s.success])
        total_steps = len(self.steps)

        return {
            "workflow_id": self.workflow_id,
            "workflow_type": self.__class__.__name__,
            "operator": self.operator,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_steps": total_steps,
            "successful_steps": successful_steps,
            "failed_steps": total_steps - successful_steps,
            "steps": [s.to_dict() for s in self.steps],
            "errors": self.errors.copy(),
        }
