"""
Base Connector Classes for the Vault Provisioner.

This module provides the foundation for vault membership connectors,
with both the real administration API implementation and an in-memory
mock backend.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import ErrorCategory, VaultProvisionerError, error_for_category
from ..models import AccessGrant, MemberStatus, MembershipRecord

logger = logging.getLogger(__name__)


class ConnectorResult:
    """Result of a connector operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None, category: Optional[ErrorCategory] = None,
                 status_code: Optional[int] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error
        self.category = category
        self.status_code = status_code

    @classmethod
    def failure(cls, category: ErrorCategory, error: str,
                status_code: Optional[int] = None) -> "ConnectorResult":
        return cls(False, error, error=error, category=category, status_code=status_code)

    def to_exception(self) -> VaultProvisionerError:
        """Exception matching this failed result."""
        return error_for_category(self.category, self.error or self.message, self.status_code)

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"


class BaseVaultConnector(ABC):
    """
    Abstract base class for vault membership connectors.

    Mutating operations return ConnectorResult; lookups raise
    VaultProvisionerError subclasses since callers cannot proceed without them.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the connector.

        Args:
            config: Connector-specific configuration
            mock_mode: If True, use the in-memory backend instead of the real API
        """
        self.config = config or {}
        self.mock_mode = mock_mode

        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    @abstractmethod
    def invite(self, email: str, grants: List[AccessGrant]) -> ConnectorResult:
        """
        Invite an email address to the organization.

        Args:
            email: Address to invite
            grants: Collections the member should receive

        Returns:
            ConnectorResult with the invite ID as data on success
        """
        pass

    @abstractmethod
    def list_members(self) -> List[MembershipRecord]:
        """Return every member of the organization."""
        pass

    def find_by_email(self, email: str) -> Optional[MembershipRecord]:
        """
        Find a member by email, case-insensitively.

        Returns:
            The matching MembershipRecord, or None if absent
        """
        target = email.strip().lower()
        for member in self.list_members():
            if member.email.lower() == target:
                return member
        return None

    @abstractmethod
    def reinvite(self, member_id: str) -> ConnectorResult:
        """Resend the invitation for an invited or accepted member."""
        pass

    @abstractmethod
    def get_public_key(self, user_id: str) -> Optional[str]:
        """Public key of a user, or None if they have not generated one yet."""
        pass

    @abstractmethod
    def confirm(self, member_id: str, user_id: Optional[str],
                public_key: Optional[str] = None) -> ConnectorResult:
        """
        Confirm an accepted member.

        Args:
            member_id: Organization member ID
            user_id: Vault user ID of the member
            public_key: Already fetched public key; fetched when omitted

        Returns:
            ConnectorResult; PRECONDITION_NOT_MET when no public key exists
        """
        pass

    @abstractmethod
    def delete_member(self, member_id: str) -> ConnectorResult:
        """Remove a member from the organization."""
        pass

    def validate_config(self) -> bool:
        """
        Validate that the connector has all required configuration.

        Returns:
            True if configuration is valid, False otherwise
        """
        return True


class MockVaultConnector(BaseVaultConnector):
    """
    In-memory vault organization for testing and development.

    Mirrors the real API's state rules: invites for existing emails conflict,
    confirmation needs an accepted member with a public key.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config, mock_mode=True)

        self.members: Dict[str, MembershipRecord] = {}
        self.public_keys: Dict[str, str] = {}
        self.calls: List[str] = []

    def add_member(self, email: str, status: MemberStatus = MemberStatus.INVITED,
                   **fields: Any) -> MembershipRecord:
        """Seed a member directly (test helper)."""
        member = MembershipRecord(
            organization_member_id=fields.pop("organization_member_id", str(uuid.uuid4())),
            email=email,
            status=status,
            **fields,
        )
        self.members[member.organization_member_id] = member
        return member

    def accept(self, member_id: str, public_key: str = "mock-public-key") -> MembershipRecord:
        """Simulate the invitee creating an account and accepting."""
        member = self.members[member_id]
        user_id = member.user_id or str(uuid.uuid4())
        updated = member.model_copy(update={"status": MemberStatus.ACCEPTED, "user_id": user_id})
        self.members[member_id] = updated
        self.public_keys[user_id] = public_key
        return updated

    def invite(self, email: str, grants: List[AccessGrant]) -> ConnectorResult:
        """Mock invite."""
        self.calls.append("invite")
        if self.find_by_email(email):
            return ConnectorResult.failure(ErrorCategory.ALREADY_EXISTS,
                                           f"User {email} is already invited or exists", 409)

        member = self.add_member(
            email,
            MemberStatus.INVITED,
            collections=[grant.to_api() for grant in grants],
            created_at=datetime.now(timezone.utc),
        )
        logger.info(f"Mock invited {email}")
        return ConnectorResult(True, f"Invited {email}", data=member.organization_member_id)

    def list_members(self) -> List[MembershipRecord]:
        """Mock list."""
        return list(self.members.values())

    def reinvite(self, member_id: str) -> ConnectorResult:
        """Mock reinvite."""
        self.calls.append("reinvite")
        member = self.members.get(member_id)
        if not member:
            return ConnectorResult.failure(ErrorCategory.API_ERROR, f"Member {member_id} not found", 404)
        if member.status not in (MemberStatus.INVITED, MemberStatus.ACCEPTED):
            return ConnectorResult.failure(ErrorCategory.API_ERROR, "User in invalid state", 400)

        logger.info(f"Mock reinvited {member.email}")
        return ConnectorResult(True, f"Reinvited {member.email}")

    def get_public_key(self, user_id: str) -> Optional[str]:
        """Mock public key lookup."""
        return self.public_keys.get(user_id) if user_id else None

    def confirm(self, member_id: str, user_id: Optional[str],
                public_key: Optional[str] = None) -> ConnectorResult:
        """Mock confirm."""
        key = public_key or self.get_public_key(user_id)
        if not key:
            return ConnectorResult.failure(ErrorCategory.PRECONDITION_NOT_MET,
                                           "User has not generated a public key yet")

        self.calls.append("confirm")
        member = self.members.get(member_id)
        if not member or member.status != MemberStatus.ACCEPTED:
            return ConnectorResult.failure(ErrorCategory.API_ERROR, "User in invalid state", 400)

        self.members[member_id] = member.model_copy(update={"status": MemberStatus.CONFIRMED})
        logger.info(f"Mock confirmed {member.email}")
        return ConnectorResult(True, f"Confirmed {member.email}")

    def delete_member(self, member_id: str) -> ConnectorResult:
        """Mock delete."""
        self.calls.append("delete")
        member = self.members.pop(member_id, None)
        if not member:
            return ConnectorResult.failure(ErrorCategory.API_ERROR, f"Member {member_id} not found", 404)

        logger.info(f"Mock deleted {member.email}")
        return ConnectorResult(True, f"Deleted {member.email}")

