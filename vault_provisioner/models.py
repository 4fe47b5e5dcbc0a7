"""
Core data models for the Vault Provisioner.

This module defines the Pydantic models used throughout the system
for directory identities, vault memberships, collection grants,
retention verdicts and audit records.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time, used as the default clock."""
    return datetime.now(timezone.utc)


class MemberStatus(IntEnum):
    """Lifecycle stage of an organization membership, as reported by the vault."""
    REVOKED = -1
    INVITED = 0
    ACCEPTED = 1
    CONFIRMED = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class MemberType(IntEnum):
    """Organization role of a member inside the vault."""
    OWNER = 0
    ADMIN = 1
    USER = 2
    MANAGER = 3
    CUSTOM = 4


class Credential(BaseModel):
    """Short-lived authentication material for the vault administration API."""
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers to attach to API calls")
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(..., description="Expiry declared by the token endpoint")

    def is_valid(self, now: datetime, safety_margin: timedelta) -> bool:
        """Whether the credential may still be used at ``now``."""
        return now < self.expires_at - safety_margin


class Identity(BaseModel):
    """Directory entry for a person, keyed by personal email."""
    name: str = ""
    personal_email: str
    team: str = ""
    role: Optional[str] = Field(None, description="Role used for collection mapping")
    chat_handle: Optional[str] = None

    @property
    def effective_role(self) -> str:
        """Role used for policy resolution; falls back to the team name."""
        return self.role or self.team


class AccessGrant(BaseModel):
    """Access to a single vault collection."""
    collection_id: str
    name: str = Field("", description="Human-readable collection name")
    read_only: bool = False
    hide_passwords: bool = False
    manage: bool = False

    def to_api(self) -> Dict[str, Any]:
        """Serialize to the shape the invite endpoint expects."""
        return {
            "id": self.collection_id,
            "readOnly": self.read_only,
            "hidePasswords": self.hide_passwords,
            "manage": self.manage,
        }


class MembershipRecord(BaseModel):
    """A person's standing in the vault organization.

    Never mutated locally; always re-fetched from the administration API
    before a decision is made.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    organization_member_id: str = Field(..., alias="id")
    user_id: Optional[str] = Field(None, alias="userId")
    email: str = ""
    name: Optional[str] = None
    status: MemberStatus = MemberStatus.INVITED
    type: MemberType = MemberType.USER
    two_factor_enabled: bool = Field(False, alias="twoFactorEnabled")
    collections: List[Dict[str, Any]] = Field(default_factory=list)
    enabled: bool = Field(True, alias="enabled")
    has_master_password: bool = Field(True, alias="hasMasterPassword")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    last_active: Optional[datetime] = Field(None, alias="lastActive")

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> str:
        return (v or "").strip()

    @property
    def display_name(self) -> str:
        return self.name or self.email


class UserFacingResult(BaseModel):
    """Reply rendered by the chat front-end for an operator command."""
    title: str
    description: str
    success: bool = True
    level: str = Field("success", description="success, info, warning or error")
    email: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class RetentionAction(str, Enum):
    """What the retention policy decided for a member."""
    DELETE = "delete"
    RETAIN = "retain"


class RetentionReason(str, Enum):
    """Why a member was deleted or retained."""
    NEVER_ACTIVATED = "never activated"
    DISABLED_AND_STALE = "disabled and stale"
    INACTIVE = "inactive"
    PROTECTED = "protected"
    ACTIVE = "active"


class RetentionVerdict(BaseModel):
    """Classification of one member within a single retention run."""
    organization_member_id: str
    email: str
    action: RetentionAction
    reason: RetentionReason

    @property
    def should_delete(self) -> bool:
        return self.action == RetentionAction.DELETE


class RetentionSummary(BaseModel):
    """Outcome of one retention run."""
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    dry_run: bool = False
    skipped: bool = False
    total_users: int = 0
    deleted: int = 0
    errors: List[str] = Field(default_factory=list)
    verdicts: List[RetentionVerdict] = Field(default_factory=list)

    @property
    def pending_deletions(self) -> List[RetentionVerdict]:
        return [v for v in self.verdicts if v.should_delete]


class AuditRecord(BaseModel):
    """Audit record for every vault mutation attempted by the engine."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=utcnow)
    event_type: str = Field(..., description="Type of event (invite, reinvite, confirm, delete)")
    operator: str = Field(..., description="Operator or job that triggered the action")
    user_email: str
    action: str = Field(..., description="Specific action taken")
    resource: str = Field("", description="Member ID or collection affected")
    success: bool = Field(..., description="Whether the action succeeded")
    error_message: Optional[str] = Field(None, description="Error details if failed")
    workflow_id: Optional[str] = Field(None, description="ID of the workflow that triggered this")
    metadata: Dict[str, Any] = Field(default_factory=dict)

