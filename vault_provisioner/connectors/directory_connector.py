"""
Directory Connector for the Vault Provisioner.

Looks people up by personal email in the member directory (a Notion
database) and returns their name, team and role.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

import requests

from ..config import DirectorySettings
from ..errors import TransientAPIError, TransportError
from ..models import Identity

logger = logging.getLogger(__name__)

NAME_PROPERTIES = ("Name", "name", "Full Name")
TEAM_PROPERTIES = ("Team", "team", "Department")
ROLE_PROPERTIES = ("Role", "role")
CHAT_HANDLE_PROPERTIES = ("Discord", "discord", "Discord Handle", "Slack", "Slack Handle")


class BaseDirectory(ABC):
    """Identity lookup keyed by personal email."""

    @abstractmethod
    def lookup(self, personal_email: str) -> Optional[Identity]:
        """
        Look up a person by personal email.

        Returns:
            Identity if the directory knows the email, None otherwise
        """
        pass


class NotionDirectory(BaseDirectory):
    """Directory backed by a Notion database."""

    def __init__(self, settings: DirectorySettings, session: Optional[requests.Session] = None):
        if not settings.token or not settings.database_id:
            raise ValueError("Notion token and database ID are required")

        self.settings = settings
        self.session = session or requests.Session()

    def lookup(self, personal_email: str) -> Optional[Identity]:
        """Query the database for a row whose personal email matches exactly."""
        url = f"{self.settings.api_url.rstrip('/')}/databases/{self.settings.database_id}/query"
        body = {
            "filter": {
                "property": self.settings.email_property,
                "email": {"equals": personal_email},
            }
        }
        headers = {
            "Authorization": f"Bearer {self.settings.token}",
            "Content-Type": "application/json",
            "Notion-Version": self.settings.notion_version,
        }

        try:
            response = self.session.post(url, json=body, headers=headers,
                                         timeout=self.settings.timeout_seconds)
        except requests.RequestException as e:
            logger.error(f"Directory lookup failed for {personal_email}: {e}")
            raise TransportError(f"Network error talking to the directory: {e}") from e

        if not response.ok:
            logger.error(f"Directory API error for {personal_email}: {response.status_code} {response.text[:200]}")
            raise TransientAPIError("Directory lookup failed", status_code=response.status_code,
                                    body=response.text)

        results = response.json().get("results") or []

        if not results:
            logger.info(f"No directory entry found for {personal_email}")
            return None

        properties = results[0].get("properties", {})
        team = extract_text(first_property(properties, TEAM_PROPERTIES))
        identity = Identity(
            name=extract_text(first_property(properties, NAME_PROPERTIES)),
            personal_email=personal_email,
            team=team,
            role=extract_text(first_property(properties, ROLE_PROPERTIES)) or team or None,
            chat_handle=extract_text(first_property(properties, CHAT_HANDLE_PROPERTIES)) or None,
        )

        if not identity.name or not identity.team:
            logger.warning(f"Incomplete directory entry for {personal_email}: {identity}")

        return identity


class MockDirectory(BaseDirectory):
    """In-memory directory for testing and development."""

    def __init__(self, entries: Optional[Iterable[Identity]] = None):
        self.entries: Dict[str, Identity] = {}
        for identity in entries or []:
            self.add(identity)
        self.lookups = 0

    def add(self, identity: Identity):
        self.entries[identity.personal_email.lower()] = identity

    def lookup(self, personal_email: str) -> Optional[Identity]:
        self.lookups += 1
        return self.entries.get(personal_email.strip().lower())


def first_property(properties: Dict[str, Any], names: Iterable[str]) -> Optional[Any]:
    """Return the first property present under any of the given names."""
    for name in names:
        if properties.get(name):
            return properties[name]
    return None


def extract_text(prop: Any) -> str:
    """Flatten a Notion property value to plain text."""
    if not prop:
        return ""
    if isinstance(prop, str):
        return prop

    if prop.get("title"):
        return prop["title"][0].get("plain_text", "")
    if prop.get("rich_text"):
        return prop["rich_text"][0].get("plain_text", "")
    if prop.get("select"):
        return prop["select"].get("name", "")
    if prop.get("multi_select"):
        return ", ".join(item.get("name", "") for item in prop["multi_select"])
    if prop.get("email"):
        return prop["email"]
    if prop.get("people"):
        return ", ".join(person.get("name") or "Unknown" for person in prop["people"])
    if prop.get("checkbox") is not None:
        return str(prop["checkbox"]).lower()
    if prop.get("number") is not None:
        return str(prop["number"])
    if prop.get("date"):
        return prop["date"].get("start", "")

    return ""
