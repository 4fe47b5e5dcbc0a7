"""
Vault Connector for the Vault Provisioner.

Provides integration with the vault administration API for organization
membership: invite, reinvite, confirm, list and delete.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from ..config import VaultSettings
from ..engine.session_cache import SessionCache
from ..errors import AuthenticationError, ErrorCategory, TransientAPIError, TransportError, VaultProvisionerError
from ..models import AccessGrant, Credential, MembershipRecord, MemberType
from .base_connector import BaseVaultConnector, ConnectorResult

logger = logging.getLogger(__name__)

ALREADY_EXISTS_MARKERS = ("already exists", "already invited", "already been invited")


class VaultConnector(BaseVaultConnector):
    """Vault connector for managing organization members over the admin API."""

    def __init__(self, settings: VaultSettings, session_cache: SessionCache,
                 session: Optional[requests.Session] = None):
        super().__init__(settings.model_dump(exclude={"client_secret"}), mock_mode=False)

        if not settings.org_id:
            raise ValueError("Vault organization ID is required")

        self.settings = settings
        self.session_cache = session_cache
        self.session = session or requests.Session()
        self.api_url = settings.api_url.rstrip('/')
        self.org_path = f"/organizations/{settings.org_id}/users"

    def invite(self, email: str, grants: List[AccessGrant]) -> ConnectorResult:
        """Invite a user to the vault organization with the given collections."""
        payload = {
            "emails": [email],
            "type": int(MemberType.USER),
            "collections": [grant.to_api() for grant in grants],
            "groups": [],
            "accessSecretsManager": False,
        }

        result = self._mutate("invite", "POST", f"{self.org_path}/invite", json=payload)
        if not result.success:
            logger.error(f"Failed to invite {email}: {result.error}")
            return result

        invite_id = self._json_field(result.data, "id")
        logger.info(f"Sent vault invitation to {email} with {len(grants)} collections")
        return ConnectorResult(True, f"Invited {email} to the vault organization", data=invite_id)

    def list_members(self) -> List[MembershipRecord]:
        """
        Fetch every organization member, draining paginated responses.

        Raises:
            AuthenticationError, TransportError, TransientAPIError
        """
        params: Dict[str, str] = {"includeCollections": "true"}
        members: List[MembershipRecord] = []
        seen_tokens = set()

        while True:
            response = self._send("GET", self.org_path, params=params)
            if not response.ok:
                raise TransientAPIError(f"Failed to list members: {self._error_message(response)}",
                                        status_code=response.status_code, body=response.text)

            try:
                payload = response.json()
            except ValueError as e:
                raise TransientAPIError(f"Vault returned an unreadable member list: {e}",
                                        status_code=response.status_code, body=response.text) from e

            items = payload.get("data", []) if isinstance(payload, dict) else payload
            for item in items or []:
                if not isinstance(item, dict):
                    logger.warning(f"Skipping non-object member record: {item!r}")
                    continue
                try:
                    members.append(MembershipRecord.model_validate(item))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed member record {item.get('id')}: {e}")

            token = payload.get("continuationToken") if isinstance(payload, dict) else None
            if not token or token in seen_tokens:
                break
            seen_tokens.add(token)
            params = {"includeCollections": "true", "continuationToken": token}

        logger.debug(f"Fetched {len(members)} organization members")
        return members

    def reinvite(self, member_id: str) -> ConnectorResult:
        """Resend the invitation to an invited or accepted member."""
        result = self._mutate("reinvite", "POST", f"{self.org_path}/{member_id}/reinvite")
        if result.success:
            logger.info(f"Resent vault invitation for member {member_id}")
            return ConnectorResult(True, f"Reinvited member {member_id}")

        logger.error(f"Failed to reinvite member {member_id}: {result.error}")
        return result

    def get_public_key(self, user_id: str) -> Optional[str]:
        """
        Get a user's public key.

        Returns:
            The key, or None if the user has not generated key material

        Raises:
            TransportError, AuthenticationError, TransientAPIError
        """
        if not user_id:
            return None

        response = self._send("GET", f"/users/{user_id}/public-key")
        if response.status_code == 404:
            return None
        if not response.ok:
            raise TransientAPIError(f"Failed to fetch public key: {self._error_message(response)}",
                                    status_code=response.status_code, body=response.text)

        return self._json_field(response, "publicKey") or None

    def confirm(self, member_id: str, user_id: Optional[str],
                public_key: Optional[str] = None) -> ConnectorResult:
        """Confirm an accepted member once their public key exists."""
        if not public_key:
            try:
                public_key = self.get_public_key(user_id) if user_id else None
            except VaultProvisionerError as e:
                return ConnectorResult.failure(e.category, e.message, e.status_code)

        if not public_key:
            logger.info(f"Member {member_id} has no public key yet, not confirming")
            return ConnectorResult.failure(
                ErrorCategory.PRECONDITION_NOT_MET,
                "User has not finished creating their account",
            )

        result = self._mutate("confirm", "POST", f"{self.org_path}/{member_id}/confirm",
                              json={"key": user_id})
        if result.success:
            logger.info(f"Confirmed vault member {member_id}")
            return ConnectorResult(True, f"Confirmed member {member_id}")

        logger.error(f"Failed to confirm member {member_id}: {result.error}")
        return result

    def delete_member(self, member_id: str) -> ConnectorResult:
        """Remove a member from the organization."""
        result = self._mutate("delete", "POST", f"{self.org_path}/{member_id}/delete")
        if result.success:
            logger.info(f"Deleted vault member {member_id}")
            return ConnectorResult(True, f"Deleted member {member_id}")

        logger.error(f"Failed to delete member {member_id}: {result.error}")
        return result

    def validate_config(self) -> bool:
        return bool(self.settings.client_id and self.settings.client_secret and self.settings.org_id)

    def _mutate(self, action: str, method: str, path: str, **kwargs: Any) -> ConnectorResult:
        """Run a mutating call, folding every failure into a ConnectorResult."""
        try:
            response = self._send(method, path, **kwargs)
        except VaultProvisionerError as e:
            return ConnectorResult.failure(e.category, e.message, e.status_code)

        if response.ok:
            return ConnectorResult(True, f"{action} succeeded", data=response)

        return self._classify_failure(response)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """
        Send an authenticated request, refreshing the credential once on 401.

        Raises:
            AuthenticationError: Credential exchange failed or 401 persisted
            TransportError: No response was received
        """
        credential = self.session_cache.get_credential()
        response = self._http(method, path, credential, **kwargs)

        if response.status_code == 401:
            logger.warning(f"Vault API returned 401 for {method} {path}, refreshing credential")
            self.session_cache.invalidate(credential)
            credential = self.session_cache.get_credential()
            response = self._http(method, path, credential, **kwargs)

            if response.status_code == 401:
                raise AuthenticationError("Authentication failed with the vault API",
                                          status_code=401, body=response.text)

        return response

    def _http(self, method: str, path: str, credential: Credential, **kwargs: Any) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            return self.session.request(method, url, headers=dict(credential.headers),
                                        timeout=self.settings.timeout_seconds, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Transport error calling {method} {path}: {e}")
            raise TransportError(f"Network error talking to the vault: {e}") from e

    def _classify_failure(self, response: requests.Response) -> ConnectorResult:
        status = response.status_code
        message = self._error_message(response)
        lowered = message.lower()

        if status == 409 or (status == 400 and any(m in lowered for m in ALREADY_EXISTS_MARKERS)):
            return ConnectorResult.failure(ErrorCategory.ALREADY_EXISTS,
                                           "User is already invited or exists in the organization", status)
        if status == 401:
            return ConnectorResult.failure(ErrorCategory.AUTHENTICATION,
                                           "Authentication failed with the vault API", status)
        if status == 400:
            return ConnectorResult.failure(ErrorCategory.API_ERROR, f"Invalid request: {message}", status)
        if status == 403:
            return ConnectorResult.failure(ErrorCategory.API_ERROR,
                                           "Insufficient permissions to manage members", status)
        if status == 429:
            return ConnectorResult.failure(ErrorCategory.API_ERROR,
                                           "Rate limit exceeded, please try again later", status)

        return ConnectorResult.failure(ErrorCategory.API_ERROR, f"API error ({status}): {message}", status)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return (response.text or response.reason or "Unknown error").strip()

        if isinstance(body, dict):
            for key in ("message", "Message", "error_description", "error"):
                if body.get(key):
                    return str(body[key])
            error_model = body.get("errorModel") or body.get("ErrorModel") or {}
            if isinstance(error_model, dict) and error_model.get("message"):
                return str(error_model["message"])

        return str(body) if body else "Unknown error"

    @staticmethod
    def _json_field(response: Optional[requests.Response], field: str) -> Optional[Any]:
        if response is None or not response.content:
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get(field) if isinstance(body, dict) else None
