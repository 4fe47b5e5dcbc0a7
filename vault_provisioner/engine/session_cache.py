"""
Session Cache for the Vault Provisioner.

Holds the short-lived bearer credential for the vault administration API
and refreshes it on expiry or after an authentication failure.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

import requests

from ..config import VaultSettings
from ..errors import AuthenticationError
from ..models import Credential, utcnow

logger = logging.getLogger(__name__)

MIN_SAFETY_MARGIN = timedelta(seconds=60)

# Device type the vault assigns to API clients
API_DEVICE_TYPE = "8"


class ClientCredentialsAuthenticator:
    """
    Exchanges an organization API key for a bearer token.

    Performs the OAuth client-credentials grant against the vault's
    identity endpoint. Transport errors and 5xx responses are retried up
    to ``attempts`` times; any other failure is final.
    """

    def __init__(self, settings: VaultSettings, session: Optional[requests.Session] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.session = session or requests.Session()
        self.clock = clock
        self.device_identifier = f"vault-provisioner-{uuid.uuid4()}"

    @property
    def token_url(self) -> str:
        return f"{self.settings.identity_url.rstrip('/')}/connect/token"

    def authenticate(self) -> Credential:
        """
        Obtain a fresh credential.

        Returns:
            Credential with bearer headers and the declared expiry

        Raises:
            AuthenticationError: If no token could be obtained
        """
        form = {
            "grant_type": "client_credentials",
            "scope": "api.organization",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "device_identifier": self.device_identifier,
            "device_type": API_DEVICE_TYPE,
            "device_name": self.settings.device_name,
        }

        last_error = "no attempt made"
        for attempt in range(1, self.settings.auth_attempts + 1):
            try:
                response = self.session.post(self.token_url, data=form,
                                             timeout=self.settings.timeout_seconds)
            except requests.RequestException as e:
                last_error = f"transport error: {e}"
                logger.warning(f"Vault token request failed (attempt {attempt}): {e}")
                continue

            if response.status_code >= 500:
                last_error = f"token endpoint returned {response.status_code}"
                logger.warning(f"Vault token endpoint error {response.status_code} (attempt {attempt})")
                continue

            if not response.ok:
                logger.error(f"Vault authentication rejected: {response.status_code} {response.text[:200]}")
                raise AuthenticationError("Failed to authenticate with the vault API",
                                          status_code=response.status_code, body=response.text)

            try:
                payload = response.json()
                token = payload["access_token"]
                expires_in = int(payload["expires_in"])
            except (ValueError, KeyError, TypeError) as e:
                raise AuthenticationError(f"Malformed token response: {e}",
                                          status_code=response.status_code) from e

            now = self.clock()
            logger.info("Obtained vault access token")
            return Credential(
                headers={"Authorization": f"Bearer {token}"},
                issued_at=now,
                expires_at=now + timedelta(seconds=expires_in),
            )

        raise AuthenticationError(f"Failed to authenticate with the vault API: {last_error}")


class SessionCache:
    """
    Caches the vault credential for concurrent callers.

    A credential is reused only while ``now < expires_at - safety_margin``.
    The check-then-refresh sequence runs under a lock, so concurrent callers
    share one refresh instead of racing.
    """

    def __init__(self, authenticator, clock: Callable[[], datetime] = utcnow,
                 safety_margin: timedelta = MIN_SAFETY_MARGIN):
        """
        Initialize the cache.

        Args:
            authenticator: Object with ``authenticate() -> Credential``
            clock: Returns the current timezone-aware time
            safety_margin: How long before expiry a credential is refreshed
        """
        if safety_margin < MIN_SAFETY_MARGIN:
            raise ValueError(f"Safety margin must be at least {MIN_SAFETY_MARGIN}")

        self.authenticator = authenticator
        self.clock = clock
        self.safety_margin = safety_margin
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()

    def get_credential(self) -> Credential:
        """
        Return a valid credential, refreshing it when needed.

        Raises:
            AuthenticationError: If the refresh fails; nothing is cached
        """
        with self._lock:
            if self._credential and self._credential.is_valid(self.clock(), self.safety_margin):
                return self._credential

            logger.debug("Vault credential missing or expired, refreshing")
            credential = self.authenticator.authenticate()
            self._credential = credential
            return credential

    def invalidate(self, credential: Optional[Credential] = None):
        """
        Expire the cached credential.

        Args:
            credential: The credential that was rejected. If another caller
                        already replaced it, the fresh one is kept.
        """
        with self._lock:
            if self._credential is None:
                return
            if credential is not None and credential is not self._credential:
                return

            logger.info("Invalidating cached vault credential")
            self._credential = None

    @property
    def cached(self) -> Optional[Credential]:
        return self._credential
