"""
Connectors Package for the Vault Provisioner.

This package provides integrations with the vault administration API,
the member directory and Slack.
"""

from datetime import timedelta

from ..config import Settings
from ..engine.session_cache import ClientCredentialsAuthenticator, SessionCache
from .base_connector import BaseVaultConnector, ConnectorResult, MockVaultConnector
from .directory_connector import BaseDirectory, MockDirectory, NotionDirectory
from .slack_connector import SlackNotifier
from .vault_connector import VaultConnector


def build_session_cache(settings: Settings) -> SessionCache:
    """Session cache backed by the client-credentials exchange."""
    authenticator = ClientCredentialsAuthenticator(settings.vault)
    margin = timedelta(seconds=settings.vault.token_safety_margin_seconds)
    return SessionCache(authenticator, safety_margin=margin)


def build_vault_connector(settings: Settings) -> BaseVaultConnector:
    """Vault connector for the configured mode."""
    if settings.mock_mode:
        return MockVaultConnector()
    return VaultConnector(settings.vault, build_session_cache(settings))


def build_directory(settings: Settings) -> BaseDirectory:
    """Directory for the configured mode."""
    if settings.mock_mode:
        return MockDirectory()
    return NotionDirectory(settings.directory)


def build_notifier(settings: Settings) -> SlackNotifier:
    return SlackNotifier(settings.slack)


__all__ = [
    "BaseVaultConnector",
    "ConnectorResult",
    "MockVaultConnector",
    "VaultConnector",
    "BaseDirectory",
    "NotionDirectory",
    "MockDirectory",
    "SlackNotifier",
    "build_session_cache",
    "build_vault_connector",
    "build_directory",
    "build_notifier",
]
