"""
Configuration loading for the Vault Provisioner.

Settings come from built-in defaults, an optional JSON configuration file
and environment variables, applied in that order.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)


class EnvFirstSettings(BaseSettings):
    """Settings section whose environment variables override file values."""

    model_config = SettingsConfigDict(extra="ignore", env_ignore_empty=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Init kwargs carry the JSON file values
        return env_settings, init_settings


class VaultSettings(EnvFirstSettings):
    """Connection settings for the vault administration API."""
    model_config = SettingsConfigDict(env_prefix="VAULT_", extra="ignore", env_ignore_empty=True)

    api_url: str = "https://vault.example.com/api"
    identity_url: str = "https://vault.example.com/identity"
    client_id: str = ""
    client_secret: str = ""
    org_id: str = ""
    device_name: str = "Vault Provisioner"
    timeout_seconds: float = 15.0
    token_safety_margin_seconds: int = Field(60, ge=60)
    auth_attempts: int = Field(2, ge=1)
    policy_file: Optional[str] = None
    baseline_collection_id: Optional[str] = None
    baseline_collection_name: Optional[str] = None


class DirectorySettings(EnvFirstSettings):
    """Notion database acting as the member directory."""
    model_config = SettingsConfigDict(env_prefix="NOTION_", extra="ignore", env_ignore_empty=True)

    token: str = ""
    database_id: str = ""
    api_url: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"
    email_property: str = "Personal Email"
    timeout_seconds: float = 15.0


class SlackSettings(EnvFirstSettings):
    """Slack workspace used as the chat front-end."""
    model_config = SettingsConfigDict(env_prefix="SLACK_", extra="ignore", env_ignore_empty=True)

    bot_token: str = ""
    signing_secret: str = ""
    report_channel: Optional[str] = None


class RetentionSettings(EnvFirstSettings):
    """Thresholds for the retention policy, in days."""
    model_config = SettingsConfigDict(env_prefix="RETENTION_", extra="ignore", env_ignore_empty=True)

    never_activated_days: int = 7
    disabled_stale_days: int = 30
    inactive_days: int = 90
    pacing_seconds: float = Field(0.5, ge=0.5)
    protect_admins: bool = True


class SchedulerSettings(EnvFirstSettings):
    """Cron expressions for the background jobs."""
    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore", env_ignore_empty=True)

    enabled: bool = True
    timezone: str = "UTC"
    cleanup_cron: str = "0 3 * * *"
    report_cron: str = "0 9 * * 1"


SECTIONS: Dict[str, Type[EnvFirstSettings]] = {
    "vault": VaultSettings,
    "directory": DirectorySettings,
    "slack": SlackSettings,
    "retention": RetentionSettings,
    "scheduler": SchedulerSettings,
}


class Settings(EnvFirstSettings):
    """Complete application settings."""
    mock_mode: bool = Field(False, validation_alias=AliasChoices("mock_mode", "VAULT_MOCK_MODE"))
    audit_dir: str = Field("audit_logs", validation_alias=AliasChoices("audit_dir", "AUDIT_DIR"))
    vault: VaultSettings = Field(default_factory=VaultSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    def missing_required(self) -> List[str]:
        """Names of required settings that are not set."""
        if self.mock_mode:
            return []

        required = {
            "VAULT_CLIENT_ID": self.vault.client_id,
            "VAULT_CLIENT_SECRET": self.vault.client_secret,
            "VAULT_ORG_ID": self.vault.org_id,
            "NOTION_TOKEN": self.directory.token,
            "NOTION_DATABASE_ID": self.directory.database_id,
        }
        return [name for name, value in required.items() if not value]


def load_settings(config_path: Optional[Union[str, Path]] = None,
                  mock_mode: Optional[bool] = None) -> Settings:
    """
    Load settings from defaults, an optional JSON file and the environment.

    Args:
        config_path: Optional JSON file with the same nesting as Settings
        mock_mode: Overrides the mock_mode flag when given

    Returns:
        Validated Settings
    """
    data: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
            logger.info(f"Loaded configuration from {path}")
        else:
            logger.warning(f"Configuration file not found: {path}")

    sections = {name: section_cls(**data.pop(name, {})) for name, section_cls in SECTIONS.items()}
    settings = Settings(**data, **sections)

    if mock_mode is not None:
        settings = settings.model_copy(update={"mock_mode": mock_mode})
    return settings
