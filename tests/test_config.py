"""
Tests for settings loading and the audit logger.
"""

import json
import os
from datetime import timedelta

import pytest
from pydantic import ValidationError

from conftest import FIXED_NOW
from vault_provisioner.audit.audit_logger import AuditLogger
from vault_provisioner.config import RetentionSettings, Settings, load_settings
from vault_provisioner.models import AuditRecord

ENV_PREFIXES = ("VAULT_", "NOTION_", "SLACK_", "RETENTION_", "SCHEDULER_", "AUDIT_DIR")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's own environment out of settings tests."""
    for name in list(os.environ):
        if name.upper().startswith(ENV_PREFIXES):
            monkeypatch.delenv(name)


class TestLoadSettings:
    """Test cases for load_settings."""

    def test_defaults(self):
        settings = load_settings()

        assert settings.mock_mode is False
        assert settings.retention.never_activated_days == 7
        assert settings.retention.disabled_stale_days == 30
        assert settings.retention.inactive_days == 90
        assert settings.vault.token_safety_margin_seconds == 60
        assert settings.scheduler.cleanup_cron == "0 3 * * *"
        assert settings.missing_required() == [
            "VAULT_CLIENT_ID", "VAULT_CLIENT_SECRET", "VAULT_ORG_ID", "NOTION_TOKEN", "NOTION_DATABASE_ID",
        ]

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "audit_dir": "file-audit",
            "vault": {"org_id": "from-file", "client_id": "file-client"},
            "retention": {"inactive_days": 120},
        }), encoding="utf-8")
        monkeypatch.setenv("VAULT_ORG_ID", "from-env")
        monkeypatch.setenv("RETENTION_PACING_SECONDS", "1.5")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("AUDIT_DIR", "/var/log/vault")

        settings = load_settings(path)

        assert settings.vault.org_id == "from-env"
        assert settings.vault.client_id == "file-client"
        assert settings.retention.inactive_days == 120
        assert settings.retention.pacing_seconds == 1.5
        assert settings.scheduler.enabled is False
        assert settings.audit_dir == "/var/log/vault"

    def test_empty_variables_are_ignored(self, monkeypatch):
        monkeypatch.setenv("VAULT_API_URL", "")

        assert load_settings().vault.api_url == "https://vault.example.com/api"

    def test_mock_mode_needs_nothing(self, monkeypatch):
        monkeypatch.setenv("VAULT_MOCK_MODE", "true")

        settings = load_settings()

        assert settings.mock_mode is True
        assert settings.missing_required() == []

    def test_explicit_mock_flag_wins(self, monkeypatch):
        monkeypatch.setenv("VAULT_MOCK_MODE", "true")

        assert load_settings(mock_mode=False).mock_mode is False

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.json")

        assert settings.audit_dir == "audit_logs"

    def test_sections_accept_keyword_values(self):
        settings = Settings(mock_mode=True, retention=RetentionSettings(inactive_days=30))

        assert settings.mock_mode is True
        assert settings.retention.inactive_days == 30

    @pytest.mark.parametrize("name,value", [
        ("RETENTION_PACING_SECONDS", "0.1"),
        ("RETENTION_INACTIVE_DAYS", "soon"),
    ])
    def test_invalid_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            load_settings()


class TestAuditLogger:
    """Test cases for AuditLogger."""

    def record(self, email, operator="alice", **fields):
        data = {"id": f"{email}-{operator}", "event_type": "invite", "operator": operator,
                "user_email": email, "action": "invite", "success": True}
        data.update(fields)
        return AuditRecord(**data)

    def test_round_trip_and_filters(self, tmp_path):
        logger = AuditLogger(str(tmp_path))
        logger.log_event(self.record("ada@example.com"))
        logger.log_event(self.record("grace@example.com", operator="bob"))

        assert [r.user_email for r in logger.get_events()] == ["grace@example.com", "ada@example.com"]
        assert [r.user_email for r in logger.get_events(user_email="ADA@example.com")] == ["ada@example.com"]
        assert [r.operator for r in logger.get_events(operator="bob")] == ["bob"]
        assert len(logger.get_events(limit=1)) == 1

    def test_date_filters(self, tmp_path):
        logger = AuditLogger(str(tmp_path))
        logger.log_event(self.record("old@example.com", timestamp=FIXED_NOW - timedelta(days=10)))
        logger.log_event(self.record("new@example.com", timestamp=FIXED_NOW))

        recent = logger.get_events(start_date=FIXED_NOW - timedelta(days=1))

        assert [r.user_email for r in recent] == ["new@example.com"]

    def test_unreadable_lines_are_skipped(self, tmp_path):
        logger = AuditLogger(str(tmp_path))
        logger.log_event(self.record("ada@example.com"))
        log_file = next(tmp_path.glob("audit_*.jsonl"))
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("{not json}\n")

        assert len(logger.get_events()) == 1
