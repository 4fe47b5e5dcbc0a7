"""
Shared fixtures for the Vault Provisioner tests.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from vault_provisioner.audit.audit_logger import AuditLogger
from vault_provisioner.connectors.base_connector import MockVaultConnector
from vault_provisioner.connectors.directory_connector import MockDirectory
from vault_provisioner.engine.policy_mapper import PolicyMapper
from vault_provisioner.models import Identity

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def make_response(status_code: int = 200, body=None, text: str = "") -> requests.Response:
    """Build a real requests.Response with the given status and body."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = "OK" if status_code < 400 else "Error"
    response.url = "https://vault.example.test"
    response.encoding = "utf-8"
    if body is not None:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = text.encode("utf-8")
    return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connector():
    """In-memory vault organization."""
    return MockVaultConnector()


@pytest.fixture
def directory():
    """Directory knowing Ada (Design) and Grace (Engineering, no explicit role)."""
    return MockDirectory([
        Identity(name="Ada", personal_email="ada@example.com", team="Design", role="Design"),
        Identity(name="Grace", personal_email="grace@example.com", team="Engineering"),
    ])


@pytest.fixture
def policy_mapper():
    return PolicyMapper()


@pytest.fixture
def audit_logger(tmp_path):
    return AuditLogger(str(tmp_path / "audit"))
