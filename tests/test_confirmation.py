"""
Tests for the Confirmation Workflow.
"""

from unittest.mock import Mock

import pytest

from vault_provisioner.connectors.base_connector import ConnectorResult
from vault_provisioner.errors import ErrorCategory
from vault_provisioner.models import MemberStatus, MembershipRecord
from vault_provisioner.workflows.confirmation import ConfirmationWorkflow


class TestConfirmationWorkflow:
    """Test cases for ConfirmationWorkflow."""

    @pytest.fixture
    def make_workflow(self, connector, audit_logger):
        def factory(vault=None):
            return ConfirmationWorkflow(vault or connector, audit_logger, operator="tester")
        return factory

    def test_accepted_member_with_key_is_confirmed(self, make_workflow, connector):
        member = connector.add_member("ada@example.com", name="Ada")
        connector.accept(member.organization_member_id, public_key="PUBKEY")

        result = make_workflow().confirm_access("ada@example.com")

        assert result.title == "User Confirmed"
        assert result.success
        assert connector.members[member.organization_member_id].status == MemberStatus.CONFIRMED
        assert connector.calls == ["confirm"]

    def test_already_confirmed_issues_no_mutations(self, make_workflow, connector):
        connector.add_member("ada@example.com", MemberStatus.CONFIRMED, user_id="u1")
        spy = Mock(wraps=connector)

        result = make_workflow(spy).confirm_access("ada@example.com")

        assert result.title == "Already Confirmed"
        spy.confirm.assert_not_called()
        spy.reinvite.assert_not_called()
        spy.delete_member.assert_not_called()
        spy.invite.assert_not_called()

    def test_missing_public_key_does_not_call_confirm(self, make_workflow):
        vault = Mock()
        vault.find_by_email.return_value = MembershipRecord(
            id="m1", userId="u1", email="ada@example.com", status=MemberStatus.ACCEPTED)
        vault.get_public_key.return_value = None

        result = make_workflow(vault).confirm_access("ada@example.com")

        assert result.title == "Account Setup Required"
        assert result.level == "info"
        vault.get_public_key.assert_called_once_with("u1")
        vault.confirm.assert_not_called()

    def test_invited_member_without_account_is_not_ready(self, make_workflow, connector):
        connector.add_member("ada@example.com", MemberStatus.INVITED)

        result = make_workflow().confirm_access("ada@example.com")

        assert result.title == "Account Setup Required"
        assert connector.calls == []

    def test_unknown_member(self, make_workflow):
        result = make_workflow().confirm_access("nobody@example.com")

        assert result.title == "User Not Found"
        assert not result.success

    def test_invalid_state_from_api_maps_to_account_setup(self, make_workflow):
        vault = Mock()
        vault.find_by_email.return_value = MembershipRecord(
            id="m1", userId="u1", email="ada@example.com", status=MemberStatus.ACCEPTED)
        vault.get_public_key.return_value = "PUBKEY"
        vault.confirm.return_value = ConnectorResult.failure(
            ErrorCategory.API_ERROR, "Invalid request: User in invalid state.", 400)

        result = make_workflow(vault).confirm_access("ada@example.com")

        assert result.title == "Account Setup Required"
        vault.confirm.assert_called_once_with("m1", "u1", public_key="PUBKEY")

    def test_failed_confirm_is_audited(self, make_workflow, audit_logger):
        vault = Mock()
        vault.find_by_email.return_value = MembershipRecord(
            id="m1", userId="u1", email="ada@example.com", status=MemberStatus.ACCEPTED)
        vault.get_public_key.return_value = "PUBKEY"
        vault.confirm.return_value = ConnectorResult.failure(ErrorCategory.API_ERROR, "Forbidden", 403)

        make_workflow(vault).confirm_access("ada@example.com")

        records = audit_logger.get_events()
        assert len(records) == 1
        assert records[0].action == "confirm"
        assert not records[0].success
        assert records[0].error_message == "Forbidden"
