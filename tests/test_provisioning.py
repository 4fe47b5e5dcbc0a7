"""
Tests for the Provisioning Workflow.

Covers the membership state machine: directory gate, invite, reinvite,
already confirmed, revoked, and the mapping of failures to replies.
"""

from unittest.mock import Mock

import pytest

from vault_provisioner.connectors.base_connector import ConnectorResult
from vault_provisioner.errors import ErrorCategory, TransportError
from vault_provisioner.models import MemberStatus
from vault_provisioner.workflows.provisioning import ProvisioningWorkflow

DESIGN_ID = "00000000-0000-0000-0000-000000000010"
BASELINE_ID = "00000000-0000-0000-0000-000000000001"


class TestProvisioningWorkflow:
    """Test cases for ProvisioningWorkflow."""

    @pytest.fixture
    def make_workflow(self, connector, directory, policy_mapper, audit_logger):
        def factory(**overrides):
            return ProvisioningWorkflow(
                overrides.get("connector", connector),
                overrides.get("directory", directory),
                policy_mapper,
                overrides.get("audit_logger", audit_logger),
                operator="tester",
            )
        return factory

    def test_new_member_is_invited_with_role_collections(self, make_workflow, connector):
        """Ada (Design) with no vault membership is invited with Design and the baseline."""
        spy = Mock(wraps=connector)

        result = make_workflow(connector=spy).provision_access("ada@example.com")

        assert result.success
        assert result.title == "Invitation Sent"
        assert "Design" in result.description
        assert "All Teams" in result.description

        spy.invite.assert_called_once()
        email, grants = spy.invite.call_args[0]
        assert email == "ada@example.com"
        assert [g.collection_id for g in grants] == [DESIGN_ID, BASELINE_ID]
        spy.reinvite.assert_not_called()

    def test_accepted_member_is_reinvited(self, make_workflow, connector):
        member = connector.add_member("ada@example.com", MemberStatus.ACCEPTED)
        spy = Mock(wraps=connector)

        result = make_workflow(connector=spy).provision_access("ada@example.com")

        assert result.title == "Invitation Resent"
        spy.reinvite.assert_called_once_with(member.organization_member_id)
        spy.invite.assert_not_called()

    def test_second_request_reinvites_instead_of_inviting_again(self, make_workflow, connector):
        first = make_workflow().provision_access("ada@example.com")
        second = make_workflow().provision_access("ada@example.com")

        assert first.title == "Invitation Sent"
        assert second.title == "Invitation Resent"
        assert connector.calls == ["invite", "reinvite"]
        assert len(connector.members) == 1

    def test_confirmed_member_is_left_alone(self, make_workflow, connector):
        connector.add_member("ada@example.com", MemberStatus.CONFIRMED, name="Ada")

        result = make_workflow().provision_access("ada@example.com")

        assert result.title == "Already Confirmed"
        assert result.level == "info"
        assert connector.calls == []

    def test_revoked_member_is_not_touched(self, make_workflow, connector):
        connector.add_member("ada@example.com", MemberStatus.REVOKED)

        result = make_workflow().provision_access("ada@example.com")

        assert result.title == "Access Revoked"
        assert connector.calls == []

    def test_unknown_email_never_reaches_the_vault(self, make_workflow):
        vault = Mock()

        result = make_workflow(connector=vault).provision_access("stranger@example.com")

        assert result.title == "Email Not Found"
        assert not result.success
        assert vault.mock_calls == []

    def test_directory_gate_applies_even_to_existing_members(self, make_workflow, connector):
        connector.add_member("stranger@example.com", MemberStatus.INVITED)

        result = make_workflow().provision_access("stranger@example.com")

        assert result.title == "Email Not Found"
        assert connector.calls == []

    def test_invalid_email_rejected_before_lookup(self, make_workflow, directory):
        result = make_workflow().provision_access("not-an-email")

        assert result.title == "Invalid Email"
        assert directory.lookups == 0

    def test_email_is_normalized(self, make_workflow, connector):
        result = make_workflow().provision_access("  ADA@Example.com ")

        assert result.title == "Invitation Sent"
        assert list(connector.members.values())[0].email == "ada@example.com"

    def test_role_falls_back_to_team(self, make_workflow, connector):
        spy = Mock(wraps=connector)

        make_workflow(connector=spy).provision_access("grace@example.com")

        grants = spy.invite.call_args[0][1]
        assert [g.name for g in grants] == ["Engineering", "Infrastructure", "All Teams"]

    def test_invite_conflict_maps_to_already_invited(self, make_workflow):
        vault = Mock()
        vault.find_by_email.return_value = None
        vault.invite.return_value = ConnectorResult.failure(ErrorCategory.ALREADY_EXISTS, "exists", 409)

        result = make_workflow(connector=vault).provision_access("ada@example.com")

        assert result.title == "Already Invited"
        assert not result.success

    def test_api_error_shows_api_message(self, make_workflow):
        vault = Mock()
        vault.find_by_email.return_value = None
        vault.invite.return_value = ConnectorResult.failure(
            ErrorCategory.API_ERROR, "Rate limit exceeded, please try again later", 429)

        result = make_workflow(connector=vault).provision_access("ada@example.com")

        assert result.title == "Error!"
        assert result.description == "Rate limit exceeded, please try again later"

    def test_transport_error_during_lookup(self, make_workflow):
        vault = Mock()
        vault.find_by_email.side_effect = TransportError("connection reset")

        result = make_workflow(connector=vault).provision_access("ada@example.com")

        assert result.title == "Vault Unreachable"
        vault.invite.assert_not_called()

    def test_unexpected_error_gives_generic_reply(self, make_workflow, caplog):
        vault = Mock()
        vault.find_by_email.side_effect = KeyError("internal-detail-xyz")

        result = make_workflow(connector=vault).provision_access("ada@example.com")

        assert result.title == "Something Went Wrong"
        assert "internal-detail-xyz" not in result.description
        assert "internal-detail-xyz" in caplog.text

    def test_mutations_are_audited(self, make_workflow, audit_logger):
        workflow = make_workflow()
        workflow.provision_access("ada@example.com")

        records = audit_logger.get_events(user_email="ada@example.com")

        assert len(records) == 1
        assert records[0].action == "invite"
        assert records[0].operator == "tester"
        assert records[0].success
        assert records[0].workflow_id == workflow.workflow_id
        assert workflow.get_execution_summary()["successful_steps"] == 1

    def test_failed_audit_write_keeps_successful_reply(self, make_workflow, connector):
        broken_audit = Mock()
        broken_audit.log_event.side_effect = OSError("disk full")
        workflow = make_workflow(audit_logger=broken_audit)

        result = workflow.provision_access("ada@example.com")

        assert result.title == "Invitation Sent"
        assert connector.calls == ["invite"]
        assert workflow.errors == ["audit invite: disk full"]
