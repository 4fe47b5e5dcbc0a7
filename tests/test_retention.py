"""
Tests for the Retention Policy and Retention Job.
"""

import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import FIXED_NOW
from vault_provisioner.connectors.base_connector import ConnectorResult
from vault_provisioner.engine.retention import RetentionJob, RetentionPolicy
from vault_provisioner.errors import ErrorCategory, TransportError
from vault_provisioner.models import MemberStatus, MemberType, MembershipRecord, RetentionAction, RetentionReason


def days_ago(days):
    return FIXED_NOW - timedelta(days=days)


def member(member_id="m1", **fields):
    data = {"id": member_id, "email": f"{member_id}@example.com", "status": MemberStatus.CONFIRMED}
    data.update(fields)
    return MembershipRecord(**data)


class TestRetentionPolicy:
    """Classification rules, in priority order."""

    @pytest.fixture
    def policy(self):
        return RetentionPolicy()

    def test_never_activated_wins_over_recent_activity(self, policy):
        record = member(hasMasterPassword=False, createdAt=days_ago(10), lastActive=days_ago(1), enabled=True)

        verdict = policy.classify(record, FIXED_NOW)

        assert verdict.action == RetentionAction.DELETE
        assert verdict.reason == RetentionReason.NEVER_ACTIVATED

    def test_recently_created_without_password_is_retained(self, policy):
        record = member(hasMasterPassword=False, createdAt=days_ago(3))

        assert policy.classify(record, FIXED_NOW).action == RetentionAction.RETAIN

    def test_disabled_and_stale(self, policy):
        record = member(enabled=False, lastActive=days_ago(45), createdAt=days_ago(400))

        assert policy.classify(record, FIXED_NOW).reason == RetentionReason.DISABLED_AND_STALE

    def test_disabled_but_recent_is_retained(self, policy):
        record = member(enabled=False, lastActive=days_ago(10))

        assert policy.classify(record, FIXED_NOW).action == RetentionAction.RETAIN

    def test_inactive_regardless_of_enabled(self, policy):
        record = member(enabled=True, lastActive=days_ago(95))

        verdict = policy.classify(record, FIXED_NOW)

        assert verdict.action == RetentionAction.DELETE
        assert verdict.reason == RetentionReason.INACTIVE

    def test_active_member_retained(self, policy):
        record = member(lastActive=days_ago(5), createdAt=days_ago(200))

        verdict = policy.classify(record, FIXED_NOW)

        assert verdict.action == RetentionAction.RETAIN
        assert verdict.reason == RetentionReason.ACTIVE

    def test_unknown_activity_never_matches(self, policy):
        record = member(lastActive=None, createdAt=None, hasMasterPassword=False, enabled=False)

        assert policy.classify(record, FIXED_NOW).action == RetentionAction.RETAIN

    def test_admins_are_protected(self, policy):
        record = member(type=MemberType.ADMIN, lastActive=days_ago(400))

        assert policy.classify(record, FIXED_NOW).reason == RetentionReason.PROTECTED

    def test_admin_protection_can_be_disabled(self):
        policy = RetentionPolicy(protect_admins=False)
        record = member(type=MemberType.OWNER, lastActive=days_ago(400))

        assert policy.classify(record, FIXED_NOW).reason == RetentionReason.INACTIVE

    def test_never_activated_owner_deleted_when_unprotected(self):
        policy = RetentionPolicy(protect_admins=False)
        record = member(type=MemberType.OWNER, hasMasterPassword=False, createdAt=days_ago(10),
                        lastActive=days_ago(1))

        verdict = policy.classify(record, FIXED_NOW)

        assert verdict.action == RetentionAction.DELETE
        assert verdict.reason == RetentionReason.NEVER_ACTIVATED

    def test_thresholds_are_configurable(self):
        policy = RetentionPolicy(inactive_days=30)

        assert policy.classify(member(lastActive=days_ago(31)), FIXED_NOW).should_delete

    def test_naive_timestamps_treated_as_utc(self, policy):
        record = member(lastActive=days_ago(95).replace(tzinfo=None))

        assert policy.classify(record, FIXED_NOW).reason == RetentionReason.INACTIVE


class TestRetentionJob:
    """Test cases for RetentionJob runs."""

    @pytest.fixture
    def seeded(self, connector):
        connector.add_member("new@example.com", organization_member_id="never",
                             has_master_password=False, created_at=days_ago(10))
        connector.add_member("active@example.com", MemberStatus.CONFIRMED, organization_member_id="active",
                             last_active=days_ago(2), created_at=days_ago(300))
        connector.add_member("gone@example.com", MemberStatus.CONFIRMED, organization_member_id="gone",
                             last_active=days_ago(95), created_at=days_ago(300))
        return connector

    def test_three_members_two_deletions_paced(self, seeded, clock, audit_logger):
        sleep = Mock()
        job = RetentionJob(seeded, audit_logger=audit_logger, sleep=sleep, clock=clock)

        summary = job.run()

        assert summary.total_users == 3
        assert summary.deleted == 2
        assert summary.errors == []
        assert seeded.calls == ["delete", "delete"]
        assert set(seeded.members) == {"active"}

        sleep.assert_called_once()
        assert sleep.call_args[0][0] >= 0.5

        records = audit_logger.get_events(operator="retention-job")
        assert {r.user_email for r in records} == {"new@example.com", "gone@example.com"}

    def test_dry_run_deletes_nothing(self, seeded, clock):
        job = RetentionJob(seeded, sleep=Mock(), clock=clock)

        summary = job.run(dry_run=True)

        assert summary.dry_run
        assert summary.deleted == 0
        assert [v.organization_member_id for v in summary.pending_deletions] == ["never", "gone"]
        assert seeded.calls == []

    def test_failed_delete_does_not_stop_the_pass(self, clock):
        vault = Mock()
        vault.list_members.return_value = [member("a", lastActive=days_ago(100)),
                                           member("b", lastActive=days_ago(100))]
        vault.delete_member.side_effect = [
            ConnectorResult.failure(ErrorCategory.API_ERROR, "API error (500): boom", 500),
            ConnectorResult(True, "Deleted"),
        ]
        job = RetentionJob(vault, sleep=Mock(), clock=clock)

        summary = job.run()

        assert summary.deleted == 1
        assert summary.errors == ["a@example.com: API error (500): boom"]
        assert vault.delete_member.call_count == 2

    def test_exception_during_delete_is_recorded(self, clock):
        vault = Mock()
        vault.list_members.return_value = [member("a", lastActive=days_ago(100)),
                                           member("b", lastActive=days_ago(100))]
        vault.delete_member.side_effect = [RuntimeError("socket closed"), ConnectorResult(True, "Deleted")]
        job = RetentionJob(vault, sleep=Mock(), clock=clock)

        summary = job.run()

        assert summary.deleted == 1
        assert len(summary.errors) == 1

    def test_listing_failure_is_reported(self, clock):
        vault = Mock()
        vault.list_members.side_effect = TransportError("unreachable")
        job = RetentionJob(vault, sleep=Mock(), clock=clock)

        summary = job.run()

        assert summary.total_users == 0
        assert summary.errors
        vault.delete_member.assert_not_called()

    def test_pacing_below_minimum_rejected(self, connector):
        with pytest.raises(ValueError):
            RetentionJob(connector, pacing_seconds=0.1)

    def test_overlapping_run_is_skipped(self, clock):
        started = threading.Event()
        release = threading.Event()
        vault = Mock()

        def slow_list():
            started.set()
            release.wait(timeout=5)
            return []

        vault.list_members.side_effect = slow_list
        job = RetentionJob(vault, sleep=Mock(), clock=clock)

        worker = threading.Thread(target=job.run)
        worker.start()
        assert started.wait(timeout=5)

        second = job.run()
        release.set()
        worker.join(timeout=5)

        assert second.skipped
        assert vault.list_members.call_count == 1
        assert job.last_summary is not None and not job.last_summary.skipped

    def test_failed_audit_write_does_not_stop_the_pass(self, clock):
        vault = Mock()
        vault.list_members.return_value = [member("a", lastActive=days_ago(100)),
                                           member("b", lastActive=days_ago(100))]
        vault.delete_member.return_value = ConnectorResult(True, "Deleted")
        audit = Mock()
        audit.log_event.side_effect = OSError("disk full")
        job = RetentionJob(vault, audit_logger=audit, sleep=Mock(), clock=clock)

        summary = job.run()

        assert vault.delete_member.call_count == 2
        assert summary.deleted == 2
        assert len(summary.errors) == 2
        assert all("audit write failed" in e for e in summary.errors)
        assert job.last_summary is summary
