"""
Tests for ModerationService: authorization, notifications, the access gate
and the administrative read path.
"""
from datetime import timedelta

import pytest

from app.models.enums import AccountStatus, ActionType, NotificationEvent, UserType
from app.services.exceptions import (
    ForbiddenError,
    IllegalTransitionError,
    InvalidParametersError,
    NotFoundError,
)
from app.services.moderation import ModerationService, generate_temporary_password
from app.services.state_machine import Actor
from tests.helpers import T0, FailingNotifier, log_entries


def fake_hasher(password):
    return "hashed:" + password


class TestAuthorization:

    def test_non_admin_actor_is_refused(self, service, make_account, db_session):
        account = make_account(status=AccountStatus.PENDING)
        teacher = Actor(id=77, role=UserType.TEACHER.value)

        with pytest.raises(ForbiddenError):
            service.approve(account.id, teacher)

        assert service.get_account(account.id).status == AccountStatus.PENDING
        assert log_entries(db_session) == []

    def test_operator_may_moderate(self, service, make_account):
        account = make_account(status=AccountStatus.PENDING)
        result = service.approve(account.id, Actor(id=5, role=UserType.OPERATOR.value))
        assert result.status == AccountStatus.ACTIVE

    def test_self_delete_is_refused_before_lookup(self, service):
        """Refused even when the id does not exist: no I/O happens first."""
        operator = Actor(id=4040, role="operator")
        with pytest.raises(ForbiddenError):
            service.soft_delete(4040, operator, "leaving")

    def test_admin_cannot_hard_delete_self(self, service, admin, db_session):
        with pytest.raises(ForbiddenError):
            service.hard_delete(admin.id, admin, "leaving")
        assert service.get_account(admin.id).status == AccountStatus.ACTIVE
        assert log_entries(db_session, admin.id) == []

    def test_unknown_account(self, service, admin):
        with pytest.raises(NotFoundError) as exc_info:
            service.approve(12345, admin)
        assert "12345" in exc_info.value.message


class TestNotifications:

    def test_approval_notifies_account_holder(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.PENDING, email="kim@example.com", name="Kim")
        service.approve(account.id, admin)

        assert len(notifier.events) == 1
        event, email, name, detail = notifier.events[0]
        assert event == NotificationEvent.APPROVAL_RESULT
        assert email == "kim@example.com"
        assert name == "Kim"

    def test_send_email_false_skips_notification(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.PENDING)
        service.reject(account.id, admin, "duplicate", send_email=False)
        assert notifier.events == []

    def test_suspension_notification_carries_period(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.ACTIVE)
        service.suspend(account.id, admin, "spam", duration_mode="period", duration_days=7)

        event, _, _, detail = notifier.events[0]
        assert event == NotificationEvent.SUSPENSION
        assert detail["reason"] == "spam"
        assert detail["started_at"] == T0
        assert detail["ends_at"] == T0 + timedelta(days=7)

    def test_profile_update_sends_nothing(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.ACTIVE)
        service.update(account.id, admin, profile={"phone": "010-0000-0000"})
        assert notifier.events == []

    def test_notifications_can_be_disabled(self, db_session, notifier, clock, admin, make_account):
        service = ModerationService(db_session, notifier, clock=clock, notifications_enabled=False)
        account = make_account(status=AccountStatus.PENDING)
        service.approve(account.id, admin)
        assert notifier.events == []

    def test_notifier_failure_does_not_undo_the_transition(self, db_session, clock, admin, make_account):
        service = ModerationService(db_session, FailingNotifier(), clock=clock)
        account = make_account(status=AccountStatus.PENDING)

        result = service.approve(account.id, admin)

        assert result.status == AccountStatus.ACTIVE
        assert service.get_account(account.id).status == AccountStatus.ACTIVE
        assert len(log_entries(db_session, account.id)) == 1

    def test_hard_delete_notifies_with_captured_recipient(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.ACTIVE, email="gone@example.com", name="Gone")
        service.hard_delete(account.id, admin, "gdpr request")

        event, email, name, detail = notifier.events[0]
        assert event == NotificationEvent.DELETION
        assert (email, name) == ("gone@example.com", "Gone")
        assert detail["deletion_mode"] == "hard"
        assert detail["permanent_purge_at"] is None
        assert detail["reason"] == "gdpr request"


class TestScenarios:

    def test_soft_delete_then_restore(self, service, admin, make_account, notifier):
        account = make_account(status=AccountStatus.ACTIVE)

        service.soft_delete(account.id, admin, "policy violation")
        deleted = service.get_account(account.id)
        assert deleted.status == AccountStatus.DELETED
        assert deleted.permanent_purge_at == T0 + timedelta(days=30)

        service.restore(account.id, admin)
        restored = service.get_account(account.id)
        assert restored.status == AccountStatus.ACTIVE
        assert restored.deletion is None

        assert [event for event, _, _, _ in notifier.events] == [
            NotificationEvent.DELETION,
            NotificationEvent.UNSUSPENSION,
        ]

    def test_period_suspension_lifts_itself(self, service, suspended_account, clock, notifier, db_session):
        account_id = suspended_account.id

        with pytest.raises(ForbiddenError):
            service.check_access(account_id)

        clock.advance(days=8)
        account = service.check_access(account_id)

        assert account.status == AccountStatus.ACTIVE
        assert account.suspension is None
        entry = log_entries(db_session, account_id)[-1]
        assert entry.action_type == ActionType.UNSUSPEND
        assert entry.actor_id == "system"
        assert entry.detail["automatic"] is True
        assert notifier.events == []

    def test_manual_unsuspend_after_expiry_is_illegal(self, service, admin, suspended_account, clock):
        clock.advance(days=8)
        with pytest.raises(IllegalTransitionError):
            service.unsuspend(suspended_account.id, admin)

    def test_action_on_expired_suspension_sees_active_account(self, service, admin, suspended_account, clock):
        clock.advance(days=8)
        result = service.suspend(suspended_account.id, admin, "spam again")
        assert result.status == AccountStatus.SUSPENDED

        actions = [entry.action_type for entry in service.account_logs(suspended_account.id)]
        assert actions == [ActionType.SUSPEND, ActionType.UNSUSPEND]


class TestAccessGate:

    @pytest.mark.parametrize("status", [
        AccountStatus.PENDING,
        AccountStatus.REJECTED,
        AccountStatus.SUSPENDED,
        AccountStatus.DELETED,
    ])
    def test_only_active_accounts_pass(self, service, make_account, status):
        account = make_account(status=status)
        with pytest.raises(ForbiddenError):
            service.check_access(account.id)

    def test_active_account_passes(self, service, make_account):
        account = make_account(status=AccountStatus.ACTIVE)
        assert service.check_access(account.id).id == account.id

    def test_suspension_ending_exactly_now_still_blocks(self, service, suspended_account, clock):
        clock.advance(days=7)
        with pytest.raises(ForbiddenError):
            service.check_access(suspended_account.id)


class TestPasswordReset:

    def test_temporary_password_is_hashed_and_mailed(self, db_session, notifier, clock, admin, make_account):
        service = ModerationService(db_session, notifier, clock=clock, password_hasher=fake_hasher)
        account = make_account(status=AccountStatus.ACTIVE)

        result = service.reset_password(account.id, admin)

        assert result.action_type == ActionType.PASSWORD_RESET
        assert result.status == AccountStatus.ACTIVE
        event, _, _, detail = notifier.events[0]
        assert event == NotificationEvent.PASSWORD_RESET
        assert service.get_account(account.id).password_hash == fake_hasher(detail["temporary_password"])

    def test_reset_requires_a_hasher(self, service, admin, make_account, db_session):
        account = make_account(status=AccountStatus.ACTIVE)
        with pytest.raises(InvalidParametersError):
            service.reset_password(account.id, admin)
        assert log_entries(db_session, account.id) == []

    def test_link_method_is_not_supported(self, db_session, notifier, clock, admin, make_account):
        service = ModerationService(db_session, notifier, clock=clock, password_hasher=fake_hasher)
        account = make_account(status=AccountStatus.ACTIVE)
        with pytest.raises(InvalidParametersError) as exc_info:
            service.reset_password(account.id, admin, method="link")
        assert exc_info.value.field == "method"

    def test_generated_password_shape(self):
        password = generate_temporary_password()
        assert password.startswith("TMP-")
        assert password.endswith("!")
        assert len(password) == len("TMP-abcd-efgh!")
        assert generate_temporary_password() != password


class TestReadPath:

    def test_list_filters_by_status(self, service, admin, make_account):
        make_account(status=AccountStatus.PENDING)
        make_account(status=AccountStatus.PENDING)
        make_account(status=AccountStatus.REJECTED)

        rows, total = service.list_accounts(status=AccountStatus.PENDING)
        assert total == 2
        assert all(row.status == AccountStatus.PENDING for row in rows)

    def test_list_search_and_pagination(self, service, admin, make_account):
        for name in ("Alpha Teacher", "Bravo Teacher", "Charlie Teacher"):
            make_account(status=AccountStatus.ACTIVE, name=name)

        rows, total = service.list_accounts(search="teacher", sort="name", order="asc", page=2, limit=2)
        assert total == 3
        assert [row.name for row in rows] == ["Charlie Teacher"]

    def test_limit_is_capped(self, service, admin, make_account):
        make_account(status=AccountStatus.ACTIVE)
        rows, total = service.list_accounts(limit=1000, page=0)
        assert total == 2
        assert len(rows) == 2

    def test_listing_reflects_elapsed_suspensions(self, service, suspended_account, clock):
        clock.advance(days=8)
        rows, total = service.list_accounts(status=AccountStatus.SUSPENDED)
        assert (rows, total) == ([], 0)

    def test_status_counts(self, service, admin, make_account):
        make_account(status=AccountStatus.PENDING)
        make_account(status=AccountStatus.PENDING)
        make_account(status=AccountStatus.DELETED)

        counts = service.status_counts()
        assert counts == {"active": 1, "pending": 2, "deleted": 1}

    def test_logs_for_unknown_account_are_empty(self, service):
        assert service.account_logs(999) == []

