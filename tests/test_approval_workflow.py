from datetime import timedelta

import pytest
from sqlalchemy import text

from leaveflow.core.config import settings
from leaveflow.core.exceptions import (
    ConflictError,
    DuplicateApprovalError,
    ForbiddenError,
    InsufficientBalanceError,
    NotEligibleError,
    StaleStateError,
    ValidationError,
)
from leaveflow.models.audit_log import AuditLog
from leaveflow.models.leave_request import LeaveRequest, LeaveStatus
from leaveflow.models.notification import Notification
from leaveflow.models.user import UserRole
from leaveflow.repositories.leave_request_repository import LeaveRequestRepository
from leaveflow.services.approval import LeaveApprovalService, approval_level_for
from tests.conftest import ANNUAL_DAYS, MONDAY


def _assert_consistent(leave_request):
    state = leave_request.workflow_state
    assert len(state.approval_history) == state.current_approval_level
    assert state.required_approval_levels == list(range(1, len(state.required_approval_levels) + 1))


# --- Approver levels ---

def test_approval_level_for_positions_and_roles(org):
    assert approval_level_for(org.team_lead) == 1
    assert approval_level_for(org.hr_manager) == 2
    assert approval_level_for(org.hr_director) == 3
    assert approval_level_for(org.admin) == 4
    assert approval_level_for(org.super_admin) == 5
    assert approval_level_for(org.intern) == 0


def test_approval_level_for_role_without_position(db_session, org):
    org.employee.role = UserRole.MANAGER
    org.employee.position_id = None
    db_session.commit()
    assert approval_level_for(org.employee) == 2


# --- Submission ---

def test_submission_resolves_chain_into_metadata(make_request, org):
    leave_request = make_request(org.intern, days=1)
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.PENDING.value
    assert leave_request.number_of_days == 1.0
    assert state.required_approval_levels == [1, 2, 3, 4]
    assert state.current_approval_level == 0
    assert state.workflow_details.strategy == "position_table"
    assert leave_request.workflow_metadata["requiredApprovalLevels"] == [1, 2, 3, 4]
    assert leave_request.version_id == 1


def test_half_day_request_counts_half_a_day(make_request, org):
    leave_request = make_request(org.team_lead, days=2, request_type="half_day_morning")
    assert leave_request.number_of_days == 1.5
    assert leave_request.workflow_state.required_approval_levels == [1, 2]


def test_overlapping_request_is_rejected(make_request, org):
    make_request(org.intern, days=3)
    with pytest.raises(ConflictError):
        make_request(org.intern, days=1, start=MONDAY + timedelta(days=2))


def test_submission_requires_enough_balance(make_request, org):
    with pytest.raises(InsufficientBalanceError):
        make_request(org.intern, days=40)


def test_weekend_only_request_is_invalid(make_request, org):
    saturday = MONDAY + timedelta(days=5)
    with pytest.raises(ValidationError):
        make_request(org.intern, days=2, start=saturday)


def test_inactive_leave_type_is_rejected(db_session, make_request, org):
    org.leave_type.is_active = False
    db_session.commit()
    with pytest.raises(ValidationError):
        make_request(org.intern, days=1)


def test_uncovered_position_auto_approves_when_enabled(make_request, balance_of, org, monkeypatch):
    monkeypatch.setattr(settings.workflow, "auto_approve_uncovered_positions", True)
    leave_request = make_request(org.employee, days=2)
    assert leave_request.status == LeaveStatus.APPROVED.value
    assert leave_request.workflow_state.is_fully_approved
    assert balance_of(org.employee).used_days == 2.0


# --- Decisions ---

def test_two_level_chain_partial_then_full_approval(db_session, make_request, balance_of, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.team_lead, days=2, request_type="half_day_afternoon")

    leave_request = service.record_approval(leave_request.id, org.hr_manager, approve=True, comments="ok")
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.PARTIALLY_APPROVED.value
    assert state.current_approval_level == 1
    assert state.approval_history[0].approver_id == org.hr_manager.id
    assert balance_of(org.team_lead).used_days == 0.0
    _assert_consistent(leave_request)

    leave_request = service.record_approval(leave_request.id, org.hr_director, approve=True)
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.APPROVED.value
    assert state.is_fully_approved
    assert state.current_approval_level == 2
    assert leave_request.approver_id == org.hr_director.id
    assert leave_request.approved_at is not None
    _assert_consistent(leave_request)

    balance = balance_of(org.team_lead)
    assert balance.used_days == 1.5
    assert balance.remaining_days == ANNUAL_DAYS - 1.5


def test_intern_chain_advances_one_level_per_approval(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)

    for approver in (org.team_lead, org.hr_manager, org.hr_director):
        leave_request = service.record_approval(leave_request.id, approver, approve=True)
        assert leave_request.status == LeaveStatus.PARTIALLY_APPROVED.value
        _assert_consistent(leave_request)

    leave_request = service.record_approval(leave_request.id, org.admin, approve=True)
    assert leave_request.status == LeaveStatus.APPROVED.value
    assert [e.level for e in leave_request.workflow_state.approval_history] == [1, 2, 3, 4]


def test_higher_level_approver_cannot_skip_ahead(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    with pytest.raises(NotEligibleError):
        LeaveApprovalService(db_session).record_approval(leave_request.id, org.hr_manager, approve=True)

    db_session.expire_all()
    assert db_session.get(LeaveRequest, leave_request.id).status == LeaveStatus.PENDING.value


def test_explicit_level_must_be_the_next_one(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    with pytest.raises(NotEligibleError):
        LeaveApprovalService(db_session).record_approval(leave_request.id, org.team_lead, approve=True, level=2)


def test_replaying_a_level_raises_duplicate(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)

    service.record_approval(leave_request.id, org.team_lead, approve=True, level=1)
    with pytest.raises(DuplicateApprovalError):
        service.record_approval(leave_request.id, org.team_lead, approve=True, level=1)

    db_session.expire_all()
    state = db_session.get(LeaveRequest, leave_request.id).workflow_state
    assert len(state.approval_history) == 1


def test_replaying_without_level_raises_duplicate(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)

    service.record_approval(leave_request.id, org.team_lead, approve=True)
    with pytest.raises(DuplicateApprovalError) as exc_info:
        service.record_approval(leave_request.id, org.team_lead, approve=True)
    assert exc_info.value.details["level"] == 1


def test_admin_replay_does_not_approve_twice(db_session, make_request, balance_of, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.team_lead, days=1)

    service.record_approval(leave_request.id, org.admin, approve=True)
    with pytest.raises(DuplicateApprovalError):
        service.record_approval(leave_request.id, org.admin, approve=True)

    db_session.expire_all()
    reloaded = db_session.get(LeaveRequest, leave_request.id)
    assert reloaded.status == LeaveStatus.PARTIALLY_APPROVED.value
    assert [e.approver_id for e in reloaded.workflow_state.approval_history] == [org.admin.id]
    assert balance_of(org.team_lead).used_days == 0.0

    # Pinning the next level is still allowed
    approved = service.record_approval(leave_request.id, org.admin, approve=True, level=2)
    assert approved.status == LeaveStatus.APPROVED.value


def test_rejection_terminates_the_request(db_session, make_request, balance_of, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)
    service.record_approval(leave_request.id, org.team_lead, approve=True)

    leave_request = service.record_approval(leave_request.id, org.hr_manager, approve=False, comments="Busy week")
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.REJECTED.value
    assert leave_request.approver_comments == "Busy week"
    assert state.rejected_by == org.hr_manager.id
    assert state.rejected_at_level == 2
    assert state.current_approval_level == 1
    assert balance_of(org.intern).used_days == 0.0

    with pytest.raises(NotEligibleError):
        service.record_approval(leave_request.id, org.hr_director, approve=True)


def test_admin_may_act_at_any_pending_level(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)

    leave_request = service.record_approval(leave_request.id, org.admin, approve=True)
    assert leave_request.status == LeaveStatus.PARTIALLY_APPROVED.value
    assert leave_request.workflow_state.current_approval_level == 1


def test_approver_cannot_decide_own_request(db_session, make_request, org):
    leave_request = make_request(org.team_lead, days=1)
    with pytest.raises(NotEligibleError):
        LeaveApprovalService(db_session).record_approval(leave_request.id, org.team_lead, approve=True)


def test_failed_debit_rolls_back_final_approval(db_session, make_request, balance_of, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.team_lead, days=2, request_type="half_day_morning")
    service.record_approval(leave_request.id, org.hr_manager, approve=True)

    balance = balance_of(org.team_lead)
    balance.remaining_days = 1.0
    db_session.commit()

    with pytest.raises(InsufficientBalanceError):
        service.record_approval(leave_request.id, org.hr_director, approve=True)

    db_session.expire_all()
    reloaded = db_session.get(LeaveRequest, leave_request.id)
    assert reloaded.status == LeaveStatus.PARTIALLY_APPROVED.value
    assert reloaded.workflow_state.current_approval_level == 1
    assert balance_of(org.team_lead).used_days == 0.0


def test_transitions_write_audit_and_notifications(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.team_lead, days=1)
    service.record_approval(leave_request.id, org.hr_manager, approve=True)
    service.record_approval(leave_request.id, org.hr_director, approve=True)

    actions = [a.action for a in db_session.query(AuditLog).order_by(AuditLog.id)]
    assert actions == ["leave_request_created", "leave_approved", "leave_approved"]
    titles = [n.title for n in db_session.query(Notification).filter(Notification.user_id == org.team_lead.id)]
    assert titles == ["Leave Partially Approved", "Leave Approved"]


# --- Cancellation ---

def test_owner_cancels_pending_request(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    leave_request = LeaveApprovalService(db_session).cancel_leave_request(leave_request.id, org.intern)
    assert leave_request.status == LeaveStatus.CANCELLED.value


def test_only_owner_can_cancel(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    with pytest.raises(ForbiddenError):
        LeaveApprovalService(db_session).cancel_leave_request(leave_request.id, org.team_lead)


def test_cannot_cancel_after_an_approval(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)
    service.record_approval(leave_request.id, org.team_lead, approve=True)
    with pytest.raises(ConflictError):
        service.cancel_leave_request(leave_request.id, org.intern)


# --- Work queue ---

def test_actionable_requests_follow_next_level(db_session, make_request, org):
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.intern, days=1)

    assert [r.id for r in service.list_actionable_requests(org.team_lead)] == [leave_request.id]
    assert service.list_actionable_requests(org.hr_manager) == []

    service.record_approval(leave_request.id, org.team_lead, approve=True)
    assert service.list_actionable_requests(org.team_lead) == []
    assert [r.id for r in service.list_actionable_requests(org.hr_manager)] == [leave_request.id]
    assert [r.id for r in service.list_actionable_requests(org.admin)] == [leave_request.id]


# --- Concurrency ---

def test_concurrent_write_is_detected_by_version(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    repository = LeaveRequestRepository(db_session)
    loaded = repository.get(leave_request.id)

    # Another writer bumps the version behind the session's back
    db_session.execute(
        text("UPDATE leave_requests SET version_id = version_id + 1 WHERE id = :id"),
        {"id": leave_request.id},
    )
    loaded.reason = "changed"
    with pytest.raises(StaleStateError):
        repository.save(loaded)
    db_session.rollback()


def test_stale_transition_is_retried_against_fresh_state(db_session, make_request, org, monkeypatch):
    leave_request = make_request(org.intern, days=1)
    calls = {"count": 0}
    original_save = LeaveRequestRepository.save

    def flaky_save(self, request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleStateError("LeaveRequest", request.id)
        return original_save(self, request)

    monkeypatch.setattr(LeaveRequestRepository, "save", flaky_save)
    result = LeaveApprovalService(db_session).record_approval(leave_request.id, org.team_lead, approve=True)

    assert calls["count"] == 2
    assert result.workflow_state.current_approval_level == 1
    assert len(result.workflow_state.approval_history) == 1


def test_stale_transition_gives_up_after_retries(db_session, make_request, org, monkeypatch):
    leave_request = make_request(org.intern, days=1)
    calls = {"count": 0}

    def always_stale(self, request):
        calls["count"] += 1
        raise StaleStateError("LeaveRequest", request.id)

    monkeypatch.setattr(LeaveRequestRepository, "save", always_stale)
    with pytest.raises(StaleStateError):
        LeaveApprovalService(db_session).record_approval(leave_request.id, org.team_lead, approve=True)
    assert calls["count"] == settings.workflow.transition_retry_attempts


def test_version_bump_during_decision_is_retried(db_session, make_request, balance_of, org, monkeypatch):
    leave_request = make_request(org.team_lead, days=1)
    calls = {"count": 0}
    original_get_for_update = LeaveRequestRepository.get_for_update

    def racing_get_for_update(self, request_id):
        loaded = original_get_for_update(self, request_id)
        calls["count"] += 1
        if calls["count"] == 1:
            # Another writer commits between our read and our write
            self.session.execute(
                text("UPDATE leave_requests SET version_id = version_id + 1 WHERE id = :id"),
                {"id": request_id},
            )
        return loaded

    monkeypatch.setattr(LeaveRequestRepository, "get_for_update", racing_get_for_update)
    result = LeaveApprovalService(db_session).record_approval(leave_request.id, org.hr_manager, approve=True)

    assert calls["count"] == 2
    assert result.status == LeaveStatus.PARTIALLY_APPROVED.value
    assert len(result.workflow_state.approval_history) == 1
    assert db_session.query(AuditLog).filter(AuditLog.action == "leave_approved").count() == 1


def test_stale_deletion_surfaces_as_stale_state(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    repository = LeaveRequestRepository(db_session)
    loaded = repository.get(leave_request.id)

    db_session.execute(
        text("UPDATE leave_requests SET version_id = version_id + 1 WHERE id = :id"),
        {"id": leave_request.id},
    )
    with pytest.raises(StaleStateError) as exc_info:
        repository.delete(loaded)
    assert exc_info.value.details["id"] == leave_request.id
    db_session.rollback()
