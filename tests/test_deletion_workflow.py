import pytest

from leaveflow.core.exceptions import ConflictError, ForbiddenError, NotEligibleError
from leaveflow.models.audit_log import AuditLog
from leaveflow.models.leave_request import LeaveRequest, LeaveStatus
from leaveflow.models.notification import Notification
from leaveflow.services.approval import LeaveApprovalService
from leaveflow.services.deletion import LeaveDeletionService
from tests.conftest import ANNUAL_DAYS


@pytest.fixture
def approved_request(db_session, make_request, org):
    """A fully approved two-day request by the team lead."""
    service = LeaveApprovalService(db_session)
    leave_request = make_request(org.team_lead, days=2)
    service.record_approval(leave_request.id, org.hr_manager, approve=True)
    return service.record_approval(leave_request.id, org.hr_director, approve=True)


def test_owner_requests_deletion_of_approved_leave(db_session, approved_request, org):
    leave_request = LeaveDeletionService(db_session).request_deletion(approved_request.id, org.team_lead)
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.PENDING_DELETION.value
    assert state.original_status == LeaveStatus.APPROVED.value
    assert state.deletion_requested_by == org.team_lead.id
    assert state.deletion_requested_at is not None


def test_approved_deletion_removes_row_and_restores_balance(db_session, approved_request, balance_of, org):
    service = LeaveDeletionService(db_session)
    request_id = approved_request.id
    assert balance_of(org.team_lead).used_days == 2.0

    service.request_deletion(request_id, org.team_lead)
    result = service.approve_deletion(request_id, org.hr_manager, comments="Plans changed")

    assert result.deleted is True
    assert result.restored_days == 2.0
    db_session.expire_all()
    assert db_session.get(LeaveRequest, request_id) is None

    balance = balance_of(org.team_lead)
    assert balance.used_days == 0.0
    assert balance.remaining_days == ANNUAL_DAYS

    actions = [a.action for a in db_session.query(AuditLog).filter(AuditLog.entity_id == request_id)]
    assert actions[-2:] == ["leave_deletion_requested", "leave_deletion_approved"]

    notice = db_session.query(Notification).filter(Notification.leave_request_id == request_id).order_by(Notification.id.desc()).first()
    assert notice.title == "Leave Deleted"
    assert notice.user_id == org.team_lead.id


def test_rejected_deletion_restores_prior_status(db_session, approved_request, balance_of, org):
    service = LeaveDeletionService(db_session)
    service.request_deletion(approved_request.id, org.team_lead)

    leave_request = service.reject_deletion(approved_request.id, org.hr_director, comments="Already booked")
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.APPROVED.value
    assert state.original_status is None
    assert state.deletion_requested_by is None
    assert state.deletion_rejected_by == org.hr_director.id
    assert state.deletion_rejection_comments == "Already booked"
    assert balance_of(org.team_lead).used_days == 2.0

    # The approval chain itself is untouched
    assert state.is_fully_approved
    assert [e.level for e in state.approval_history] == [1, 2]


def test_deletion_can_be_requested_again_after_rejection(db_session, approved_request, org):
    service = LeaveDeletionService(db_session)
    service.request_deletion(approved_request.id, org.team_lead)
    service.reject_deletion(approved_request.id, org.hr_manager)

    leave_request = service.request_deletion(approved_request.id, org.team_lead)
    state = leave_request.workflow_state
    assert leave_request.status == LeaveStatus.PENDING_DELETION.value
    assert state.deletion_rejected_by is None


def test_cancelled_request_deletion_restores_nothing(db_session, make_request, balance_of, org):
    leave_request = make_request(org.intern, days=1)
    LeaveApprovalService(db_session).cancel_leave_request(leave_request.id, org.intern)

    service = LeaveDeletionService(db_session)
    service.request_deletion(leave_request.id, org.intern)
    result = service.approve_deletion(leave_request.id, org.hr_manager)

    assert result.restored_days == 0.0
    assert balance_of(org.intern).used_days == 0.0


def test_only_owner_can_request_deletion(db_session, approved_request, org):
    with pytest.raises(ForbiddenError):
        LeaveDeletionService(db_session).request_deletion(approved_request.id, org.intern)


def test_second_deletion_request_conflicts(db_session, approved_request, org):
    service = LeaveDeletionService(db_session)
    service.request_deletion(approved_request.id, org.team_lead)
    with pytest.raises(ConflictError) as exc_info:
        service.request_deletion(approved_request.id, org.team_lead)
    assert exc_info.value.error_code == "DELETION_PENDING"


def test_open_request_cannot_be_deleted(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    with pytest.raises(ConflictError):
        LeaveDeletionService(db_session).request_deletion(leave_request.id, org.intern)

    db_session.expire_all()
    assert db_session.get(LeaveRequest, leave_request.id).status == LeaveStatus.PENDING.value


def test_team_lead_cannot_decide_deletions(db_session, make_request, org):
    leave_request = make_request(org.intern, days=1)
    service = LeaveDeletionService(db_session)
    LeaveApprovalService(db_session).cancel_leave_request(leave_request.id, org.intern)
    service.request_deletion(leave_request.id, org.intern)

    with pytest.raises(NotEligibleError):
        service.approve_deletion(leave_request.id, org.team_lead)
    with pytest.raises(NotEligibleError):
        service.reject_deletion(leave_request.id, org.employee)


def test_owner_cannot_decide_own_deletion(db_session, make_request, org):
    leave_request = make_request(org.hr_manager, days=1)
    LeaveApprovalService(db_session).cancel_leave_request(leave_request.id, org.hr_manager)
    service = LeaveDeletionService(db_session)
    service.request_deletion(leave_request.id, org.hr_manager)

    with pytest.raises(NotEligibleError):
        service.approve_deletion(leave_request.id, org.hr_manager)


def test_deciding_without_pending_deletion_conflicts(db_session, approved_request, org):
    with pytest.raises(ConflictError):
        LeaveDeletionService(db_session).approve_deletion(approved_request.id, org.hr_manager)
