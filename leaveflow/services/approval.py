"""
Approval State Machine

    pending -> partially_approved -> approved
       |              |
       +--> rejected <+
       |
       +--> cancelled (requester only)

Each transition runs inside one transaction against a row loaded
`FOR UPDATE` and guarded by the request's version counter. The balance
ledger is debited in the same transaction that moves a request to approved.
"""
from datetime import datetime, timezone
from typing import List, Optional

from leaveflow.core.exceptions import (
    ConflictError,
    DuplicateApprovalError,
    ForbiddenError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
    WorkflowConfigurationError,
)
from leaveflow.models.leave_request import (
    DECIDABLE_STATUSES,
    LeaveRequest,
    LeaveStatus,
)
from leaveflow.models.leave_type import LeaveType
from leaveflow.models.user import User, UserRole
from leaveflow.repositories.leave_request_repository import LeaveRequestRepository
from leaveflow.schemas.leave import LeaveRequestCreate
from leaveflow.schemas.workflow import (
    ApprovalHistoryEntry,
    LeaveRequestMetadata,
    WorkflowPreview,
)
from leaveflow.services.audit import AuditService
from leaveflow.services.base import BaseService
from leaveflow.services.directory import OrganizationDirectory
from leaveflow.services.leave_balance import LeaveBalanceLedger
from leaveflow.services.leave_days import HALF_DAY_TYPES, calculate_leave_days, load_holidays
from leaveflow.services.notification import NotificationService
from leaveflow.services.workflow_resolver import WorkflowResolver

# Administrative level of an approver. Positions outrank roles below admin.
POSITION_APPROVAL_LEVELS = {
    "TEAM_LEAD": 1,
    "HR MANAGER": 2,
    "HR DIRECTOR": 3,
}
ROLE_APPROVAL_LEVELS = {
    UserRole.TEAM_LEAD: 1,
    UserRole.MANAGER: 2,
    UserRole.HR: 3,
    UserRole.ADMIN: 4,
    UserRole.SUPER_ADMIN: 5,
}
MANAGER_LEVEL = 2


def approval_level_for(user: User) -> int:
    """0 means the user never approves anything."""
    if user.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN):
        return ROLE_APPROVAL_LEVELS[user.role]
    position = (user.position_name or "").strip().upper()
    if position in POSITION_APPROVAL_LEVELS:
        return POSITION_APPROVAL_LEVELS[position]
    return ROLE_APPROVAL_LEVELS.get(user.role, 0)


class LeaveApprovalService(BaseService):

    def __init__(self, db):
        super().__init__(db)
        self.repository = LeaveRequestRepository(db)
        self.ledger = LeaveBalanceLedger(db)
        self.directory = OrganizationDirectory(db)
        self.audit = AuditService(db)

    # ============================================================================
    # SUBMISSION
    # ============================================================================

    def create_leave_request(self, requester: User, data: LeaveRequestCreate) -> LeaveRequest:
        leave_type = self.db.get(LeaveType, data.leave_type_id)
        if leave_type is None:
            raise NotFoundError("LeaveType", data.leave_type_id)
        if not leave_type.is_active:
            raise ValidationError(f"Leave type '{leave_type.name}' is not active")

        request_type = data.request_type.value
        if request_type in HALF_DAY_TYPES and not leave_type.is_half_day_allowed:
            raise ValidationError(f"Leave type '{leave_type.name}' does not allow half days")

        holidays = load_holidays(self.db, data.start_date, data.end_date)
        days = calculate_leave_days(data.start_date, data.end_date, request_type, holidays)

        overlapping = self.repository.find_overlapping(requester.id, data.start_date, data.end_date)
        if overlapping:
            raise ConflictError(
                "You already have a leave request covering some of these dates",
                error_code="LEAVE_OVERLAP",
                details={"overlapping_ids": [r.id for r in overlapping]},
            )

        self.ledger.ensure_covers(requester.id, leave_type.id, data.start_date.year, days)

        details = WorkflowResolver(self.db).resolve(requester, days)
        state = LeaveRequestMetadata(
            required_approval_levels=[requirement.level for requirement in details.levels],
            workflow_details=details,
        )

        leave_request = LeaveRequest(
            user_id=requester.id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            request_type=request_type,
            number_of_days=days,
            reason=data.reason,
            status=LeaveStatus.PENDING.value,
        )

        with self.atomic("LeaveRequest"):
            if not state.required_approval_levels:
                # Uncovered position with auto-approval switched on
                self.ledger.debit(requester.id, leave_type.id, data.start_date.year, days)
                state.is_fully_approved = True
                leave_request.status = LeaveStatus.APPROVED.value
                leave_request.approved_at = datetime.now(timezone.utc)
            leave_request.workflow_state = state
            self.repository.add(leave_request)
            self.audit.log_action(
                action="leave_request_created",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=requester.id,
                user_role=requester.role.value,
                details={
                    "days": days,
                    "required_levels": state.required_approval_levels,
                    "strategy": details.strategy,
                    "workflow": details.workflow_name,
                },
                after_state={"status": leave_request.status},
            )

        self.db.refresh(leave_request)
        self.log_info(
            f"Leave request {leave_request.id} submitted by user {requester.id}",
            status=leave_request.status, days=days, levels=state.required_approval_levels
        )
        return leave_request

    # ============================================================================
    # DECISIONS
    # ============================================================================

    def record_approval(
        self,
        request_id: int,
        actor: User,
        approve: bool,
        comments: Optional[str] = None,
        level: Optional[int] = None
    ) -> LeaveRequest:
        """
        Approve or reject the next pending level of a request.

        `level`, when given, pins the call to one level: replaying it after
        that level is recorded raises DuplicateApprovalError. Without it, any
        approver already in the history is treated as replaying their decision.
        """
        return self.retry_on_stale(self._record_approval, request_id, actor, approve, comments, level)

    def _record_approval(
        self,
        request_id: int,
        actor: User,
        approve: bool,
        comments: Optional[str],
        level: Optional[int]
    ) -> LeaveRequest:
        now = datetime.now(timezone.utc)

        with self.atomic("LeaveRequest", request_id):
            leave_request = self.repository.get_for_update(request_id)
            state = leave_request.workflow_state
            next_level = self._check_decidable(leave_request, state, actor, level)
            from_status = leave_request.status

            if approve:
                state.approval_history.append(ApprovalHistoryEntry(
                    level=next_level,
                    approver_id=actor.id,
                    approver_name=actor.full_name,
                    approved_at=now,
                    comments=comments,
                ))
                state.current_approval_level = next_level
                if next_level == state.final_level:
                    self.ledger.debit(
                        leave_request.user_id,
                        leave_request.leave_type_id,
                        leave_request.year,
                        leave_request.number_of_days,
                    )
                    state.is_fully_approved = True
                    leave_request.status = LeaveStatus.APPROVED.value
                    leave_request.approver_id = actor.id
                    leave_request.approver_comments = comments
                    leave_request.approved_at = now
                else:
                    leave_request.status = LeaveStatus.PARTIALLY_APPROVED.value
            else:
                state.rejected_by = actor.id
                state.rejected_at = now
                state.rejected_at_level = next_level
                leave_request.status = LeaveStatus.REJECTED.value
                leave_request.approver_id = actor.id
                leave_request.approver_comments = comments

            leave_request.workflow_state = state
            self.repository.save(leave_request)

            self.audit.log_action(
                action="leave_approved" if approve else "leave_rejected",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=actor.id,
                user_role=actor.role.value,
                details={"level": next_level, "comments": comments},
                before_state={"status": from_status},
                after_state={"status": leave_request.status, "current_level": state.current_approval_level},
            )
            self._notify_requester(leave_request, actor, next_level, state)

        self.db.refresh(leave_request)
        self.log_info(
            f"Leave request {request_id}: {from_status} -> {leave_request.status}",
            level=next_level, actor_id=actor.id
        )
        return leave_request

    def cancel_leave_request(self, request_id: int, actor: User) -> LeaveRequest:
        return self.retry_on_stale(self._cancel, request_id, actor)

    def _cancel(self, request_id: int, actor: User) -> LeaveRequest:
        with self.atomic("LeaveRequest", request_id):
            leave_request = self.repository.get_for_update(request_id)
            if leave_request.user_id != actor.id:
                raise ForbiddenError("Only the owner of this leave request can cancel it")
            if leave_request.status != LeaveStatus.PENDING.value:
                raise ConflictError(
                    f"Only pending requests can be cancelled; this one is {leave_request.status}",
                    details={"status": leave_request.status},
                )

            leave_request.status = LeaveStatus.CANCELLED.value
            self.repository.save(leave_request)
            self.audit.log_action(
                action="leave_cancelled",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=actor.id,
                user_role=actor.role.value,
                details={},
                before_state={"status": LeaveStatus.PENDING.value},
                after_state={"status": LeaveStatus.CANCELLED.value},
            )

        self.db.refresh(leave_request)
        self.log_info(f"Leave request {request_id}: pending -> cancelled")
        return leave_request

    # ============================================================================
    # QUERIES
    # ============================================================================

    def get_leave_request(self, request_id: int, actor: User) -> LeaveRequest:
        leave_request = self.repository.get_or_404(request_id)
        if leave_request.user_id != actor.id and approval_level_for(actor) == 0:
            raise ForbiddenError("You can only view your own leave requests")
        return leave_request

    def list_user_requests(self, user_id: int, status: Optional[str] = None) -> List[LeaveRequest]:
        return self.repository.list_for_user(user_id, status)

    def list_open_requests(self, actor: User) -> List[LeaveRequest]:
        """Approvers see every open request, others only their own."""
        if approval_level_for(actor) == 0:
            return self.repository.list_open(user_id=actor.id)
        return self.repository.list_open()

    def list_actionable_requests(self, actor: User) -> List[LeaveRequest]:
        """Open requests the actor may approve or reject right now."""
        actionable = []
        for leave_request in self.repository.list_decidable(exclude_user_id=actor.id):
            if actor.is_admin:
                actionable.append(leave_request)
                continue
            state = leave_request.workflow_state
            requirement = state.workflow_details.requirement_for(state.next_level) if state.workflow_details else None
            if requirement is None:
                continue
            if actor.id in self.directory.eligible_approver_ids(requirement.approver, leave_request.user):
                actionable.append(leave_request)
        return actionable

    def preview_workflow(self, user_id: int, days: float) -> WorkflowPreview:
        requester = self.directory.get_user_by_id(user_id)
        details = WorkflowResolver(self.db).resolve(requester, days)
        return WorkflowPreview(
            required_approval_levels=[requirement.level for requirement in details.levels],
            workflow_details=details,
        )

    # ============================================================================
    # HELPERS
    # ============================================================================

    def _check_decidable(
        self,
        leave_request: LeaveRequest,
        state: LeaveRequestMetadata,
        actor: User,
        level: Optional[int]
    ) -> int:
        """Validate a decision against the loaded request and return the level it applies to."""
        if level is not None and state.has_level(level):
            raise DuplicateApprovalError(leave_request.id, level)
        if level is None:
            # Without a level pin, a second call from the same approver is a replay
            recorded = state.level_recorded_by(actor.id)
            if recorded is not None:
                raise DuplicateApprovalError(leave_request.id, recorded)
        if leave_request.status not in DECIDABLE_STATUSES:
            raise NotEligibleError(
                f"Leave request {leave_request.id} is {leave_request.status} and can no longer be decided",
                {"status": leave_request.status},
            )

        next_level = state.next_level
        if level is not None and level != next_level:
            raise NotEligibleError(
                f"Level {level} cannot be decided before level {next_level}",
                {"requested_level": level, "next_level": next_level},
            )
        if actor.id == leave_request.user_id:
            raise NotEligibleError("You cannot decide on your own leave request")

        self._check_eligibility(leave_request, state, actor, next_level)
        return next_level

    def _check_eligibility(self, leave_request: LeaveRequest, state: LeaveRequestMetadata, actor: User, level: int):
        if actor.is_admin:
            return

        requirement = state.workflow_details.requirement_for(level) if state.workflow_details else None
        if requirement is None:
            raise WorkflowConfigurationError(
                f"Leave request {leave_request.id} has no approver recorded for level {level}",
                {"level": level},
            )

        eligible = self.directory.eligible_approver_ids(requirement.approver, leave_request.user)
        if not eligible:
            raise WorkflowConfigurationError(
                f"Nobody can approve level {level} ({requirement.approver.label})",
                {"level": level, "approver": requirement.approver.label},
            )
        if actor.id not in eligible:
            raise NotEligibleError(
                f"Level {level} must be decided by {requirement.approver.label}",
                {"level": level, "required_approver": requirement.approver.label,
                 "actor_level": approval_level_for(actor)},
            )

    def _notify_requester(self, leave_request: LeaveRequest, actor: User, level: int, state: LeaveRequestMetadata):
        if leave_request.status == LeaveStatus.APPROVED.value:
            title, message, kind = "Leave Approved", "Your leave request has been fully approved.", "success"
        elif leave_request.status == LeaveStatus.REJECTED.value:
            title, message, kind = "Leave Rejected", f"Your leave request was rejected at level {level}.", "warning"
        else:
            title = "Leave Partially Approved"
            message = f"{actor.full_name} approved level {level} of {state.final_level}."
            kind = "info"
        NotificationService.notify_user(
            self.db,
            user_id=leave_request.user_id,
            title=title,
            message=message,
            type=kind,
            link=f"/leave/requests/{leave_request.id}",
            leave_request_id=leave_request.id,
        )
