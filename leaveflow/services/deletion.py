"""
Deletion sub-workflow.

An owner asks to retract an approved or cancelled request; a manager-level
approver either removes it for good (crediting back any debited days) or
puts it back in the status it had before the request.
"""
from datetime import datetime, timezone
from typing import Optional

from leaveflow.core.exceptions import ConflictError, ForbiddenError, NotEligibleError
from leaveflow.models.leave_request import LeaveRequest, LeaveStatus
from leaveflow.models.user import User
from leaveflow.repositories.leave_request_repository import LeaveRequestRepository
from leaveflow.schemas.leave import DeletionResult
from leaveflow.services.approval import MANAGER_LEVEL, approval_level_for
from leaveflow.services.audit import AuditService
from leaveflow.services.base import BaseService
from leaveflow.services.leave_balance import LeaveBalanceLedger
from leaveflow.services.notification import NotificationService

DELETABLE_STATUSES = {LeaveStatus.APPROVED.value, LeaveStatus.CANCELLED.value}


class LeaveDeletionService(BaseService):

    def __init__(self, db):
        super().__init__(db)
        self.repository = LeaveRequestRepository(db)
        self.ledger = LeaveBalanceLedger(db)
        self.audit = AuditService(db)

    def request_deletion(self, request_id: int, requester: User) -> LeaveRequest:
        return self.retry_on_stale(self._request_deletion, request_id, requester)

    def approve_deletion(self, request_id: int, approver: User, comments: Optional[str] = None) -> DeletionResult:
        return self.retry_on_stale(self._approve_deletion, request_id, approver, comments)

    def reject_deletion(self, request_id: int, approver: User, comments: Optional[str] = None) -> LeaveRequest:
        return self.retry_on_stale(self._reject_deletion, request_id, approver, comments)

    def _request_deletion(self, request_id: int, requester: User) -> LeaveRequest:
        with self.atomic("LeaveRequest", request_id):
            leave_request = self.repository.get_for_update(request_id)
            if leave_request.user_id != requester.id:
                raise ForbiddenError("Only the owner of this leave request can ask for its deletion")
            if leave_request.status == LeaveStatus.PENDING_DELETION.value:
                raise ConflictError(
                    "A deletion request is already pending for this leave request",
                    error_code="DELETION_PENDING",
                )
            if leave_request.status not in DELETABLE_STATUSES:
                raise ConflictError(
                    f"A {leave_request.status} leave request cannot be deleted; cancel it instead",
                    details={"status": leave_request.status},
                )

            state = leave_request.workflow_state
            state.original_status = leave_request.status
            state.deletion_requested_by = requester.id
            state.deletion_requested_at = datetime.now(timezone.utc)
            state.deletion_rejected_by = None
            state.deletion_rejected_at = None
            state.deletion_rejection_comments = None
            leave_request.workflow_state = state
            leave_request.status = LeaveStatus.PENDING_DELETION.value
            self.repository.save(leave_request)

            self.audit.log_action(
                action="leave_deletion_requested",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=requester.id,
                user_role=requester.role.value,
                details={},
                before_state={"status": state.original_status},
                after_state={"status": LeaveStatus.PENDING_DELETION.value},
            )

        self.db.refresh(leave_request)
        self.log_info(f"Leave request {request_id}: {state.original_status} -> pending_deletion")
        return leave_request

    def _approve_deletion(self, request_id: int, approver: User, comments: Optional[str]) -> DeletionResult:
        with self.atomic("LeaveRequest", request_id):
            leave_request = self._load_pending_deletion(request_id, approver)
            state = leave_request.workflow_state
            owner_id = leave_request.user_id

            restored = 0.0
            if state.original_status == LeaveStatus.APPROVED.value:
                self.ledger.credit(owner_id, leave_request.leave_type_id, leave_request.year, leave_request.number_of_days)
                restored = leave_request.number_of_days

            self.audit.log_action(
                action="leave_deletion_approved",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=approver.id,
                user_role=approver.role.value,
                details={"comments": comments, "restored_days": restored},
                before_state={"status": leave_request.status, "metadata": leave_request.workflow_metadata},
                after_state=None,
            )
            NotificationService.notify_user(
                self.db,
                user_id=owner_id,
                title="Leave Deleted",
                message=f"Your request to delete leave from {leave_request.start_date} to "
                        f"{leave_request.end_date} was approved.",
                type="success",
                leave_request_id=leave_request.id,
            )
            self.repository.delete(leave_request)

        self.log_info(
            f"Leave request {request_id}: pending_deletion -> deleted",
            restored_days=restored, actor_id=approver.id
        )
        return DeletionResult(id=request_id, deleted=True, restored_days=restored)

    def _reject_deletion(self, request_id: int, approver: User, comments: Optional[str]) -> LeaveRequest:
        with self.atomic("LeaveRequest", request_id):
            leave_request = self._load_pending_deletion(request_id, approver)
            state = leave_request.workflow_state
            restored_status = state.original_status or LeaveStatus.APPROVED.value

            state.deletion_rejected_by = approver.id
            state.deletion_rejected_at = datetime.now(timezone.utc)
            state.deletion_rejection_comments = comments
            state.deletion_requested_by = None
            state.deletion_requested_at = None
            state.original_status = None
            leave_request.workflow_state = state
            leave_request.status = restored_status
            self.repository.save(leave_request)

            self.audit.log_action(
                action="leave_deletion_rejected",
                entity_type="leave_request",
                entity_id=leave_request.id,
                user_id=approver.id,
                user_role=approver.role.value,
                details={"comments": comments},
                before_state={"status": LeaveStatus.PENDING_DELETION.value},
                after_state={"status": restored_status},
            )
            NotificationService.notify_user(
                self.db,
                user_id=leave_request.user_id,
                title="Deletion Request Rejected",
                message="Your request to delete this leave was rejected." + (f" Comments: {comments}" if comments else ""),
                type="warning",
                link=f"/leave/requests/{leave_request.id}",
                leave_request_id=leave_request.id,
            )

        self.db.refresh(leave_request)
        self.log_info(f"Leave request {request_id}: pending_deletion -> {restored_status}", actor_id=approver.id)
        return leave_request

    def _load_pending_deletion(self, request_id: int, approver: User) -> LeaveRequest:
        leave_request = self.repository.get_for_update(request_id)
        if approval_level_for(approver) < MANAGER_LEVEL:
            raise NotEligibleError(
                "Only a manager or above can decide on deletion requests",
                {"actor_level": approval_level_for(approver)},
            )
        if leave_request.user_id == approver.id:
            raise NotEligibleError("You cannot decide on the deletion of your own leave request")
        if leave_request.status != LeaveStatus.PENDING_DELETION.value:
            raise ConflictError(
                f"Leave request {request_id} has no pending deletion request",
                details={"status": leave_request.status},
            )
        return leave_request
