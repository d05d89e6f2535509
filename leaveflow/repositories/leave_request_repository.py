"""
Persistence for leave requests.

The repository never commits; services own the transaction through
`BaseService.atomic()`.
"""
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from leaveflow.core.exceptions import NotFoundError, StaleStateError
from leaveflow.models.leave_request import LeaveRequest, OPEN_STATUSES, DECIDABLE_STATUSES


class LeaveRequestRepository:

    def __init__(self, session: Session):
        self.session = session

    # ============================================================================
    # READ OPERATIONS
    # ============================================================================

    def get(self, request_id: int) -> Optional[LeaveRequest]:
        return self.session.get(LeaveRequest, request_id)

    def get_or_404(self, request_id: int) -> LeaveRequest:
        leave_request = self.get(request_id)
        if leave_request is None:
            raise NotFoundError("LeaveRequest", request_id)
        return leave_request

    def get_for_update(self, request_id: int) -> LeaveRequest:
        """
        Load the row with a write lock where the backend supports it, and
        always from the database so a retry never sees a cached version.
        """
        leave_request = (
            self.session.query(LeaveRequest)
            .filter(LeaveRequest.id == request_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if leave_request is None:
            raise NotFoundError("LeaveRequest", request_id)
        return leave_request

    def find_overlapping(
        self,
        user_id: int,
        start_date: date,
        end_date: date,
        exclude_id: Optional[int] = None
    ) -> List[LeaveRequest]:
        query = self.session.query(LeaveRequest).filter(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.in_(OPEN_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.filter(LeaveRequest.id != exclude_id)
        return query.all()

    def list_for_user(self, user_id: int, status: Optional[str] = None) -> List[LeaveRequest]:
        query = self.session.query(LeaveRequest).filter(LeaveRequest.user_id == user_id)
        if status:
            query = query.filter(LeaveRequest.status == status)
        return query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()

    def list_open(self, user_id: Optional[int] = None) -> List[LeaveRequest]:
        """Requests still holding their dates: pending, in approval, approved or awaiting deletion."""
        query = self.session.query(LeaveRequest).filter(LeaveRequest.status.in_(OPEN_STATUSES))
        if user_id is not None:
            query = query.filter(LeaveRequest.user_id == user_id)
        return query.order_by(LeaveRequest.start_date, LeaveRequest.id).all()

    def list_decidable(self, exclude_user_id: Optional[int] = None) -> List[LeaveRequest]:
        query = self.session.query(LeaveRequest).filter(LeaveRequest.status.in_(DECIDABLE_STATUSES))
        if exclude_user_id is not None:
            query = query.filter(LeaveRequest.user_id != exclude_user_id)
        return query.order_by(LeaveRequest.start_date, LeaveRequest.id).all()

    # ============================================================================
    # WRITE OPERATIONS
    # ============================================================================

    def add(self, leave_request: LeaveRequest) -> LeaveRequest:
        self.session.add(leave_request)
        self.session.flush()
        return leave_request

    def save(self, leave_request: LeaveRequest) -> LeaveRequest:
        """Flush pending changes; a concurrent writer surfaces as StaleStateError."""
        # Read the id first: a failed flush leaves the session unusable
        request_id = leave_request.id
        try:
            self.session.flush()
        except StaleDataError as e:
            raise StaleStateError("LeaveRequest", request_id) from e
        return leave_request

    def delete(self, leave_request: LeaveRequest) -> None:
        request_id = leave_request.id
        try:
            self.session.delete(leave_request)
            self.session.flush()
        except StaleDataError as e:
            raise StaleStateError("LeaveRequest", request_id) from e
