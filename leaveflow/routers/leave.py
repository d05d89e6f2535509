from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.orm import Session

from leaveflow.core.config import settings
from leaveflow.core.exceptions import ForbiddenError
from leaveflow.core.limiter import limiter
from leaveflow.core.schemas import ApiResponse
from leaveflow.database import get_db
from leaveflow.models.leave_request import LeaveRequest
from leaveflow.models.user import User
from leaveflow.routers.auth_deps import get_current_user
from leaveflow.schemas.leave import (
    DeletionDecisionRequest,
    LeaveBalanceResponse,
    LeaveDecisionRequest,
    LeaveRequestCreate,
    LeaveRequestResponse,
)
from leaveflow.services.approval import MANAGER_LEVEL, LeaveApprovalService, approval_level_for
from leaveflow.services.deletion import LeaveDeletionService
from leaveflow.services.leave_balance import LeaveBalanceLedger

router = APIRouter(
    prefix="/leave",
    tags=["leave"]
)

DECISION_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def _serialize(leave_request: LeaveRequest) -> dict:
    return LeaveRequestResponse.model_validate(leave_request).model_dump(mode="json")


# --- Submission and queries ---

@router.post("/requests", status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    leave_request = LeaveApprovalService(db).create_leave_request(current_user, payload)
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


@router.get("/requests/{request_id}")
def get_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    leave_request = LeaveApprovalService(db).get_leave_request(request_id, current_user)
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


@router.get("/my-requests")
def list_my_requests(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    requests = LeaveApprovalService(db).list_user_requests(current_user.id, status_filter)
    return ApiResponse.ok([_serialize(r) for r in requests], metadata={"total": len(requests)}).to_dict()


@router.get("/awaiting-approval")
def list_awaiting_approval(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    requests = LeaveApprovalService(db).list_actionable_requests(current_user)
    return ApiResponse.ok([_serialize(r) for r in requests], metadata={"total": len(requests)}).to_dict()


@router.get("/open-requests")
def list_open_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    requests = LeaveApprovalService(db).list_open_requests(current_user)
    return ApiResponse.ok([_serialize(r) for r in requests], metadata={"total": len(requests)}).to_dict()


# --- Approval decisions ---

@router.post("/requests/{request_id}/decision")
@limiter.limit(DECISION_RATE_LIMIT)
def decide_leave_request(
    request: Request,
    request_id: int,
    decision: LeaveDecisionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    leave_request = LeaveApprovalService(db).record_approval(
        request_id,
        current_user,
        approve=decision.approve,
        comments=decision.comments,
        level=decision.level,
    )
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


@router.put("/requests/{request_id}/cancel")
def cancel_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    leave_request = LeaveApprovalService(db).cancel_leave_request(request_id, current_user)
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


# --- Deletion sub-workflow ---

@router.delete("/requests/{request_id}")
@limiter.limit(DECISION_RATE_LIMIT)
def request_leave_deletion(
    request: Request,
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    leave_request = LeaveDeletionService(db).request_deletion(request_id, current_user)
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


@router.put("/requests/{request_id}/approve-deletion")
@limiter.limit(DECISION_RATE_LIMIT)
def approve_leave_deletion(
    request: Request,
    request_id: int,
    payload: Optional[DeletionDecisionRequest] = Body(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    comments = payload.comments if payload else None
    result = LeaveDeletionService(db).approve_deletion(request_id, current_user, comments)
    return ApiResponse.ok(result.model_dump()).to_dict()


@router.put("/requests/{request_id}/reject-deletion")
@limiter.limit(DECISION_RATE_LIMIT)
def reject_leave_deletion(
    request: Request,
    request_id: int,
    payload: Optional[DeletionDecisionRequest] = Body(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    comments = payload.comments if payload else None
    leave_request = LeaveDeletionService(db).reject_deletion(request_id, current_user, comments)
    return ApiResponse.ok(_serialize(leave_request)).to_dict()


# --- Balances ---

@router.get("/balances/{user_id}")
def get_leave_balances(
    user_id: int,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if user_id != current_user.id and approval_level_for(current_user) < MANAGER_LEVEL:
        raise ForbiddenError("You can only view your own leave balances")
    balances = LeaveBalanceLedger(db).list_for_user(user_id, year)
    return ApiResponse.ok(
        [LeaveBalanceResponse.model_validate(b).model_dump(mode="json") for b in balances]
    ).to_dict()
