from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from leaveflow.core.exceptions import ForbiddenError
from leaveflow.core.schemas import ApiResponse
from leaveflow.database import get_db
from leaveflow.models.user import User
from leaveflow.routers.auth_deps import get_current_user, require_admin
from leaveflow.schemas.workflow import CustomWorkflowCreate, CustomWorkflowResponse, CustomWorkflowUpdate
from leaveflow.services.approval import LeaveApprovalService, approval_level_for
from leaveflow.services.workflow_store import WorkflowStore

router = APIRouter(
    prefix="/workflows",
    tags=["workflows"]
)


def _serialize(workflow) -> dict:
    return CustomWorkflowResponse.model_validate(workflow).model_dump(mode="json", by_alias=True)


@router.get("")
def list_workflows(
    is_active: Optional[bool] = None,
    category: Optional[str] = None,
    department_id: Optional[int] = None,
    position_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    workflows = WorkflowStore(db).list_workflows(is_active, category, department_id, position_id)
    return ApiResponse.ok([_serialize(w) for w in workflows], metadata={"total": len(workflows)}).to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_workflow(
    payload: CustomWorkflowCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    workflow = WorkflowStore(db).create_workflow(payload)
    return ApiResponse.ok(_serialize(workflow)).to_dict()


@router.post("/initialize-defaults")
def initialize_default_workflows(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    workflows = WorkflowStore(db).initialize_default_workflows()
    return ApiResponse.ok([_serialize(w) for w in workflows]).to_dict()


@router.get("/resolve")
def preview_workflow(
    user_id: int,
    days: float,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Chain a request of `days` by `user_id` would receive right now."""
    if user_id != current_user.id and approval_level_for(current_user) == 0:
        raise ForbiddenError("You can only preview your own approval chain")
    preview = LeaveApprovalService(db).preview_workflow(user_id, days)
    return ApiResponse.ok(preview.model_dump(mode="json", by_alias=True)).to_dict()


@router.get("/{workflow_id}")
def get_workflow(
    workflow_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    return ApiResponse.ok(_serialize(WorkflowStore(db).get_workflow(workflow_id))).to_dict()


@router.put("/{workflow_id}")
def update_workflow(
    workflow_id: int,
    payload: CustomWorkflowUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    workflow = WorkflowStore(db).update_workflow(workflow_id, payload)
    return ApiResponse.ok(_serialize(workflow)).to_dict()


@router.delete("/{workflow_id}")
def delete_workflow(
    workflow_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    WorkflowStore(db).delete_workflow(workflow_id)
    return ApiResponse.ok({"id": workflow_id, "deleted": True}).to_dict()
