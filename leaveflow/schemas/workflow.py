"""
Typed views over the approval workflow state.

The leave request row stores its workflow state as JSON; these models are
the only way that JSON is read or written, so every load and save is
validated. Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApproverKind(str, Enum):
    ROLE = "role"
    POSITION = "position"
    ANY_ROLE = "any_role"
    FALLBACK = "fallback"


class FallbackApprover(str, Enum):
    """Named approver used by a custom workflow level without a position."""
    TEAM_LEAD = "team_lead"
    MANAGER = "manager"
    DEPARTMENT_HEAD = "department_head"
    HR = "hr"
    SUPER_ADMIN = "super_admin"


class ApproverDescriptor(CamelModel):
    kind: ApproverKind
    label: str
    role: Optional[str] = None
    # For POSITION: roles that also qualify when nobody holds the position record.
    # For ANY_ROLE: the accepted role set.
    roles: List[str] = Field(default_factory=list)
    position_id: Optional[int] = None
    position_name: Optional[str] = None
    department_id: Optional[int] = None
    fallback: Optional[FallbackApprover] = None

    @model_validator(mode="after")
    def _check_kind_fields(self):
        if self.kind == ApproverKind.ROLE and not self.role:
            raise ValueError("role approver needs a role")
        if self.kind == ApproverKind.ANY_ROLE and not self.roles:
            raise ValueError("any_role approver needs at least one role")
        if self.kind == ApproverKind.POSITION and self.position_id is None and not self.position_name:
            raise ValueError("position approver needs a position id or name")
        if self.kind == ApproverKind.FALLBACK and self.fallback is None:
            raise ValueError("fallback approver needs a fallback name")
        return self


class ApprovalLevelRequirement(CamelModel):
    level: int = Field(ge=1)
    approver: ApproverDescriptor
    is_required: bool = True


class WorkflowDetails(CamelModel):
    """Snapshot of the resolved chain, frozen into the request at submission."""
    strategy: str
    workflow_id: Optional[int] = None
    workflow_name: Optional[str] = None
    requester_position: Optional[str] = None
    duration_category: Optional[str] = None
    leave_category_id: Optional[int] = None
    levels: List[ApprovalLevelRequirement] = Field(default_factory=list)

    def requirement_for(self, level: int) -> Optional[ApprovalLevelRequirement]:
        for requirement in self.levels:
            if requirement.level == level:
                return requirement
        return None


class ApprovalHistoryEntry(CamelModel):
    level: int = Field(ge=1)
    approver_id: int
    approver_name: str
    approved_at: datetime
    comments: Optional[str] = None


def check_contiguous_levels(levels: List[int]) -> None:
    """Levels must read 1, 2, ..., n with no gaps and no duplicates."""
    if list(levels) != list(range(1, len(levels) + 1)):
        raise ValueError(f"approval levels must be contiguous from 1, got {list(levels)}")


class LeaveRequestMetadata(CamelModel):
    required_approval_levels: List[int] = Field(default_factory=list)
    current_approval_level: int = 0
    approval_history: List[ApprovalHistoryEntry] = Field(default_factory=list)
    is_fully_approved: bool = False
    workflow_details: Optional[WorkflowDetails] = None

    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejected_at_level: Optional[int] = None

    original_status: Optional[str] = None
    deletion_requested_by: Optional[int] = None
    deletion_requested_at: Optional[datetime] = None
    deletion_rejected_by: Optional[int] = None
    deletion_rejected_at: Optional[datetime] = None
    deletion_rejection_comments: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self):
        check_contiguous_levels(self.required_approval_levels)
        recorded = [entry.level for entry in self.approval_history]
        if recorded != list(range(1, len(recorded) + 1)):
            raise ValueError(f"approval history must record levels in order from 1, got {recorded}")
        highest = recorded[-1] if recorded else 0
        if self.current_approval_level != highest:
            raise ValueError(
                f"current approval level {self.current_approval_level} does not match history ({highest})"
            )
        if self.required_approval_levels and highest > self.required_approval_levels[-1]:
            raise ValueError("approval history goes beyond the required levels")
        return self

    @property
    def final_level(self) -> int:
        return self.required_approval_levels[-1] if self.required_approval_levels else 0

    @property
    def next_level(self) -> int:
        return self.current_approval_level + 1

    def has_level(self, level: int) -> bool:
        return any(entry.level == level for entry in self.approval_history)

    def level_recorded_by(self, approver_id: int) -> Optional[int]:
        """Last level this approver signed off, if any."""
        levels = [entry.level for entry in self.approval_history if entry.approver_id == approver_id]
        return levels[-1] if levels else None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Custom workflow administration ---

class ApprovalLevelConfig(CamelModel):
    """
    One configured level of a custom workflow. A level names a position or
    a role; with neither, the requester's reporting line fills it in.
    """
    level: Optional[int] = None
    position_id: Optional[int] = None
    role: Optional[str] = None
    department_id: Optional[int] = None
    is_required: bool = True

    @field_validator("role")
    @classmethod
    def _known_role(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        # models.leave_request imports this module
        from leaveflow.models.user import UserRole
        return UserRole(v.strip().lower()).value

    @model_validator(mode="after")
    def _check_single_approver(self):
        if self.position_id is not None and self.role is not None:
            raise ValueError("an approval level names either a position or a role, not both")
        return self


class CustomWorkflowBase(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    leave_category_id: Optional[int] = None
    min_days: Optional[float] = None
    max_days: Optional[float] = None
    department_id: Optional[int] = None
    position_id: Optional[int] = None
    approval_levels: Optional[List[ApprovalLevelConfig]] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class CustomWorkflowCreate(CustomWorkflowBase):
    pass


class CustomWorkflowUpdate(CustomWorkflowBase):
    pass


class CustomWorkflowResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    leave_category_id: Optional[int] = None
    min_days: float
    max_days: float
    department_id: Optional[int] = None
    position_id: Optional[int] = None
    approval_levels: List[ApprovalLevelConfig]
    is_active: bool
    is_default: bool


class WorkflowPreview(CamelModel):
    required_approval_levels: List[int]
    workflow_details: WorkflowDetails
