from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leaveflow.models.leave_request import LeaveRequestType


class LeaveRequestCreate(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    request_type: LeaveRequestType = LeaveRequestType.FULL_DAY
    reason: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class LeaveDecisionRequest(BaseModel):
    approve: bool
    level: Optional[int] = Field(default=None, ge=1)
    comments: Optional[str] = Field(default=None, max_length=2000)


class DeletionDecisionRequest(BaseModel):
    comments: Optional[str] = Field(default=None, max_length=2000)


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    request_type: str
    number_of_days: float
    reason: Optional[str] = None
    status: str
    approver_id: Optional[int] = None
    approver_comments: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    version_id: int
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="workflow_metadata")


class LeaveBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    leave_type_id: int
    year: int
    total_days: float
    used_days: float
    remaining_days: float


class DeletionResult(BaseModel):
    id: int
    deleted: bool
    restored_days: float = 0.0

