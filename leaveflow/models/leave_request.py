from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from leaveflow.database import Base
from leaveflow.schemas.workflow import LeaveRequestMetadata
import enum

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PENDING_DELETION = "pending_deletion"

DECIDABLE_STATUSES = {LeaveStatus.PENDING.value, LeaveStatus.PARTIALLY_APPROVED.value}
# Statuses that block the same dates for a new request
OPEN_STATUSES = {
    LeaveStatus.PENDING.value,
    LeaveStatus.PARTIALLY_APPROVED.value,
    LeaveStatus.APPROVED.value,
    LeaveStatus.PENDING_DELETION.value,
}

class LeaveRequestType(str, enum.Enum):
    FULL_DAY = "full_day"
    HALF_DAY_MORNING = "half_day_morning"
    HALF_DAY_AFTERNOON = "half_day_afternoon"

class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    request_type = Column(String, default=LeaveRequestType.FULL_DAY.value, nullable=False)
    number_of_days = Column(Float, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String, default=LeaveStatus.PENDING.value, nullable=False, index=True)

    approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approver_comments = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Workflow state; always go through `workflow_state` to read or write it
    workflow_metadata = Column("metadata", JSON, nullable=True)

    # Optimistic concurrency guard, bumped on every UPDATE
    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version_id}

    user = relationship("User", foreign_keys=[user_id], back_populates="leave_requests")
    approver = relationship("User", foreign_keys=[approver_id])
    leave_type = relationship("LeaveType")

    def __repr__(self):
        return f"<LeaveRequest {self.id} user={self.user_id} {self.status}>"

    @property
    def workflow_state(self) -> LeaveRequestMetadata:
        """Validated copy of the stored metadata. Mutate it, then assign it back."""
        return LeaveRequestMetadata.model_validate(self.workflow_metadata or {})

    @workflow_state.setter
    def workflow_state(self, state: LeaveRequestMetadata) -> None:
        # Re-validate so a bad in-memory mutation never reaches the database
        validated = LeaveRequestMetadata.model_validate(state.model_dump(by_alias=True))
        self.workflow_metadata = validated.to_json()

    @property
    def year(self) -> int:
        return self.start_date.year
