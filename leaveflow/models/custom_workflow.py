from sqlalchemy import Column, Integer, String, Float, Boolean, Text, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leaveflow.database import Base
import enum

class ApprovalCategory(str, enum.Enum):
    SHORT_LEAVE = "short_leave"
    MEDIUM_LEAVE = "medium_leave"
    LONG_LEAVE = "long_leave"

class CustomApprovalWorkflow(Base):
    """
    Administrator-configured approval chain.

    `approval_levels` holds an ordered list of
    {"level": int, "positionId": int | None, "departmentId": int | None, "isRequired": bool}.
    Scope columns left NULL act as wildcards.
    """
    __tablename__ = "custom_approval_workflows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    category = Column(String, nullable=True, index=True)  # ApprovalCategory value
    leave_category_id = Column(Integer, ForeignKey("leave_categories.id"), nullable=True)

    min_days = Column(Float, nullable=False)
    max_days = Column(Float, nullable=False)

    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True, index=True)

    approval_levels = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    leave_category = relationship("LeaveCategory", back_populates="workflows")
    department = relationship("Department")
    position = relationship("Position")

    def __repr__(self):
        return f"<CustomApprovalWorkflow {self.id} {self.name} [{self.min_days}-{self.max_days}]>"
