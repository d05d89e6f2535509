from sqlalchemy import Column, Integer, String, Float, Boolean, Text, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leaveflow.database import Base

class LeaveCategory(Base):
    """Duration band (short/medium/long) bounding how many approval levels a workflow may use."""
    __tablename__ = "leave_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    default_min_days = Column(Float, default=0.5, nullable=False)
    default_max_days = Column(Float, default=1.0, nullable=False)
    max_approval_levels = Column(Integer, default=3, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    workflows = relationship("CustomApprovalWorkflow", back_populates="leave_category")

    def covers(self, days: float) -> bool:
        return self.default_min_days <= days <= self.default_max_days
