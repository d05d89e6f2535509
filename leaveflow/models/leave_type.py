from sqlalchemy import Column, Integer, String, Float, Boolean, Text
from leaveflow.database import Base

class LeaveType(Base):
    __tablename__ = "leave_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False) # e.g., "Annual", "Sick", "Personal"
    description = Column(Text, nullable=True)
    default_days = Column(Float, default=0.0)
    is_half_day_allowed = Column(Boolean, default=True)
    is_paid_leave = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)
