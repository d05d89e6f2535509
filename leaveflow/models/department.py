"""
Department Model. `manager_user_id` is the department head used as a
fallback approver.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leaveflow.database import Base


class Department(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False, index=True)
    code = Column(String, nullable=False, index=True)  # Short code like "ENG", "HR", "FIN"
    description = Column(Text, nullable=True)

    # Department head
    manager_user_id = Column(Integer, ForeignKey("users.id", use_alter=True, name="fk_department_manager_id"), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    manager = relationship("User", foreign_keys=[manager_user_id])
    employees = relationship("User", foreign_keys="User.department_id", back_populates="department")
    positions = relationship("Position", back_populates="department")

    def __repr__(self):
        return f"<Department {self.code}: {self.name}>"

