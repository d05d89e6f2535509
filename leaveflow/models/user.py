"""
User Model for the organization directory.
Carries the role, department, position and reporting links used to
resolve who may approve a leave request.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from leaveflow.database import Base


class UserRole(str, enum.Enum):
    """
    User roles, most to least privileged:
    - SUPER_ADMIN: Platform owner, may act at any approval level
    - ADMIN: Organization administrator, may act at any approval level
    - HR: Human resources staff
    - MANAGER: Department or team manager
    - TEAM_LEAD: First-line lead
    - EMPLOYEE: Self-service access only
    """
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    HR = "hr"
    MANAGER = "manager"
    TEAM_LEAD = "team_lead"
    EMPLOYEE = "employee"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False, default="")

    role = Column(Enum(UserRole), default=UserRole.EMPLOYEE, nullable=False)

    department_id = Column(Integer, ForeignKey("departments.id", use_alter=True, name="fk_user_department_id"), nullable=True, index=True)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True, index=True)

    # Reporting lines
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    hr_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    team_lead_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    department = relationship("Department", foreign_keys=[department_id], back_populates="employees")
    position = relationship("Position", back_populates="holders")
    manager = relationship("User", foreign_keys=[manager_id], remote_side=[id])
    hr = relationship("User", foreign_keys=[hr_id], remote_side=[id])
    team_lead = relationship("User", foreign_keys=[team_lead_id], remote_side=[id])
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    leave_requests = relationship("LeaveRequest", foreign_keys="LeaveRequest.user_id", back_populates="user", cascade="all, delete-orphan")
    leave_balances = relationship("LeaveBalance", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def position_name(self):
        return self.position.name if self.position else None

    @property
    def is_admin(self) -> bool:
        """Admins may approve or reject at any pending level."""
        return self.role in [UserRole.SUPER_ADMIN, UserRole.ADMIN]
