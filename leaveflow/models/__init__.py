# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    department, position, user,
    leave_type, leave_category, custom_workflow, holiday,
    leave_request, leave_balance,
    audit_log, notification
)

# Explicit class exports for cleaner imports
from .user import User, UserRole
from .department import Department
from .position import Position
from .leave_type import LeaveType
from .leave_category import LeaveCategory
from .custom_workflow import CustomApprovalWorkflow, ApprovalCategory
from .holiday import Holiday
from .leave_request import LeaveRequest, LeaveStatus, LeaveRequestType
from .leave_balance import LeaveBalance
from .audit_log import AuditLog
from .notification import Notification

__all__ = [
    "User",
    "UserRole",
    "Department",
    "Position",
    "LeaveType",
    "LeaveCategory",
    "CustomApprovalWorkflow",
    "ApprovalCategory",
    "Holiday",
    "LeaveRequest",
    "LeaveStatus",
    "LeaveRequestType",
    "LeaveBalance",
    "AuditLog",
    "Notification",
]
