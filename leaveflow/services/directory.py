"""
Organization Directory

Read-only lookups over users, positions and departments, plus the
translation of an approver descriptor into the concrete set of users who
may act on an approval level.
"""
from typing import Iterable, List, Optional, Set

from leaveflow.core.exceptions import NotFoundError
from leaveflow.models.position import Position
from leaveflow.models.user import User, UserRole
from leaveflow.schemas.workflow import ApproverDescriptor, ApproverKind, FallbackApprover
from leaveflow.services.base import BaseService

# Role used when a fallback relation is not filled in on the requester
FALLBACK_ROLES = {
    FallbackApprover.TEAM_LEAD: [UserRole.TEAM_LEAD],
    FallbackApprover.MANAGER: [UserRole.MANAGER],
    FallbackApprover.DEPARTMENT_HEAD: [UserRole.MANAGER],
    FallbackApprover.HR: [UserRole.HR],
    FallbackApprover.SUPER_ADMIN: [UserRole.SUPER_ADMIN, UserRole.ADMIN],
}


class OrganizationDirectory(BaseService):

    def get_user_by_id(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User", user_id)
        return user

    def list_users_by_position(self, position_id: int, department_id: Optional[int] = None) -> List[User]:
        query = self.db.query(User).filter(User.position_id == position_id, User.is_active == True)
        if department_id is not None:
            query = query.filter(User.department_id == department_id)
        return query.all()

    def list_users_by_role(self, role: UserRole, department_id: Optional[int] = None) -> List[User]:
        return self.list_users_by_roles([role], department_id)

    def list_users_by_roles(self, roles: Iterable, department_id: Optional[int] = None) -> List[User]:
        role_values = [_as_role(r) for r in roles]
        query = self.db.query(User).filter(User.role.in_(role_values), User.is_active == True)
        if department_id is not None:
            query = query.filter(User.department_id == department_id)
        return query.all()

    def find_position_by_name(self, name: str) -> Optional[Position]:
        return self.db.query(Position).filter(Position.name == name.strip().upper()).first()

    def get_position(self, position_id: int) -> Position:
        position = self.db.query(Position).filter(Position.id == position_id).first()
        if not position:
            raise NotFoundError("Position", position_id)
        return position

    def eligible_approver_ids(self, descriptor: ApproverDescriptor, requester: User) -> Set[int]:
        """
        Users allowed to act on a level described by `descriptor`.
        The requester is never part of the set.
        """
        if descriptor.kind == ApproverKind.ROLE:
            users = self.list_users_by_role(_as_role(descriptor.role), descriptor.department_id)
        elif descriptor.kind == ApproverKind.ANY_ROLE:
            users = self.list_users_by_roles(descriptor.roles, descriptor.department_id)
        elif descriptor.kind == ApproverKind.POSITION:
            users = self._position_holders(descriptor)
        else:
            users = self._fallback_approvers(descriptor.fallback, requester)

        return {u.id for u in users if u.is_active and u.id != requester.id}

    def _position_holders(self, descriptor: ApproverDescriptor) -> List[User]:
        position_id = descriptor.position_id
        if position_id is None and descriptor.position_name:
            position = self.find_position_by_name(descriptor.position_name)
            position_id = position.id if position else None

        users = []
        if position_id is not None:
            users = self.list_users_by_position(position_id, descriptor.department_id)
        if not users and descriptor.roles:
            self.log_warning(f"Nobody holds position '{descriptor.label}', falling back to roles {descriptor.roles}")
            users = self.list_users_by_roles(descriptor.roles, descriptor.department_id)
        return users

    def _fallback_approvers(self, fallback: FallbackApprover, requester: User) -> List[User]:
        linked_id = None
        if fallback == FallbackApprover.TEAM_LEAD:
            linked_id = requester.team_lead_id
        elif fallback == FallbackApprover.MANAGER:
            linked_id = requester.manager_id
        elif fallback == FallbackApprover.HR:
            linked_id = requester.hr_id
        elif fallback == FallbackApprover.DEPARTMENT_HEAD and requester.department is not None:
            linked_id = requester.department.manager_user_id

        if linked_id is not None:
            linked = self.db.query(User).filter(User.id == linked_id, User.is_active == True).first()
            if linked:
                return [linked]
            self.log_warning(f"{fallback.value} link {linked_id} of user {requester.id} is inactive or missing")

        roles = FALLBACK_ROLES[fallback]
        if fallback in (FallbackApprover.TEAM_LEAD, FallbackApprover.DEPARTMENT_HEAD) and requester.department_id:
            in_department = self.list_users_by_roles(roles, requester.department_id)
            if in_department:
                return in_department
        return self.list_users_by_roles(roles)


def _as_role(role) -> UserRole:
    return role if isinstance(role, UserRole) else UserRole(role)
