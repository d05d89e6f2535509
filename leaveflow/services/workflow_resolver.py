"""
Workflow Resolver

Turns (requester, number of days) into the ordered chain of approval levels
a leave request must pass. Two strategies exist; `settings.workflow.strategy`
picks the single authoritative one.
"""
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from leaveflow.core.config import settings, POSITION_TABLE_STRATEGY, CUSTOM_WORKFLOW_STRATEGY
from leaveflow.core.exceptions import NoWorkflowConfiguredError, WorkflowConfigurationError
from leaveflow.models.custom_workflow import CustomApprovalWorkflow
from leaveflow.models.user import User, UserRole
from leaveflow.schemas.workflow import (
    ApprovalLevelConfig,
    ApprovalLevelRequirement,
    ApproverDescriptor,
    ApproverKind,
    FallbackApprover,
    WorkflowDetails,
    check_contiguous_levels,
)
from leaveflow.services.base import BaseService
from leaveflow.services.directory import OrganizationDirectory
from leaveflow.services.workflow_store import WorkflowStore

SHORT_LEAVE = "short"
MEDIUM_LEAVE = "medium"
LONG_LEAVE = "long"


def duration_category(days: float) -> str:
    if days <= settings.workflow.short_leave_max_days:
        return SHORT_LEAVE
    if days <= settings.workflow.medium_leave_max_days:
        return MEDIUM_LEAVE
    return LONG_LEAVE


# --- Strategy A: fixed chains keyed by the requester's position ---

TEAM_LEAD_APPROVER = ApproverDescriptor(
    kind=ApproverKind.POSITION, label="Team Lead", position_name="TEAM_LEAD", roles=[UserRole.TEAM_LEAD.value]
)
HR_MANAGER_APPROVER = ApproverDescriptor(
    kind=ApproverKind.POSITION, label="HR Manager", position_name="HR MANAGER", roles=[UserRole.MANAGER.value]
)
HR_DIRECTOR_APPROVER = ApproverDescriptor(
    kind=ApproverKind.POSITION, label="HR Director", position_name="HR DIRECTOR", roles=[UserRole.HR.value]
)
ADMIN_APPROVER = ApproverDescriptor(
    kind=ApproverKind.ANY_ROLE, label="Admin", roles=[UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value]
)

# position -> duration category -> approvers, in level order
POSITION_APPROVAL_TABLE: Dict[str, Dict[str, List[ApproverDescriptor]]] = {
    "INTERN": {
        SHORT_LEAVE: [TEAM_LEAD_APPROVER, HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER, ADMIN_APPROVER],
        MEDIUM_LEAVE: [TEAM_LEAD_APPROVER, HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER, ADMIN_APPROVER],
        LONG_LEAVE: [TEAM_LEAD_APPROVER, HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER, ADMIN_APPROVER],
    },
    "TEAM_LEAD": {
        SHORT_LEAVE: [HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER],
        MEDIUM_LEAVE: [HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER, ADMIN_APPROVER],
        LONG_LEAVE: [HR_MANAGER_APPROVER, HR_DIRECTOR_APPROVER, ADMIN_APPROVER],
    },
    "HR MANAGER": {
        SHORT_LEAVE: [HR_DIRECTOR_APPROVER],
        MEDIUM_LEAVE: [HR_DIRECTOR_APPROVER],
        LONG_LEAVE: [HR_DIRECTOR_APPROVER],
    },
    "HR DIRECTOR": {
        SHORT_LEAVE: [ADMIN_APPROVER],
        MEDIUM_LEAVE: [ADMIN_APPROVER],
        LONG_LEAVE: [ADMIN_APPROVER],
    },
}

# --- Strategy B: approvers for levels configured without a position ---

FALLBACK_CHAIN = [
    FallbackApprover.TEAM_LEAD,
    FallbackApprover.MANAGER,
    FallbackApprover.DEPARTMENT_HEAD,
    FallbackApprover.HR,
    FallbackApprover.SUPER_ADMIN,
]

FALLBACK_LABELS = {
    FallbackApprover.TEAM_LEAD: "Team Lead",
    FallbackApprover.MANAGER: "Manager",
    FallbackApprover.DEPARTMENT_HEAD: "Department Head",
    FallbackApprover.HR: "HR",
    FallbackApprover.SUPER_ADMIN: "Super Admin",
}
ROLE_LABELS = {
    UserRole.SUPER_ADMIN: "Super Admin",
    UserRole.ADMIN: "Admin",
    UserRole.HR: "HR",
    UserRole.MANAGER: "Manager",
    UserRole.TEAM_LEAD: "Team Lead",
    UserRole.EMPLOYEE: "Employee",
}


def _normalize_position(name: Optional[str]) -> Optional[str]:
    return name.strip().upper() if name else None


def _requirements(approvers: List[ApproverDescriptor]) -> List[ApprovalLevelRequirement]:
    return [
        ApprovalLevelRequirement(level=index, approver=approver, is_required=True)
        for index, approver in enumerate(approvers, start=1)
    ]


class PositionTableStrategy(BaseService):
    name = POSITION_TABLE_STRATEGY

    def resolve(self, requester: User, days: float) -> WorkflowDetails:
        position = _normalize_position(requester.position_name)
        category = duration_category(days)
        chain = POSITION_APPROVAL_TABLE.get(position, {}).get(category)

        if not chain:
            if not settings.workflow.auto_approve_uncovered_positions:
                raise NoWorkflowConfiguredError(
                    f"No approval chain is defined for position '{position or 'unassigned'}'",
                    {"position": position, "days": days},
                )
            self.log_warning(
                f"Position '{position}' has no approval chain; request by user {requester.id} will be auto-approved",
                position=position, days=days
            )
            chain = []

        return WorkflowDetails(
            strategy=self.name,
            workflow_name=f"{position or 'UNASSIGNED'} {category} leave",
            requester_position=position,
            duration_category=category,
            levels=_requirements(chain),
        )


class CustomWorkflowStrategy(BaseService):
    name = CUSTOM_WORKFLOW_STRATEGY

    def __init__(self, db: Session):
        super().__init__(db)
        self.store = WorkflowStore(db)
        self.directory = OrganizationDirectory(db)

    def resolve(self, requester: User, days: float) -> WorkflowDetails:
        leave_category = self.store.category_for_days(days)
        workflow = self.store.find_active_workflow(
            days,
            department_id=requester.department_id,
            position_id=requester.position_id,
            leave_category_id=leave_category.id if leave_category else None,
        )
        if workflow is None:
            raise NoWorkflowConfiguredError(
                f"No active approval workflow covers {days} day(s) for this employee",
                {"days": days, "department_id": requester.department_id, "position_id": requester.position_id},
            )

        levels = self._build_levels(workflow)

        bounding = workflow.leave_category or leave_category
        if bounding is not None and len(levels) > bounding.max_approval_levels:
            raise WorkflowConfigurationError(
                f"Workflow '{workflow.name}' has {len(levels)} levels but leave category "
                f"'{bounding.name}' allows {bounding.max_approval_levels}",
                {"workflow_id": workflow.id, "leave_category_id": bounding.id},
            )

        return WorkflowDetails(
            strategy=self.name,
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            requester_position=_normalize_position(requester.position_name),
            duration_category=workflow.category or duration_category(days),
            leave_category_id=bounding.id if bounding else None,
            levels=levels,
        )

    def _build_levels(self, workflow: CustomApprovalWorkflow) -> List[ApprovalLevelRequirement]:
        try:
            configs = sorted(
                (ApprovalLevelConfig.model_validate(raw) for raw in workflow.approval_levels or []),
                key=lambda config: config.level or 0,
            )
            check_contiguous_levels([config.level for config in configs])
        except ValueError as e:
            raise WorkflowConfigurationError(
                f"Workflow '{workflow.name}' has invalid approval levels: {e}",
                {"workflow_id": workflow.id},
            )

        # Optional levels only drop off the end of the chain
        required = [config.level for config in configs if config.is_required]
        if not required:
            raise WorkflowConfigurationError(
                f"Workflow '{workflow.name}' has no required approval level",
                {"workflow_id": workflow.id},
            )
        configs = configs[:max(required)]

        levels = []
        for index, config in enumerate(configs):
            if config.position_id is not None:
                position = self.directory.get_position(config.position_id)
                approver = ApproverDescriptor(
                    kind=ApproverKind.POSITION,
                    label=position.name,
                    position_id=position.id,
                    position_name=position.name,
                    department_id=config.department_id,
                )
            elif config.role is not None:
                approver = ApproverDescriptor(
                    kind=ApproverKind.ROLE,
                    label=ROLE_LABELS[UserRole(config.role)],
                    role=config.role,
                    department_id=config.department_id,
                )
            else:
                fallback = FALLBACK_CHAIN[min(index, len(FALLBACK_CHAIN) - 1)]
                approver = ApproverDescriptor(
                    kind=ApproverKind.FALLBACK, label=FALLBACK_LABELS[fallback], fallback=fallback
                )
            levels.append(ApprovalLevelRequirement(level=config.level, approver=approver, is_required=config.is_required))
        return levels


STRATEGIES = {
    POSITION_TABLE_STRATEGY: PositionTableStrategy,
    CUSTOM_WORKFLOW_STRATEGY: CustomWorkflowStrategy,
}


class WorkflowResolver(BaseService):
    """
    Entry point used by the approval service.

    Every level of the resolved chain must have at least one eligible
    approver; an empty set is a configuration error, never an implicit
    approval.
    """

    def __init__(self, db: Session, strategy: Optional[str] = None):
        super().__init__(db)
        self.strategy_name = strategy or settings.workflow.strategy
        if self.strategy_name not in STRATEGIES:
            raise WorkflowConfigurationError(f"Unknown workflow strategy '{self.strategy_name}'")
        self.strategy = STRATEGIES[self.strategy_name](db)
        self.directory = OrganizationDirectory(db)

    def resolve(self, requester: User, days: float) -> WorkflowDetails:
        details = self.strategy.resolve(requester, days)
        check_contiguous_levels([requirement.level for requirement in details.levels])
        for requirement in details.levels:
            self.ensure_approvers(requirement, requester)
        self.log_info(
            f"Resolved {len(details.levels)} approval level(s) for user {requester.id}",
            strategy=self.strategy_name, days=days, workflow=details.workflow_name
        )
        return details

    def ensure_approvers(self, requirement: ApprovalLevelRequirement, requester: User):
        eligible = self.directory.eligible_approver_ids(requirement.approver, requester)
        if not eligible:
            raise WorkflowConfigurationError(
                f"Nobody can approve level {requirement.level} ({requirement.approver.label})",
                {"level": requirement.level, "approver": requirement.approver.label, "requester_id": requester.id},
            )
        return eligible
