"""
Leave Category / Custom Workflow Store

Administrator-owned configuration: custom approval workflows and the leave
categories that bound them. The resolver only reads from here.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from leaveflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from leaveflow.models.custom_workflow import ApprovalCategory, CustomApprovalWorkflow
from leaveflow.models.department import Department
from leaveflow.models.leave_category import LeaveCategory
from leaveflow.models.position import Position
from leaveflow.schemas.workflow import (
    ApprovalLevelConfig,
    CustomWorkflowCreate,
    CustomWorkflowUpdate,
    check_contiguous_levels,
)
from leaveflow.services.base import BaseService

# Columns an update may not clear; an explicit null leaves them unchanged
NON_NULL_FIELDS = {"min_days", "max_days", "approval_levels", "is_active", "is_default"}

DEFAULT_WORKFLOWS = [
    {
        "name": "Short Leave",
        "category": ApprovalCategory.SHORT_LEAVE.value,
        "min_days": 0.5,
        "max_days": 2,
        "approval_levels": [{"level": 1, "isRequired": True}],
    },
    {
        "name": "Medium Leave",
        "category": ApprovalCategory.MEDIUM_LEAVE.value,
        "min_days": 3,
        "max_days": 6,
        "approval_levels": [{"level": 1, "isRequired": True}, {"level": 2, "isRequired": True}],
    },
    {
        "name": "Long Leave",
        "category": ApprovalCategory.LONG_LEAVE.value,
        "min_days": 7,
        "max_days": 30,
        "approval_levels": [
            {"level": 1, "isRequired": True},
            {"level": 2, "isRequired": True},
            {"level": 3, "isRequired": True},
        ],
    },
]

DEFAULT_LEAVE_CATEGORIES = [
    {"name": "Short Leave", "description": "Leave of 0.5 to 2 days", "default_min_days": 0.5, "default_max_days": 2, "max_approval_levels": 2},
    {"name": "Medium Leave", "description": "Leave of 3 to 6 days", "default_min_days": 3, "default_max_days": 6, "max_approval_levels": 3},
    {"name": "Long Leave", "description": "Leave of 7 days or more", "default_min_days": 7, "default_max_days": 30, "max_approval_levels": 4},
]


def _null_safe_eq(column, value):
    return column.is_(None) if value is None else column == value


class WorkflowStore(BaseService):

    # ============================================================================
    # LOOKUPS
    # ============================================================================

    def get_workflow(self, workflow_id: int) -> CustomApprovalWorkflow:
        workflow = self.db.get(CustomApprovalWorkflow, workflow_id)
        if workflow is None:
            raise NotFoundError("CustomApprovalWorkflow", workflow_id)
        return workflow

    def list_workflows(
        self,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        department_id: Optional[int] = None,
        position_id: Optional[int] = None
    ) -> List[CustomApprovalWorkflow]:
        query = self.db.query(CustomApprovalWorkflow)
        if is_active is not None:
            query = query.filter(CustomApprovalWorkflow.is_active == is_active)
        if category:
            query = query.filter(CustomApprovalWorkflow.category == category)
        if department_id is not None:
            query = query.filter(CustomApprovalWorkflow.department_id == department_id)
        if position_id is not None:
            query = query.filter(CustomApprovalWorkflow.position_id == position_id)
        return query.order_by(CustomApprovalWorkflow.category, CustomApprovalWorkflow.min_days).all()

    def get_leave_category(self, category_id: int) -> LeaveCategory:
        category = self.db.get(LeaveCategory, category_id)
        if category is None:
            raise NotFoundError("LeaveCategory", category_id)
        return category

    def category_for_days(self, days: float) -> Optional[LeaveCategory]:
        """Active leave category whose day range covers `days`, if any."""
        return (
            self.db.query(LeaveCategory)
            .filter(
                LeaveCategory.is_active == True,
                LeaveCategory.default_min_days <= days,
                LeaveCategory.default_max_days >= days,
            )
            .order_by(LeaveCategory.default_min_days.desc(), LeaveCategory.id)
            .first()
        )

    def find_active_workflow(
        self,
        days: float,
        department_id: Optional[int] = None,
        position_id: Optional[int] = None,
        leave_category_id: Optional[int] = None
    ) -> Optional[CustomApprovalWorkflow]:
        """
        Most specific active workflow covering `days`.

        Specificity: department and position > department only >
        position only > unscoped. Ties go to non-default workflows, then
        to the narrowest day range, then to the oldest definition.
        """
        query = self.db.query(CustomApprovalWorkflow).filter(
            CustomApprovalWorkflow.is_active == True,
            CustomApprovalWorkflow.min_days <= days,
            CustomApprovalWorkflow.max_days >= days,
            or_(CustomApprovalWorkflow.department_id.is_(None), CustomApprovalWorkflow.department_id == department_id),
            or_(CustomApprovalWorkflow.position_id.is_(None), CustomApprovalWorkflow.position_id == position_id),
        )
        if leave_category_id is not None:
            query = query.filter(or_(
                CustomApprovalWorkflow.leave_category_id.is_(None),
                CustomApprovalWorkflow.leave_category_id == leave_category_id,
            ))
        else:
            query = query.filter(CustomApprovalWorkflow.leave_category_id.is_(None))

        candidates = query.all()
        if not candidates:
            return None

        def rank(workflow: CustomApprovalWorkflow):
            has_dept = workflow.department_id is not None
            has_pos = workflow.position_id is not None
            if has_dept and has_pos:
                specificity = 0
            elif has_dept:
                specificity = 1
            elif has_pos:
                specificity = 2
            else:
                specificity = 3
            return (specificity, bool(workflow.is_default), workflow.max_days - workflow.min_days, workflow.id)

        return sorted(candidates, key=rank)[0]

    # ============================================================================
    # ADMINISTRATION
    # ============================================================================

    def create_workflow(self, data: CustomWorkflowCreate) -> CustomApprovalWorkflow:
        if not data.name:
            raise ValidationError("Name is required")
        if data.min_days is None or data.max_days is None or data.approval_levels is None:
            raise ValidationError(
                "Name, category or leaveCategoryId, minDays, maxDays, and approvalLevels are required"
            )
        if not data.category and data.leave_category_id is None:
            raise ValidationError("Either category or leaveCategoryId is required")

        self._validate_range(data.min_days, data.max_days)
        levels = self._validate_levels(data.approval_levels, data.leave_category_id)
        self._check_scope_exists(data.department_id, data.position_id)
        self._check_overlap(data.category, data.leave_category_id, data.department_id, data.position_id,
                            data.min_days, data.max_days)

        workflow = CustomApprovalWorkflow(
            name=data.name,
            description=data.description,
            category=data.category,
            leave_category_id=data.leave_category_id,
            min_days=data.min_days,
            max_days=data.max_days,
            department_id=data.department_id,
            position_id=data.position_id,
            approval_levels=levels,
            is_active=True if data.is_active is None else data.is_active,
            is_default=bool(data.is_default),
        )
        with self.atomic("CustomApprovalWorkflow"):
            self.db.add(workflow)
        self.db.refresh(workflow)
        self.log_info(f"Custom approval workflow {workflow.id} '{workflow.name}' created")
        return workflow

    def update_workflow(self, workflow_id: int, data: CustomWorkflowUpdate) -> CustomApprovalWorkflow:
        workflow = self.get_workflow(workflow_id)
        changes = {
            field: value for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field not in NON_NULL_FIELDS
        }

        levels = None
        leave_category_id = changes.get("leave_category_id", workflow.leave_category_id)
        if data.approval_levels is not None:
            levels = self._validate_levels(data.approval_levels, leave_category_id)
        elif "leave_category_id" in changes:
            self._check_level_bound(len(workflow.approval_levels or []), leave_category_id)

        if "department_id" in changes or "position_id" in changes:
            self._check_scope_exists(changes.get("department_id"), changes.get("position_id"))

        scope_keys = {"category", "leave_category_id", "min_days", "max_days", "department_id", "position_id"}
        if scope_keys & set(changes):
            min_days = changes.get("min_days", workflow.min_days)
            max_days = changes.get("max_days", workflow.max_days)
            self._validate_range(min_days, max_days)
            self._check_overlap(
                changes.get("category", workflow.category),
                changes.get("leave_category_id", workflow.leave_category_id),
                changes.get("department_id", workflow.department_id),
                changes.get("position_id", workflow.position_id),
                min_days,
                max_days,
                exclude_id=workflow.id,
            )

        with self.atomic("CustomApprovalWorkflow", workflow_id):
            for field, value in changes.items():
                if field == "approval_levels":
                    continue
                if field == "name" and not value:
                    raise ValidationError("Name cannot be empty")
                setattr(workflow, field, value)
            if levels is not None:
                workflow.approval_levels = levels
        self.db.refresh(workflow)
        self.log_info(f"Custom approval workflow {workflow.id} updated", fields=sorted(changes))
        return workflow

    def delete_workflow(self, workflow_id: int) -> None:
        workflow = self.get_workflow(workflow_id)
        with self.atomic("CustomApprovalWorkflow", workflow_id):
            self.db.delete(workflow)
        self.log_info(f"Custom approval workflow {workflow_id} deleted")

    def initialize_default_workflows(self) -> List[CustomApprovalWorkflow]:
        """Replace every default workflow by the standard short/medium/long set."""
        created = []
        with self.atomic("CustomApprovalWorkflow"):
            self.db.query(CustomApprovalWorkflow).filter(
                CustomApprovalWorkflow.is_default == True
            ).delete(synchronize_session=False)
            for config in DEFAULT_WORKFLOWS:
                workflow = CustomApprovalWorkflow(
                    name=config["name"],
                    description=f"Default approval workflow for {config['name'].lower()}",
                    category=config["category"],
                    min_days=config["min_days"],
                    max_days=config["max_days"],
                    approval_levels=[dict(level) for level in config["approval_levels"]],
                    is_active=True,
                    is_default=True,
                )
                self.db.add(workflow)
                created.append(workflow)
        self.log_info(f"Initialized {len(created)} default approval workflows")
        return created

    def ensure_default_leave_categories(self) -> int:
        created = 0
        with self.atomic("LeaveCategory"):
            for config in DEFAULT_LEAVE_CATEGORIES:
                exists = self.db.query(LeaveCategory).filter(LeaveCategory.name == config["name"]).first()
                if exists:
                    continue
                self.db.add(LeaveCategory(is_active=True, is_default=True, **config))
                created += 1
        if created:
            self.log_info(f"Seeded {created} default leave categories")
        return created

    # ============================================================================
    # VALIDATION
    # ============================================================================

    def _validate_range(self, min_days: float, max_days: float) -> None:
        if min_days < 0 or max_days < 0:
            raise ValidationError("minDays and maxDays must be non-negative")
        if min_days != int(min_days) and min_days != 0.5:
            raise ValidationError("minDays must be either a whole number or 0.5 for half-day")
        if min_days > max_days:
            raise ValidationError("minDays cannot be greater than maxDays")

    def _validate_levels(
        self,
        levels: List[ApprovalLevelConfig],
        leave_category_id: Optional[int]
    ) -> List[Dict[str, Any]]:
        if not levels:
            raise ValidationError("approvalLevels must be a non-empty array")
        for level in levels:
            if level.level is None:
                raise ValidationError("Each approval level must have a level number")

        ordered = sorted(levels, key=lambda lvl: lvl.level)
        try:
            check_contiguous_levels([lvl.level for lvl in ordered])
        except ValueError as e:
            raise ValidationError(str(e))

        for level in ordered:
            if level.position_id is not None and self.db.get(Position, level.position_id) is None:
                raise NotFoundError("Position", level.position_id)
            if level.department_id is not None and self.db.get(Department, level.department_id) is None:
                raise NotFoundError("Department", level.department_id)

        self._check_level_bound(len(ordered), leave_category_id)

        return [lvl.model_dump(mode="json", by_alias=True) for lvl in ordered]

    def _check_level_bound(self, level_count: int, leave_category_id: Optional[int]) -> None:
        if leave_category_id is None:
            return
        category = self.get_leave_category(leave_category_id)
        if level_count > category.max_approval_levels:
            raise ValidationError(
                f"Leave category '{category.name}' allows at most {category.max_approval_levels} approval levels",
                {"levels": level_count, "max_approval_levels": category.max_approval_levels}
            )

    def _check_scope_exists(self, department_id: Optional[int], position_id: Optional[int]) -> None:
        if department_id is not None and self.db.get(Department, department_id) is None:
            raise NotFoundError("Department", department_id)
        if position_id is not None and self.db.get(Position, position_id) is None:
            raise NotFoundError("Position", position_id)

    def _check_overlap(
        self,
        category: Optional[str],
        leave_category_id: Optional[int],
        department_id: Optional[int],
        position_id: Optional[int],
        min_days: float,
        max_days: float,
        exclude_id: Optional[int] = None
    ) -> None:
        query = self.db.query(CustomApprovalWorkflow).filter(
            _null_safe_eq(CustomApprovalWorkflow.category, category),
            _null_safe_eq(CustomApprovalWorkflow.leave_category_id, leave_category_id),
            _null_safe_eq(CustomApprovalWorkflow.department_id, department_id),
            _null_safe_eq(CustomApprovalWorkflow.position_id, position_id),
            CustomApprovalWorkflow.min_days <= max_days,
            CustomApprovalWorkflow.max_days >= min_days,
        )
        if exclude_id is not None:
            query = query.filter(CustomApprovalWorkflow.id != exclude_id)
        clash = query.first()
        if clash is not None:
            raise ConflictError(
                "This workflow overlaps with an existing workflow for the same category, department, and position",
                details={"workflow_id": clash.id}
            )
