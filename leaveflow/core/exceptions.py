from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Malformed input, e.g. an end date before the start date."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=details
        )

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class ForbiddenError(AppException):
    """Owner-only action attempted by somebody else."""
    def __init__(self, message: str = "Only the owner of this leave request can do that"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN"
        )

class NotEligibleError(AppException):
    """The acting user cannot decide on the request in its current state."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=403,
            error_code="NOT_ELIGIBLE",
            details=details
        )

class DuplicateApprovalError(AppException):
    def __init__(self, request_id: Any, level: int):
        super().__init__(
            message=f"Approval level {level} is already recorded for leave request {request_id}",
            status_code=409,
            error_code="DUPLICATE_APPROVAL",
            details={"request_id": request_id, "level": level}
        )

class ConflictError(AppException):
    """Concurrent mutation or an outstanding deletion request."""
    def __init__(self, message: str, error_code: str = "CONFLICT", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code=error_code,
            details=details
        )

class StaleStateError(ConflictError):
    """The persisted record changed between read and write."""
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} was modified concurrently; reload and retry",
            error_code="STALE_STATE",
            details={"entity": entity, "id": entity_id}
        )

class NoWorkflowConfiguredError(AppException):
    def __init__(self, message: str = "No approval workflow is configured for this request", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="NO_WORKFLOW_CONFIGURED",
            details=details
        )

class WorkflowConfigurationError(AppException):
    """Configured workflow exists but cannot be executed (e.g. nobody can approve a level)."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="WORKFLOW_MISCONFIGURED",
            details=details
        )

class InsufficientBalanceError(AppException):
    def __init__(self, requested: float, remaining: Optional[float], details: Optional[Dict[str, Any]] = None):
        if remaining is None:
            message = "No leave balance record found for this leave type and year"
        else:
            message = f"Insufficient balance. Requested: {requested}, Remaining: {remaining}"
        super().__init__(
            message=message,
            status_code=422,
            error_code="INSUFFICIENT_BALANCE",
            details={"requested": requested, "remaining": remaining, **(details or {})}
        )
        self.requested = requested
        self.remaining = remaining
