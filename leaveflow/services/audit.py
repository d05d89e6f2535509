from leaveflow.services.base import BaseService
from leaveflow.models.audit_log import AuditLog
from typing import Any, Optional

class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        user_role: Optional[str],
        details: dict,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ):
        """
        Create a centralized audit log entry.
        Strictly append-only. Flushed, never committed: the entry commits or
        rolls back together with the transition it describes.
        """
        def sanitize(obj: Any):
            if hasattr(obj, "model_dump"):
                return obj.model_dump(mode="json", by_alias=True)
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items()}
            if isinstance(obj, (list, tuple, set)):
                return [sanitize(i) for i in obj]
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            if hasattr(obj, "value"):
                return obj.value
            return obj

        db_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            user_role=user_role,
            details=sanitize(details),
            before_state=sanitize(before_state),
            after_state=sanitize(after_state)
        )
        self.db.add(db_log)
        self.db.flush()
        return db_log
