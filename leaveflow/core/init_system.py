import logging

from leaveflow.core.config import settings, CUSTOM_WORKFLOW_STRATEGY
from leaveflow.database import SessionLocal
from leaveflow.models.custom_workflow import CustomApprovalWorkflow
from leaveflow.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


def init_system_data(session_factory=SessionLocal):
    """
    Seeds the configuration the resolver depends on.
    Leave categories are always ensured; default custom workflows are only
    created when the custom workflow strategy is active and none exist yet.
    """
    db = session_factory()
    try:
        store = WorkflowStore(db)
        store.ensure_default_leave_categories()

        if settings.workflow.strategy == CUSTOM_WORKFLOW_STRATEGY:
            existing = db.query(CustomApprovalWorkflow).count()
            if existing == 0:
                store.initialize_default_workflows()
                logger.info("✓ Default approval workflows created")
            else:
                logger.info(f"System initialization check: {existing} approval workflow(s) found.")

        logger.info(f"Approval workflow strategy: {settings.workflow.strategy}")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
        raise
    finally:
        db.close()
