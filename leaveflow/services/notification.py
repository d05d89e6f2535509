import logging
from typing import Optional

from sqlalchemy.orm import Session
from leaveflow.models.notification import Notification

logger = logging.getLogger(__name__)

class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
        leave_request_id: Optional[int] = None
    ) -> Notification:
        """
        Queue a notification in the caller's transaction; the caller commits,
        so a rolled back decision never notifies anybody.
        """
        notification = Notification(
            user_id=user_id,
            leave_request_id=leave_request_id,
            title=title,
            message=message,
            type=type,
            link=link
        )
        db.add(notification)
        return notification

    @staticmethod
    def notify_user(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
        leave_request_id: Optional[int] = None
    ) -> Optional[Notification]:
        """
        Never breaks the calling workflow.
        """
        try:
            return NotificationService.create_notification(db, user_id, title, message, type, link, leave_request_id)
        except Exception as e:
            logger.warning(f"Notification to user {user_id} failed: {e}", exc_info=True)
            return None
