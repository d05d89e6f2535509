import logging
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from leaveflow.core.config import settings
from leaveflow.core.exceptions import StaleStateError

T = TypeVar("T")


class BaseService:
    """
    Common plumbing for domain services: a session, a logger and a
    transaction helper. Services never commit outside `atomic()`.
    """

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(self.__class__.__module__)

    @contextmanager
    def atomic(self, entity: str = "Record", entity_id: Optional[int] = None):
        """
        Run a unit of work and commit it, or roll everything back.

        Usage:
            with self.atomic("LeaveRequest", request_id):
                ...mutate...
        """
        try:
            yield self.db
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            self.log_warning(f"Stale write on {entity} {entity_id}: {e}")
            raise StaleStateError(entity, entity_id) from e
        except StaleStateError as e:
            self.db.rollback()
            self.log_warning(f"Stale write on {entity} {entity_id}: {e.message}")
            raise
        except Exception:
            self.db.rollback()
            raise

    def retry_on_stale(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Re-run a transition against a freshly loaded record after a
        concurrent writer won the race. The last StaleStateError propagates.
        """
        retryer = Retrying(
            stop=stop_after_attempt(max(1, settings.workflow.transition_retry_attempts)),
            wait=wait_exponential(multiplier=0.05, max=0.5),
            retry=retry_if_exception_type(StaleStateError),
            reraise=True,
        )
        return retryer(fn, *args, **kwargs)

    def log_info(self, message: str, **extra):
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra):
        self._logger.warning(message, extra=extra or None)
