import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()

POSITION_TABLE_STRATEGY = "position_table"
CUSTOM_WORKFLOW_STRATEGY = "custom_workflow"
WORKFLOW_STRATEGIES = (POSITION_TABLE_STRATEGY, CUSTOM_WORKFLOW_STRATEGY)


class WorkflowSettings(BaseModel):
    # Exactly one resolution strategy is authoritative at a time.
    strategy: str = Field(default=os.getenv("WORKFLOW_STRATEGY", POSITION_TABLE_STRATEGY).strip().lower())
    auto_approve_uncovered_positions: bool = Field(
        default=os.getenv("WORKFLOW_AUTO_APPROVE_UNCOVERED", "false").lower() == "true"
    )
    short_leave_max_days: float = float(os.getenv("SHORT_LEAVE_MAX_DAYS", "2"))
    medium_leave_max_days: float = float(os.getenv("MEDIUM_LEAVE_MAX_DAYS", "6"))
    transition_retry_attempts: int = int(os.getenv("WORKFLOW_TRANSITION_RETRY_ATTEMPTS", "3"))


class Config(BaseModel):
    app_name: str = "Leave Approval Service"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./leaveflow.db")

    # Approval workflow
    workflow: WorkflowSettings = WorkflowSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"
    user_id_header: str = "X-User-ID"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:5173,"
                "http://127.0.0.1:3000,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]
    )

    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

settings = Config()

# --- Startup Validation ---
_logger = logging.getLogger(__name__)
if settings.workflow.strategy not in WORKFLOW_STRATEGIES:
    if settings.environment != "development":
        raise RuntimeError(
            f"FATAL: WORKFLOW_STRATEGY must be one of {', '.join(WORKFLOW_STRATEGIES)}, "
            f"got '{settings.workflow.strategy}'."
        )
    _logger.warning(
        f"Unknown WORKFLOW_STRATEGY '{settings.workflow.strategy}', falling back to '{POSITION_TABLE_STRATEGY}'."
    )
    settings.workflow.strategy = POSITION_TABLE_STRATEGY
