# outreach_server/schemas/jobs.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from outreach_server.db.models import ExecutionStatus, JobOutcome, JobStatus


class ExecutionLogResponse(BaseModel):
    """One execution attempt."""

    executed_at: datetime
    status: ExecutionStatus
    batch_id: Optional[int] = None
    processing_time_ms: int
    contacts_processed: int = 0
    error_message: Optional[str] = None


class JobStatusResponse(BaseModel):
    """Scheduler job for a user."""

    job_id: int
    user_id: int
    status: JobStatus
    next_run_at: datetime
    next_run_in_minutes: Optional[int] = None
    last_run_at: Optional[datetime] = None
    last_outcome: Optional[JobOutcome] = None
    last_error: Optional[str] = None
    diagnostic_trace: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    is_executing: bool = False
    recent_executions: List[ExecutionLogResponse] = []


class TriggerResponse(BaseModel):
    """Result of a manual trigger."""

    user_id: int
    accepted: bool
    message: str
