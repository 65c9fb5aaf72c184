# outreach_server/db/models.py
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, func

from daily_outreach.db.models import Base, UTCDateTime


class JobStatus(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    FAILED = "failed"


class JobOutcome(str, Enum):
    """Result of the last execution, kept apart from free-text diagnostics."""

    BATCH_READY = "batch_ready"
    INSUFFICIENT_CONTACTS = "insufficient_contacts"
    NO_PRODUCT_PROFILE = "no_product_profile"
    VACATION_SKIPPED = "vacation_skipped"
    FAILED = "failed"
    RECOVERED = "recovered"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    FAILED_PERMANENT = "failed_permanent"
    SKIPPED = "skipped"


class OutreachJob(Base):
    """Recurring daily-outreach schedule, one per user."""

    __tablename__ = "outreach_jobs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default=JobStatus.SCHEDULED.value, index=True)
    next_run_at = Column(UTCDateTime, nullable=False, index=True)
    last_run_at = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)  # Failure or recovery diagnostic only
    last_outcome = Column(String, nullable=True)  # JobOutcome value
    diagnostic_trace = Column(Text, nullable=True)  # Step-by-step trace of the last execution
    retry_count = Column(Integer, default=0, server_default="0", nullable=False)
    next_retry_at = Column(UTCDateTime, nullable=True, index=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    # Written from the scheduler clock on every change; staleness signal for crash recovery
    updated_at = Column(UTCDateTime, nullable=False)


class JobExecutionLog(Base):
    """Append-only audit row per execution attempt."""

    __tablename__ = "outreach_job_logs"

    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, nullable=False, index=True)  # no FK: rows outlive deleted jobs
    user_id = Column(Integer, nullable=False, index=True)
    executed_at = Column(UTCDateTime, nullable=False)
    status = Column(String, nullable=False)  # ExecutionStatus value
    batch_id = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    contacts_processed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
