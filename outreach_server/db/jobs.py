# outreach_server/db/jobs.py
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import and_, case, or_
from sqlalchemy.orm import Session

from outreach_server.db.engine import get_session
from outreach_server.db.models import ExecutionStatus, JobExecutionLog, JobOutcome, JobStatus, OutreachJob

logger = logging.getLogger(__name__)


class JobStore:
    """Durable OutreachJob and JobExecutionLog records.

    Every method opens its own session and commits before returning, so rows handed
    back are detached snapshots.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_job(self, user_id: int) -> Optional[OutreachJob]:
        session = self._session_factory()
        try:
            return session.query(OutreachJob).filter(OutreachJob.user_id == user_id).one_or_none()
        finally:
            session.close()

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[OutreachJob]:
        session = self._session_factory()
        try:
            query = session.query(OutreachJob)
            if status:
                query = query.filter(OutreachJob.status == status.value)
            return query.order_by(OutreachJob.next_run_at.asc()).all()
        finally:
            session.close()

    def find_due_jobs(self, now: datetime, max_retries: int, limit: int) -> List[OutreachJob]:
        """
        Jobs ready to execute, retryable failures first, then oldest due first.

        A job is due when it is scheduled with next_run_at <= now, or failed with
        retries left and its retry time reached (or unset).
        """
        if limit <= 0:
            return []

        retryable = and_(
            OutreachJob.status == JobStatus.FAILED.value,
            OutreachJob.retry_count < max_retries,
        )
        due_filter = or_(
            and_(
                OutreachJob.status == JobStatus.SCHEDULED.value,
                OutreachJob.next_run_at <= now,
            ),
            and_(
                retryable,
                or_(OutreachJob.next_retry_at.is_(None), OutreachJob.next_retry_at <= now),
            ),
        )
        priority = case((retryable, 0), else_=1)

        session = self._session_factory()
        try:
            return (
                session.query(OutreachJob)
                .filter(due_filter)
                .order_by(priority, OutreachJob.next_run_at.asc())
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    def list_logs(self, user_id: int, limit: int = 50) -> List[JobExecutionLog]:
        session = self._session_factory()
        try:
            return (
                session.query(JobExecutionLog)
                .filter(JobExecutionLog.user_id == user_id)
                .order_by(JobExecutionLog.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def upsert_schedule(self, user_id: int, next_run_at: datetime, now: datetime) -> OutreachJob:
        """Create the user's job, or put an existing one back on schedule with a clean slate."""
        session = self._session_factory()
        try:
            job = session.query(OutreachJob).filter(OutreachJob.user_id == user_id).one_or_none()
            if job is None:
                job = OutreachJob(user_id=user_id, retry_count=0)
                session.add(job)
                logger.info("Created job for user %s, next run: %s", user_id, next_run_at)
            else:
                logger.info("Rescheduled job for user %s, next run: %s", user_id, next_run_at)

            job.status = JobStatus.SCHEDULED.value
            job.next_run_at = next_run_at
            job.retry_count = 0
            job.next_retry_at = None
            job.last_error = None
            job.updated_at = now
            session.commit()
            return job
        finally:
            session.close()

    def create_if_missing(self, user_id: int, next_run_at: datetime, now: datetime) -> bool:
        """Create a scheduled job unless the user already has one (in any state)."""
        session = self._session_factory()
        try:
            exists = session.query(OutreachJob.id).filter(OutreachJob.user_id == user_id).first()
            if exists:
                return False
            session.add(
                OutreachJob(
                    user_id=user_id,
                    status=JobStatus.SCHEDULED.value,
                    next_run_at=next_run_at,
                    retry_count=0,
                    updated_at=now,
                )
            )
            session.commit()
            logger.info("Created job for user %s, next run: %s", user_id, next_run_at)
            return True
        finally:
            session.close()

    def delete_job(self, user_id: int) -> bool:
        session = self._session_factory()
        try:
            job = session.query(OutreachJob).filter(OutreachJob.user_id == user_id).one_or_none()
            if not job:
                return False
            session.delete(job)
            session.commit()
            logger.info("Removed job for user %s", user_id)
            return True
        finally:
            session.close()

    def mark_running(self, job_id: int, now: datetime) -> bool:
        return self._update(job_id, status=JobStatus.RUNNING.value, updated_at=now)

    def mark_succeeded(
        self,
        job_id: int,
        now: datetime,
        next_run_at: datetime,
        outcome: JobOutcome,
        trace: str,
    ) -> bool:
        return self._update(
            job_id,
            status=JobStatus.SCHEDULED.value,
            last_run_at=now,
            next_run_at=next_run_at,
            last_error=None,
            last_outcome=outcome.value,
            diagnostic_trace=trace,
            retry_count=0,
            next_retry_at=None,
            updated_at=now,
        )

    def mark_failed(
        self,
        job_id: int,
        now: datetime,
        retry_count: int,
        next_retry_at: Optional[datetime],
        error: str,
        trace: str,
    ) -> bool:
        return self._update(
            job_id,
            status=JobStatus.FAILED.value,
            last_error=error,
            last_outcome=JobOutcome.FAILED.value,
            diagnostic_trace=trace,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
            updated_at=now,
        )

    def reset_running_jobs(self, now: datetime, note: str) -> int:
        """Put every running job back on schedule, regardless of age."""
        return self._reset_running(now, note, stale_before=None)

    def reset_stale_running_jobs(self, now: datetime, stale_before: datetime, note: str) -> int:
        """Put running jobs whose updated_at is older than stale_before back on schedule."""
        return self._reset_running(now, note, stale_before=stale_before)

    def append_log(
        self,
        job_id: int,
        user_id: int,
        executed_at: datetime,
        status: ExecutionStatus,
        processing_time_ms: int,
        batch_id: Optional[int] = None,
        contacts_processed: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        session = self._session_factory()
        try:
            session.add(
                JobExecutionLog(
                    job_id=job_id,
                    user_id=user_id,
                    executed_at=executed_at,
                    status=status.value,
                    batch_id=batch_id,
                    processing_time_ms=processing_time_ms,
                    contacts_processed=contacts_processed,
                    error_message=error_message,
                )
            )
            session.commit()
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _update(self, job_id: int, **values) -> bool:
        session = self._session_factory()
        try:
            job = session.get(OutreachJob, job_id)
            if not job:
                logger.warning("Job %s no longer exists, skipping update", job_id)
                return False
            for key, value in values.items():
                setattr(job, key, value)
            session.commit()
            return True
        finally:
            session.close()

    def _reset_running(self, now: datetime, note: str, stale_before: Optional[datetime]) -> int:
        session = self._session_factory()
        try:
            query = session.query(OutreachJob).filter(OutreachJob.status == JobStatus.RUNNING.value)
            if stale_before is not None:
                query = query.filter(OutreachJob.updated_at < stale_before)
            jobs = query.all()
            for job in jobs:
                job.status = JobStatus.SCHEDULED.value
                job.last_error = note
                job.last_outcome = JobOutcome.RECOVERED.value
                job.updated_at = now
                logger.warning("Recovered running job %s for user %s: %s", job.id, job.user_id, note)
            session.commit()
            return len(jobs)
        finally:
            session.close()
