# outreach_server/services/executor.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from daily_outreach import conf
from daily_outreach.batch_generator import DailyBatchGenerator
from daily_outreach.conf import SchedulerConfig
from daily_outreach.db.leads import LeadStore
from daily_outreach.db.models import OutreachPreferences
from daily_outreach.db.preferences import PreferenceStore
from daily_outreach.notifications import NotificationDispatcher
from outreach_server.db.jobs import JobStore
from outreach_server.db.models import ExecutionStatus, JobOutcome, OutreachJob
from outreach_server.services.next_run import compute_next_run
from outreach_server.services.observability import ExecutionTrace, JobLoggerAdapter

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    outcome: JobOutcome
    batch_id: Optional[int] = None
    contacts_processed: int = 0
    notified: bool = False


def retry_delay_seconds(retry_count: int, ladder: Sequence[int]) -> int:
    """Backoff for the given attempt number (1-based); the last rung repeats."""
    index = min(max(retry_count, 1), len(ladder)) - 1
    return ladder[index]


def is_on_vacation(preferences: Optional[OutreachPreferences], now: datetime) -> bool:
    """Whether the user's local calendar date falls inside their vacation range."""
    if preferences is None or not preferences.vacation_mode:
        return False

    local_date = now.astimezone(ZoneInfo(preferences.timezone or conf.DEFAULT_TIMEZONE)).date()
    start, end = preferences.vacation_start_date, preferences.vacation_end_date
    if start and local_date < start:
        return False
    if end and local_date > end:
        return False
    return True


class JobExecutor:
    """Runs one user's daily outreach and records the outcome on the job."""

    def __init__(
        self,
        jobs: JobStore,
        leads: LeadStore,
        preferences: PreferenceStore,
        batch_generator: DailyBatchGenerator,
        notifier: NotificationDispatcher,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.jobs = jobs
        self.leads = leads
        self.preferences = preferences
        self.batch_generator = batch_generator
        self.notifier = notifier
        self.config = config or SchedulerConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run_outreach_pipeline(self, user_id: int, trace: ExecutionTrace) -> PipelineResult:
        """
        Generate and announce today's batch for a user.

        Insufficient data is a normal outcome. Exceptions propagate so the caller can
        schedule a retry.
        """
        user = self.leads.get_user(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        trace.step("Loaded user %s", user_id)

        prefs = self.preferences.get_preferences(user_id)
        if is_on_vacation(prefs, self.clock()):
            trace.step("Vacation mode active, skipping today")
            return PipelineResult(outcome=JobOutcome.VACATION_SKIPPED)

        available = self.leads.count_uncontacted_contacts(user_id)
        trace.step("%d uncontacted contacts available", available)

        if available < self.batch_generator.batch_size:
            return self._nudge_without_batch(user, JobOutcome.INSUFFICIENT_CONTACTS, trace)

        product = self.leads.resolve_product_profile(user_id, prefs.active_product_id if prefs else None)
        if product is None:
            trace.step("No product profile configured")
            return self._nudge_without_batch(user, JobOutcome.NO_PRODUCT_PROFILE, trace)

        batch = self.batch_generator.generate_daily_batch(user_id)
        if batch is None:
            trace.step("Batch generation returned nothing")
            return self._nudge_without_batch(user, JobOutcome.INSUFFICIENT_CONTACTS, trace)
        trace.step("Batch %d created with %d items", batch.id, len(batch.items))

        notified = self.notifier.send_daily_nudge_email(user, batch)
        trace.step("Leads-ready email %s", "sent" if notified else "not sent")
        if notified:
            self.preferences.record_nudge_sent(user_id, self.clock())

        return PipelineResult(
            outcome=JobOutcome.BATCH_READY,
            batch_id=batch.id,
            contacts_processed=len(batch.items),
            notified=notified,
        )

    def _nudge_without_batch(self, user, outcome: JobOutcome, trace: ExecutionTrace) -> PipelineResult:
        notified = self.notifier.send_daily_nudge_email(user, None)
        trace.step("Need-more-contacts email %s", "sent" if notified else "not sent")
        if notified:
            self.preferences.record_nudge_sent(user.id, self.clock())
        return PipelineResult(outcome=outcome, notified=notified)

    def execute(self, job: OutreachJob) -> None:
        """
        Execute a due job end to end.

        Updates job status: running → scheduled (success) or failed (retryable or
        exhausted), and appends one execution-log row per attempt.
        """
        job_logger = JobLoggerAdapter(logger, {"job_id": job.id, "user_id": job.user_id})
        trace = ExecutionTrace(self.clock, job_logger)
        started_at = self.clock()

        try:
            job_logger.info("Starting job execution")
            if not self.jobs.mark_running(job.id, started_at):
                job_logger.warning("Job disappeared before it could start")
                return

            result = self.run_outreach_pipeline(job.user_id, trace)

            prefs = self.preferences.get_preferences(job.user_id)
            if prefs is None or not prefs.enabled:
                job_logger.info("Outreach disabled during execution, removing job")
                self.jobs.delete_job(job.user_id)
                return

            now = self.clock()
            next_run_at = compute_next_run(prefs, now)
            self.jobs.mark_succeeded(job.id, now, next_run_at, result.outcome, trace.render())

            processing_ms = _elapsed_ms(started_at, now)
            self.jobs.append_log(
                job_id=job.id,
                user_id=job.user_id,
                executed_at=now,
                status=ExecutionStatus.SKIPPED
                if result.outcome == JobOutcome.VACATION_SKIPPED
                else ExecutionStatus.SUCCESS,
                processing_time_ms=processing_ms,
                batch_id=result.batch_id,
                contacts_processed=result.contacts_processed,
            )
            job_logger.info(
                "Job completed (%s), next run: %s, processing time: %dms",
                result.outcome.value,
                next_run_at,
                processing_ms,
            )
        except Exception as e:
            job_logger.error("Job failed: %s", e, exc_info=True)
            self._record_failure(job, e, started_at, trace, job_logger)

    def _record_failure(
        self,
        job: OutreachJob,
        error: Exception,
        started_at: datetime,
        trace: ExecutionTrace,
        job_logger: logging.LoggerAdapter,
    ) -> None:
        message = str(error) or error.__class__.__name__
        retry_count = (job.retry_count or 0) + 1
        should_retry = retry_count < self.config.max_retries
        now = self.clock()
        trace.step("Failed: %s", message)

        if should_retry:
            delay = retry_delay_seconds(retry_count, self.config.retry_delays_seconds)
            next_retry_at = now + timedelta(seconds=delay)
            job_logger.warning(
                "Will retry (attempt %d/%d) at %s", retry_count, self.config.max_retries, next_retry_at
            )
            recorded = self.jobs.mark_failed(job.id, now, retry_count, next_retry_at, message, trace.render())
        else:
            job_logger.error("Exhausted all retries (%d)", self.config.max_retries)
            recorded = self.jobs.mark_failed(
                job.id,
                now,
                retry_count,
                None,
                f"Failed after {self.config.max_retries} retries: {message}",
                trace.render(),
            )

        if not recorded:
            job_logger.info("Job removed during execution, failure not recorded")
            return

        self.jobs.append_log(
            job_id=job.id,
            user_id=job.user_id,
            executed_at=now,
            status=ExecutionStatus.FAILED if should_retry else ExecutionStatus.FAILED_PERMANENT,
            processing_time_ms=_elapsed_ms(started_at, now),
            error_message=message,
        )


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))
