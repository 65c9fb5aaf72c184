# outreach_server/services/scheduler.py
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from daily_outreach.batch_generator import DailyBatchGenerator
from daily_outreach.conf import SchedulerConfig
from daily_outreach.content import get_default_content_generator
from daily_outreach.db.batches import BatchStore
from daily_outreach.db.leads import LeadStore
from daily_outreach.db.preferences import PreferenceStore
from daily_outreach.notifications import SendGridNotificationDispatcher
from outreach_server.db.engine import get_session
from outreach_server.db.jobs import JobStore
from outreach_server.db.models import OutreachJob
from outreach_server.services.executor import JobExecutor
from outreach_server.services.next_run import compute_next_run
from outreach_server.services.worker import JobWorkerPool

logger = logging.getLogger(__name__)

RESTART_NOTE = "Reset after restart"


class OutreachScheduler:
    """
    Polls the job store for due outreach jobs and runs them on a bounded worker pool.

    All state lives on the instance, so tests can run several isolated schedulers
    with their own clock, stores and executor.
    """

    def __init__(
        self,
        jobs: JobStore,
        preferences: PreferenceStore,
        executor: JobExecutor,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        pool: Optional[JobWorkerPool] = None,
    ):
        self.jobs = jobs
        self.preferences = preferences
        self.executor = executor
        self.config = config or SchedulerConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.pool = pool or JobWorkerPool(self.config.max_concurrent, clock=self.clock)

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def recover_on_startup(self) -> int:
        """Reset every running job; nothing can still be in flight in a fresh process."""
        recovered = self.jobs.reset_running_jobs(self.clock(), RESTART_NOTE)
        if recovered:
            logger.warning("Reset %d running job(s) after restart", recovered)
        return recovered

    def ensure_jobs_for_enabled_users(self) -> int:
        """Create jobs for enabled users that have none. Existing jobs are left untouched."""
        now = self.clock()
        created = 0
        for prefs in self.preferences.list_enabled():
            try:
                if self.jobs.create_if_missing(prefs.user_id, compute_next_run(prefs, now), now):
                    created += 1
            except Exception as e:
                logger.error("Failed to create job for user %s: %s", prefs.user_id, e, exc_info=True)
        return created

    def start(self) -> None:
        """Recover crashed state, then start the polling thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Scheduler already running")
                return

            logger.info(
                "Scheduler config: Poll=%dms, Batch=%d, MaxConcurrent=%d, MaxRetries=%d",
                self.config.poll_interval_ms,
                self.config.batch_size,
                self.config.max_concurrent,
                self.config.max_retries,
            )
            self.recover_on_startup()
            created = self.ensure_jobs_for_enabled_users()
            logger.info("Scheduler initialized (%d new job(s))", created)

            self._stop_event.clear()
            self._thread = threading.Thread(target=self._poll_loop, name="outreach-scheduler", daemon=True)
            self._thread.start()
            logger.info("Scheduler started")

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            self._stop_event.set()
            if self._thread is not None:
                self._thread.join(timeout=5.0)
                self._thread = None
            self.pool.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _poll_loop(self) -> None:
        logger.info("Scheduler worker started")
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error("Error checking due jobs: %s", e, exc_info=True)
            self._stop_event.wait(self.config.poll_interval_ms / 1000)
        logger.info("Scheduler worker stopped")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def sweep_stale(self) -> int:
        """Drop stale in-memory markers and reset stale running rows."""
        now = self.clock()
        self.pool.drop_stale(self.config.stale_threshold)
        stale_before = now - self.config.stale_threshold
        return self.jobs.reset_stale_running_jobs(
            now,
            stale_before,
            f"Recovered stale running job (no update since before {stale_before.isoformat()})",
        )

    def poll_once(self) -> int:
        """
        One scheduler tick.

        Returns:
            Number of jobs handed to the worker pool
        """
        self.sweep_stale()

        running = self.pool.running_count()
        slots = self.config.max_concurrent - running
        if slots <= 0:
            logger.info("Max concurrent jobs reached (%d/%d), waiting...", running, self.config.max_concurrent)
            return 0

        limit = min(self.config.batch_size, slots)
        due_jobs = self.jobs.find_due_jobs(self.clock(), self.config.max_retries, limit)
        if due_jobs:
            logger.info(
                "Processing batch of %d jobs (%d running, %d slots available)", len(due_jobs), running, limit
            )

        dispatched = 0
        for job in due_jobs:
            if self.pool.is_running(job.user_id):
                logger.info("Job for user %s already running, skipping", job.user_id)
                continue
            try:
                if self.pool.submit(job.user_id, lambda job=job: self.executor.execute(job)):
                    dispatched += 1
            except Exception as e:
                logger.error("Failed to start job %s for user %s: %s", job.id, job.user_id, e, exc_info=True)
        return dispatched

    # ------------------------------------------------------------------
    # Preference hooks (called by the settings API)
    # ------------------------------------------------------------------
    def update_user_preferences(self, user_id: int, preferences: Any) -> Optional[OutreachJob]:
        """
        Keep the user's job in sync with edited preferences.

        Enabled preferences (re)schedule the job from a clean slate, which also revives
        jobs whose retries were exhausted. Disabled preferences delete the job.
        """
        if not getattr(preferences, "enabled", True):
            self.disable_user_outreach(user_id)
            return None

        now = self.clock()
        next_run_at = compute_next_run(preferences, now)
        return self.jobs.upsert_schedule(user_id, next_run_at, now)

    def disable_user_outreach(self, user_id: int) -> bool:
        removed = self.jobs.delete_job(user_id)
        if removed:
            logger.info("Outreach disabled for user %s", user_id)
        return removed

    def get_job_status(self, user_id: int) -> Optional[Dict[str, Any]]:
        job = self.jobs.get_job(user_id)
        if job is None:
            return None
        next_run_in = int((job.next_run_at - self.clock()).total_seconds() // 60) if job.next_run_at else None
        return {
            "job_id": job.id,
            "user_id": job.user_id,
            "status": job.status,
            "next_run_at": job.next_run_at,
            "next_run_in_minutes": next_run_in,
            "last_run_at": job.last_run_at,
            "last_outcome": job.last_outcome,
            "last_error": job.last_error,
            "diagnostic_trace": job.diagnostic_trace,
            "retry_count": job.retry_count,
            "next_retry_at": job.next_retry_at,
            "is_executing": self.pool.is_running(user_id),
        }

    def run_now(self, user_id: int) -> bool:
        """Hand a user's job to the pool immediately, ignoring next_run_at."""
        job = self.jobs.get_job(user_id)
        if job is None:
            return False
        return self.pool.submit(user_id, lambda: self.executor.execute(job))


# Global scheduler instance
_scheduler: Optional[OutreachScheduler] = None
_scheduler_lock = threading.Lock()


def build_scheduler(config: Optional[SchedulerConfig] = None) -> OutreachScheduler:
    """Wire a scheduler against the configured database and collaborators."""
    config = config or SchedulerConfig.from_env()
    jobs = JobStore(get_session)
    leads = LeadStore(get_session)
    preferences = PreferenceStore(get_session)
    generator = DailyBatchGenerator(
        leads=leads,
        batches=BatchStore(get_session),
        preferences=preferences,
        content_generator=get_default_content_generator(),
    )
    executor = JobExecutor(
        jobs=jobs,
        leads=leads,
        preferences=preferences,
        batch_generator=generator,
        notifier=SendGridNotificationDispatcher(),
        config=config,
    )
    return OutreachScheduler(jobs=jobs, preferences=preferences, executor=executor, config=config)


def get_scheduler() -> OutreachScheduler:
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            _scheduler = build_scheduler()
        return _scheduler


def start_scheduler() -> OutreachScheduler:
    scheduler = get_scheduler()
    scheduler.start()
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            return
        _scheduler.stop()
        _scheduler = None
