# outreach_server/services/worker.py
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class JobWorkerPool:
    """
    Bounded pool of job executions.

    At most max_workers jobs run at once (the executor has that many threads). The
    running map (user_id → start time) is the admission counter and duplicate guard;
    it is a per-process cache, not a distributed lock.
    """

    def __init__(self, max_workers: int, clock: Optional[Callable[[], datetime]] = None):
        self.max_workers = max_workers
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="outreach-job")

        # Track users whose job is currently executing
        self._running: Dict[int, datetime] = {}
        self._running_lock = threading.Lock()
        self._futures: Set[Future] = set()

    def running_count(self) -> int:
        with self._running_lock:
            return len(self._running)

    def is_running(self, user_id: int) -> bool:
        with self._running_lock:
            return user_id in self._running

    def running_users(self) -> Dict[int, datetime]:
        with self._running_lock:
            return dict(self._running)

    def available_slots(self) -> int:
        return self.max_workers - self.running_count()

    def submit(self, user_id: int, func: Callable[[], None]) -> bool:
        """
        Start func for user_id unless that user is already executing or the pool is full.

        Returns:
            True if the work was accepted
        """
        with self._running_lock:
            if user_id in self._running:
                logger.debug("Job for user %s already running, skipping", user_id)
                return False
            if len(self._running) >= self.max_workers:
                logger.debug("No free worker for user %s", user_id)
                return False
            started_at = self._clock()
            self._running[user_id] = started_at

        try:
            future = self._executor.submit(self._run, user_id, started_at, func)
        except RuntimeError:
            # Executor already shut down
            self._release(user_id, started_at)
            raise

        with self._running_lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return True

    def drop_stale(self, threshold: timedelta) -> List[int]:
        """Forget running markers older than threshold; returns the affected user ids."""
        cutoff = self._clock() - threshold
        with self._running_lock:
            stale = [user_id for user_id, started_at in self._running.items() if started_at < cutoff]
            for user_id in stale:
                del self._running[user_id]
        for user_id in stale:
            logger.warning("Removing stale running marker for user %s", user_id)
        return stale

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted job has finished. Returns False on timeout."""
        with self._running_lock:
            pending = set(self._futures)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, user_id: int, started_at: datetime, func: Callable[[], None]) -> None:
        try:
            func()
        except Exception as e:
            logger.error("Unhandled error executing job for user %s: %s", user_id, e, exc_info=True)
        finally:
            self._release(user_id, started_at)

    def _release(self, user_id: int, started_at: datetime) -> None:
        with self._running_lock:
            # A stale sweep may have dropped this marker and a newer run replaced it
            if self._running.get(user_id) == started_at:
                del self._running[user_id]

    def _forget(self, future: Future) -> None:
        with self._running_lock:
            self._futures.discard(future)
