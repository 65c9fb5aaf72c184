# outreach_server/services/observability.py
import logging
from datetime import datetime
from typing import Callable, List


class JobLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the job id and owning user."""

    def process(self, msg, kwargs):
        extra = self.extra or {}
        job_id = str(extra.get("job_id", "unknown"))
        user_id = str(extra.get("user_id", "unknown"))
        formatted_msg = f"[job_id={job_id}] [user_id={user_id}] {msg}"
        return formatted_msg, kwargs


class ExecutionTrace:
    """
    Human-readable step trace for one job execution.

    Stored on the job as diagnostic_trace; execution-log rows remain the audit trail.
    """

    def __init__(self, clock: Callable[[], datetime], logger: logging.LoggerAdapter):
        self._clock = clock
        self._logger = logger
        self._steps: List[str] = []

    def step(self, message: str, *args) -> None:
        text = message % args if args else message
        self._steps.append(f"{self._clock().strftime('%H:%M:%S')} {text}")
        self._logger.info(text)

    @property
    def steps(self) -> List[str]:
        return list(self._steps)

    def render(self) -> str:
        return "\n".join(self._steps)
