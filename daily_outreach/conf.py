# daily_outreach/conf.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# ----------------------------------------------------------------------
# Paths (all under assets/)
# ----------------------------------------------------------------------
ROOT_DIR = Path(__file__).parent.parent
ASSETS_DIR = ROOT_DIR / "assets"

# ----------------------------------------------------------------------
# Batch selection
# ----------------------------------------------------------------------
BATCH_ITEM_COUNT = 5
CANDIDATE_POOL_LIMIT = 20
ROLE_SCORE_BONUS = 10
BATCH_TTL = timedelta(hours=24)

DEFAULT_SCHEDULE_DAYS = ["mon", "tue", "wed"]
DEFAULT_SCHEDULE_TIME = "09:00"
DEFAULT_TIMEZONE = "America/New_York"

# ----------------------------------------------------------------------
# Scheduler defaults
# ----------------------------------------------------------------------
DEFAULT_POLL_INTERVAL_MS = 30_000
DEFAULT_BATCH_SIZE = 15
DEFAULT_MAX_CONCURRENT = 10
DEFAULT_MAX_RETRIES = 3
RETRY_DELAYS_SECONDS = (60, 300, 900)
STALE_THRESHOLD = timedelta(minutes=5)

# ----------------------------------------------------------------------
# Collaborators
# ----------------------------------------------------------------------
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
APP_URL = os.getenv("APP_URL", "https://5ducks.ai")

SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "quack@5ducks.ai")
SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "5Ducks Daily")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")


def env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to the default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using default %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%d, using default %d", name, value, default)
        return default
    return value


@dataclass(frozen=True)
class SchedulerConfig:
    """Tunables for the outreach scheduler."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delays_seconds: Tuple[int, ...] = field(default=RETRY_DELAYS_SECONDS)
    stale_threshold: timedelta = STALE_THRESHOLD

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        return cls(
            poll_interval_ms=env_int("OUTREACH_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_MS),
            batch_size=env_int("OUTREACH_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            max_concurrent=env_int("OUTREACH_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT),
            max_retries=env_int("OUTREACH_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        )


# ----------------------------------------------------------------------
# Debug output when run directly
# ----------------------------------------------------------------------
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
    )

    config = SchedulerConfig.from_env()
    logger.info("Daily Outreach – Scheduler configuration")
    logger.info("-" * 60)
    logger.info("Poll interval   : %d ms", config.poll_interval_ms)
    logger.info("Batch size      : %d", config.batch_size)
    logger.info("Max concurrent  : %d", config.max_concurrent)
    logger.info("Max retries     : %d", config.max_retries)
    logger.info("Retry ladder    : %s", ", ".join(f"{s}s" for s in config.retry_delays_seconds))
    logger.info("SendGrid        : %s", "configured" if SENDGRID_API_KEY else "missing")
    logger.info("OpenAI          : %s", "configured" if OPENAI_API_KEY else "missing")
