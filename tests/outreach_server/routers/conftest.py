# tests/outreach_server/routers/conftest.py
"""Fixtures for exercising the HTTP routers against a per-test database."""
import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from outreach_server.dependencies import get_batch_store, get_preference_store
from outreach_server.main import app
from outreach_server.services.executor import JobExecutor
from outreach_server.services.scheduler import OutreachScheduler, get_scheduler

TEST_API_KEY = "router-test-key"


@pytest.fixture
def scheduler(job_store, preference_store, clock):
    scheduler = OutreachScheduler(
        jobs=job_store,
        preferences=preference_store,
        executor=MagicMock(spec=JobExecutor),
        clock=clock,
    )
    yield scheduler
    scheduler.stop(wait=True)


@pytest.fixture
def client(scheduler, preference_store, batch_store):
    """TestClient with the API key header set; the lifespan (real scheduler) is not started."""
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_preference_store] = lambda: preference_store
    app.dependency_overrides[get_batch_store] = lambda: batch_store
    with patch.dict(os.environ, {"API_KEY": TEST_API_KEY}):
        yield TestClient(app, headers={"X-API-Key": TEST_API_KEY})
    app.dependency_overrides.clear()
