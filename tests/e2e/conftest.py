# tests/e2e/conftest.py
"""E2E test configuration and fixtures."""

import os
import time
from typing import Callable, Optional

import pytest
import requests


class APIClient:
    """API client wrapper for E2E tests."""

    def __init__(self, base_url: str, api_key: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        if api_key:
            self.session.headers.update({"X-API-Key": api_key})

    def get(self, path: str, **kwargs):
        """GET request."""
        return self.session.get(f"{self.base_url}{path}", **kwargs)

    def post(self, path: str, **kwargs):
        """POST request."""
        return self.session.post(f"{self.base_url}{path}", **kwargs)

    def put(self, path: str, **kwargs):
        """PUT request."""
        return self.session.put(f"{self.base_url}{path}", **kwargs)


@pytest.fixture(scope="session")
def api_base_url() -> str:
    """Get API base URL from environment or default."""
    return os.getenv("API_BASE_URL", "http://localhost:8000")


@pytest.fixture(scope="session")
def api_key() -> Optional[str]:
    """Get API key from environment."""
    return os.getenv("API_KEY")


@pytest.fixture(scope="session")
def api_client(api_base_url: str, api_key: Optional[str]) -> APIClient:
    """Create API client with authentication; skip when no server is listening."""
    client = APIClient(api_base_url, api_key)
    try:
        client.get("/health", timeout=2)
    except requests.RequestException:
        pytest.skip(f"API server not reachable at {api_base_url}")
    return client


@pytest.fixture(scope="session")
def test_user_id() -> int:
    """Get the E2E user id from environment."""
    user_id = os.getenv("E2E_USER_ID")
    if not user_id:
        pytest.skip("E2E_USER_ID environment variable not set")
    return int(user_id)


def poll_job_status(
    api_client: APIClient,
    user_id: int,
    predicate: Callable[[dict], bool],
    timeout: int = 120,
    poll_interval: int = 2,
) -> dict:
    """
    Poll a user's job until predicate(job) holds.

    Raises:
        TimeoutError: If the condition is not met within timeout seconds
    """
    start_time = time.time()

    while True:
        response = api_client.get(f"/api/v1/users/{user_id}/outreach/job")
        response.raise_for_status()
        job = response.json()
        if predicate(job):
            return job

        if time.time() - start_time > timeout:
            raise TimeoutError(f"Job for user {user_id} did not reach the expected state within {timeout}s")
        time.sleep(poll_interval)


@pytest.fixture
def poll_job(api_client: APIClient):
    """Fixture that provides poll_job_status bound to the API client."""
    return lambda user_id, predicate, timeout=120, poll_interval=2: poll_job_status(
        api_client, user_id, predicate, timeout, poll_interval
    )
