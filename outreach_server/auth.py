# outreach_server/auth.py
import hmac
import os
from typing import Optional

from fastapi import Header, HTTPException, status

API_KEY_HEADER = "X-API-Key"


def get_api_key() -> Optional[str]:
    """Get the server API key from the environment."""
    return os.getenv("API_KEY")


def keys_match(provided: str, expected: str) -> bool:
    """Constant-time comparison, so response timing does not leak the key prefix."""
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_api_key(api_key: Optional[str] = Header(None, alias=API_KEY_HEADER)) -> str:
    """
    Guard the outreach routes with the X-API-Key header.

    Raises HTTPException (401 missing, 403 mismatch). With API_KEY unset the server
    runs open, as in local development.
    """
    expected_key = get_api_key()
    if not expected_key:
        return ""

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {API_KEY_HEADER} header",
        )

    if not keys_match(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key
